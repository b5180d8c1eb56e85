"""
Property model.

A Property is the physical listing. Sell, rent and purchase cycles reference
it by id; the property keeps the ids of its active cycles plus a history of
every cycle ever opened against it.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from ..utils import new_id, utc_now


class Address(BaseModel):
    """Postal location used for location matching (city > area > block)."""

    city: str | None = None
    area: str | None = None
    block: str | None = None

    def parts(self) -> list[str]:
        return [p for p in (self.block, self.area, self.city) if p]


class CycleHistory(BaseModel):
    """Ids of every cycle opened against a property, active or not."""

    sell_cycles: list[str] = Field(default_factory=list)
    purchase_cycles: list[str] = Field(default_factory=list)
    rent_cycles: list[str] = Field(default_factory=list)


class Property(BaseModel):
    """A physical property owned (listed) by one agent."""

    id: str = Field(default_factory=lambda: new_id('prop'))
    title: str = ''
    property_type: str | None = Field(default=None, description='house, apartment, plot, ...')
    address: Address | None = None
    price: float | None = Field(default=None, description='Reference price when no cycle price applies')
    area: float | None = None
    area_unit: str = 'sqft'
    bedrooms: int | None = None
    bathrooms: int | None = None
    features: list[str] = Field(default_factory=list)

    agent_id: str | None = None
    agent_name: str | None = None

    active_sell_cycle_ids: list[str] = Field(default_factory=list)
    active_purchase_cycle_ids: list[str] = Field(default_factory=list)
    cycle_history: CycleHistory = Field(default_factory=CycleHistory)

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
