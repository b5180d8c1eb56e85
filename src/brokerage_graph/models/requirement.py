"""
Buyer and rent requirements.

Requirement is a tagged union discriminated by ``requirement_type``. Code
that needs to treat the variants differently (the match scorer, purchase
cycle materialization) matches on the concrete class instead of probing for
optional fields.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from ..utils import new_id, utc_now


class RequirementStatus(str, Enum):
    ACTIVE = 'active'
    MATCHED = 'matched'
    CLOSED = 'closed'


class _RequirementBase(BaseModel):
    """Search criteria shared by buyer and rent requirements."""

    model_config = {'use_enum_values': True}

    agent_id: str
    agent_name: str | None = None

    min_budget: float | None = None
    max_budget: float | None = None
    property_types: list[str] = Field(default_factory=list)
    preferred_locations: list[str] = Field(default_factory=list)
    min_bedrooms: int | None = None
    max_bedrooms: int | None = None
    min_bathrooms: int | None = None
    features: list[str] = Field(default_factory=list)

    status: RequirementStatus = RequirementStatus.ACTIVE
    notes: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_active(self) -> bool:
        return self.status == RequirementStatus.ACTIVE


class BuyerRequirement(_RequirementBase):
    """A buyer's purchase criteria. Budget is a sale price range."""

    requirement_type: Literal['buyer'] = 'buyer'
    id: str = Field(default_factory=lambda: new_id('req'))

    buyer_id: str | None = None
    buyer_name: str
    buyer_contact: str | None = None
    min_area: float | None = None
    max_area: float | None = None
    financing_type: str | None = None


class RentRequirement(_RequirementBase):
    """A renter's criteria. Budget is a monthly rent range."""

    requirement_type: Literal['rent'] = 'rent'
    id: str = Field(default_factory=lambda: new_id('rentreq'))

    renter_id: str | None = None
    renter_name: str
    renter_contact: str | None = None


Requirement = Annotated[Union[BuyerRequirement, RentRequirement], Field(discriminator='requirement_type')]

requirement_adapter: TypeAdapter[BuyerRequirement | RentRequirement] = TypeAdapter(Requirement)
