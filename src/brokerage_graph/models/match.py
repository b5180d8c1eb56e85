"""
PropertyMatch and MatchDetails models.

A PropertyMatch is a scored pairing between a shared cycle and an active
requirement owned by a different agent. Its id is derived from the pair so
reruns of the matching engine update the same record instead of adding one.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from ..utils import utc_now


class MatchStatus(str, Enum):
    PENDING = 'pending'
    VIEWED = 'viewed'
    OFFER_SUBMITTED = 'offer-submitted'
    ACCEPTED = 'accepted'
    DEAL_CREATED = 'deal-created'
    DISMISSED = 'dismissed'


class CycleType(str, Enum):
    SELL = 'sell'
    RENT = 'rent'


def match_id_for(cycle_id: str, requirement_id: str) -> str:
    """Deterministic match id for a (cycle, requirement) pair."""
    return f"match_{cycle_id}_{requirement_id}"


class MatchDetails(BaseModel):
    """Per-criterion outcome behind a match score."""

    property_type_match: bool = False
    location_match: bool = False
    price_match: bool = False
    area_match: bool = False
    bedrooms_match: bool = False
    bathrooms_match: bool = False
    features_match: list[str] = Field(default_factory=list)
    overall_score: int = 0


class PropertyMatch(BaseModel):
    """Persisted pairing between a shared cycle and a requirement."""

    model_config = {'use_enum_values': True}

    match_id: str
    cycle_id: str
    cycle_type: CycleType
    property_id: str | None = None

    listing_agent_id: str
    listing_agent_name: str | None = None

    requirement_id: str
    requirement_type: str = Field(..., description="'buyer' or 'rent'")
    buyer_agent_id: str | None = None
    buyer_agent_name: str | None = None
    renter_agent_id: str | None = None
    renter_agent_name: str | None = None

    match_score: int = Field(..., ge=0, le=100)
    match_details: MatchDetails = Field(default_factory=MatchDetails)

    status: MatchStatus = MatchStatus.PENDING
    notification_sent: bool = False
    offer_id: str | None = None
    deal_id: str | None = None

    matched_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def requirement_agent_id(self) -> str | None:
        """Agent on the requirement side, whichever variant this match is."""
        return self.buyer_agent_id or self.renter_agent_id
