"""
Sell, rent and purchase cycle models plus the Offer embedded in a SellCycle.

Status vocabularies are str Enums; models store the plain string values
(use_enum_values) so they serialize to the entity store unchanged.

Key invariants:
- A SellCycle has at most one offer with status 'accepted'
- Offer.offer_amount > 0 and token_amount <= offer_amount (enforced on submission)
- A PurchaseCycle is linked to at most one Deal
"""

from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, Field

from ..utils import new_id, today, utc_now


# =============================================================================
# Status vocabularies
# =============================================================================


class SellCycleStatus(str, Enum):
    LISTED = 'listed'
    OFFER_RECEIVED = 'offer-received'
    NEGOTIATION = 'negotiation'
    UNDER_CONTRACT = 'under-contract'
    SOLD = 'sold'
    CANCELLED = 'cancelled'


OPEN_SELL_STATUSES = frozenset(
    {SellCycleStatus.LISTED.value, SellCycleStatus.OFFER_RECEIVED.value, SellCycleStatus.NEGOTIATION.value}
)
CLOSED_SELL_STATUSES = frozenset({SellCycleStatus.SOLD.value, SellCycleStatus.CANCELLED.value})


class RentCycleStatus(str, Enum):
    AVAILABLE = 'available'
    ACTIVE = 'active'
    SHOWING = 'showing'
    APPLICATION_RECEIVED = 'application-received'
    LEASED = 'leased'
    ENDED = 'ended'
    CANCELLED = 'cancelled'


OPEN_RENT_STATUSES = frozenset(
    {
        RentCycleStatus.AVAILABLE.value,
        RentCycleStatus.ACTIVE.value,
        RentCycleStatus.SHOWING.value,
        RentCycleStatus.APPLICATION_RECEIVED.value,
    }
)


class OfferStatus(str, Enum):
    """
    Offer state machine:
    pending -> accepted | rejected | countered | withdrawn
    countered -> accepted | rejected | withdrawn
    """

    PENDING = 'pending'
    ACCEPTED = 'accepted'
    REJECTED = 'rejected'
    COUNTERED = 'countered'
    WITHDRAWN = 'withdrawn'


OPEN_OFFER_STATUSES = frozenset({OfferStatus.PENDING.value, OfferStatus.COUNTERED.value})


class OfferSourceType(str, Enum):
    MANUAL = 'manual'
    BUYER_REQUIREMENT = 'buyer-requirement'
    PURCHASE_CYCLE = 'purchase-cycle'
    MATCH = 'match'


class PurchaseCycleStatus(str, Enum):
    PROSPECTING = 'prospecting'
    OFFER_MADE = 'offer-made'
    NEGOTIATION = 'negotiation'
    ACCEPTED = 'accepted'
    UNDER_CONTRACT = 'under-contract'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'


class PurchaserType(str, Enum):
    CLIENT = 'client'
    AGENCY = 'agency'
    INVESTOR = 'investor'


class ShareLevel(str, Enum):
    NONE = 'none'
    ORGANIZATION = 'organization'


# =============================================================================
# Sharing
# =============================================================================


class ShareEvent(BaseModel):
    """One entry of a cycle's sharing audit trail."""

    model_config = {'use_enum_values': True}

    action: str = Field(..., description="'shared' or 'unshared'")
    timestamp: datetime = Field(default_factory=utc_now)
    user_id: str
    user_name: str | None = None


class SharingSettings(BaseModel):
    model_config = {'use_enum_values': True}

    is_shared: bool = False
    share_level: ShareLevel = ShareLevel.NONE
    shared_at: datetime | None = None
    share_history: list[ShareEvent] = Field(default_factory=list)


# =============================================================================
# Offer
# =============================================================================


class Offer(BaseModel):
    """A bid on a SellCycle, entered by the listing agent or submitted cross-agent."""

    model_config = {'use_enum_values': True}

    id: str = Field(default_factory=lambda: new_id('offer'))

    # Buyer
    buyer_id: str | None = None
    buyer_name: str
    buyer_contact: str | None = None

    # Money
    offer_amount: float
    token_amount: float | None = None
    counter_offer_amount: float | None = None

    # Terms
    conditions: str | None = None
    offered_date: date = Field(default_factory=today)
    expiry_date: date | None = None
    response_date: date | None = None

    status: OfferStatus = OfferStatus.PENDING
    notes: str | None = None
    agent_notes: str | None = None
    listing_agent_notes: str | None = Field(default=None, description='Reason given on rejection')

    # Cross-agent linkage
    source_type: OfferSourceType = OfferSourceType.MANUAL
    buyer_requirement_id: str | None = None
    buyer_agent_id: str | None = None
    buyer_agent_name: str | None = None
    linked_purchase_cycle_id: str | None = None
    submitted_by_agent_id: str | None = None
    submitted_by_agent_name: str | None = None
    submitted_by_agent_contact: str | None = None
    match_id: str | None = None
    match_score: int | None = None
    coordination_required: bool = False

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def agreed_amount(self) -> float:
        """Price the seller agrees to when accepting this offer."""
        if self.status == OfferStatus.COUNTERED and self.counter_offer_amount:
            return self.counter_offer_amount
        return self.offer_amount


class OfferInput(BaseModel):
    """Caller-supplied fields for a new offer; validated by the offer pipeline."""

    buyer_id: str | None = None
    buyer_name: str = ''
    buyer_contact: str | None = None
    offer_amount: float = 0
    token_amount: float | None = None
    conditions: str | None = None
    expiry_date: date | None = None
    notes: str | None = None
    agent_notes: str | None = None

    buyer_requirement_id: str | None = None
    linked_purchase_cycle_id: str | None = None
    submitted_by_agent_id: str | None = None
    submitted_by_agent_name: str | None = None
    submitted_by_agent_contact: str | None = None
    match_id: str | None = None
    match_score: int | None = None


# =============================================================================
# Cycles
# =============================================================================


class SellCycle(BaseModel):
    """A sale process for one Property, owned by the listing agent."""

    model_config = {'use_enum_values': True}

    id: str = Field(default_factory=lambda: new_id('sell'))
    property_id: str
    agent_id: str
    agent_name: str | None = None

    seller_id: str | None = None
    seller_name: str | None = None
    seller_type: str = 'client'

    title: str | None = None
    asking_price: float
    commission_rate: float = Field(default=2.0, description='Percent of agreed price')

    status: SellCycleStatus = SellCycleStatus.LISTED
    offers: list[Offer] = Field(default_factory=list)
    sharing: SharingSettings = Field(default_factory=SharingSettings)

    listed_date: date = Field(default_factory=today)
    sold_date: date | None = None
    sold_price: float | None = None

    accepted_offer_id: str | None = None
    linked_deal_id: str | None = None
    created_deal_id: str | None = None
    winning_purchase_cycle_id: str | None = None

    notes: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def find_offer(self, offer_id: str) -> Offer | None:
        return next((o for o in self.offers if o.id == offer_id), None)

    @property
    def accepted_offers(self) -> list[Offer]:
        return [o for o in self.offers if o.status == OfferStatus.ACCEPTED]

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_SELL_STATUSES

    @property
    def is_active(self) -> bool:
        """Not yet sold or cancelled; a property holds at most one such cycle."""
        return self.status not in CLOSED_SELL_STATUSES


class RentCycle(BaseModel):
    """A rental listing for one Property. Used by matching only."""

    model_config = {'use_enum_values': True}

    id: str = Field(default_factory=lambda: new_id('rent'))
    property_id: str
    agent_id: str
    agent_name: str | None = None
    monthly_rent: float
    status: RentCycleStatus = RentCycleStatus.AVAILABLE
    sharing: SharingSettings = Field(default_factory=SharingSettings)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class PurchaseCycle(BaseModel):
    """One agent's buyer pursuing one specific property."""

    model_config = {'use_enum_values': True}

    id: str = Field(default_factory=lambda: new_id('purchase'))
    property_id: str

    purchaser_type: PurchaserType = PurchaserType.CLIENT
    purchaser_id: str | None = None
    purchaser_name: str
    purchaser_contact: str | None = None
    seller_id: str | None = None
    seller_name: str | None = None

    asking_price: float | None = None
    offer_amount: float | None = None
    negotiated_price: float | None = None

    agent_id: str
    agent_name: str | None = None
    status: PurchaseCycleStatus = PurchaseCycleStatus.PROSPECTING

    buyer_requirement_id: str | None = None
    buyer_budget_min: float | None = None
    buyer_budget_max: float | None = None

    sell_cycle_id: str | None = None
    linked_sell_cycle_id: str | None = None
    linked_deal_id: str | None = None
    created_deal_id: str | None = None

    offer_date: date | None = None
    acceptance_date: date | None = None
    completion_date: date | None = None
    notes: str | None = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_closed(self) -> bool:
        """Already tied to a deal, completed or cancelled. Never reused for another deal."""
        return bool(self.linked_deal_id or self.created_deal_id) or self.status in (
            PurchaseCycleStatus.COMPLETED.value,
            PurchaseCycleStatus.CANCELLED.value,
        )
