"""
Deal model: the canonical transaction record.

A Deal unifies exactly one SellCycle (the listing side) and optionally one
PurchaseCycle (the buyer side). It is created once per accepted offer.

Key design decisions:
- deal_number is human readable (PREFIX-YYYY-NNN) and frozen once assigned
- agents.primary is always the listing agent; agents.secondary is the
  buyer-side agent when a purchase cycle exists
- lifecycle.timeline.stages carries one StageProgress per DealStage so the
  unified timeline can report stage completions
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from ..utils import new_id, utc_now


class DealStage(str, Enum):
    """Deal progress stages, in order."""

    OFFER_ACCEPTED = 'offer-accepted'
    AGREEMENT_SIGNING = 'agreement-signing'
    DOCUMENTATION = 'documentation'
    PAYMENT_PROCESSING = 'payment-processing'
    HANDOVER_PREP = 'handover-prep'
    TRANSFER_REGISTRATION = 'transfer-registration'
    FINAL_HANDOVER = 'final-handover'


class DealStatus(str, Enum):
    ACTIVE = 'active'
    ON_HOLD = 'on-hold'
    CANCELLED = 'cancelled'
    COMPLETED = 'completed'


class StageStatus(str, Enum):
    NOT_STARTED = 'not-started'
    IN_PROGRESS = 'in-progress'
    COMPLETED = 'completed'


class StageProgress(BaseModel):
    model_config = {'use_enum_values': True}

    status: StageStatus = StageStatus.NOT_STARTED
    started_at: datetime | None = None
    completed_at: datetime | None = None
    completion_percentage: int = Field(default=0, ge=0, le=100)
    notes: str | None = None


class DealTimeline(BaseModel):
    offer_accepted_date: datetime
    expected_closing_date: datetime | None = None
    actual_closing_date: datetime | None = None
    stages: dict[str, StageProgress] = Field(default_factory=dict)


class DealLifecycle(BaseModel):
    model_config = {'use_enum_values': True}

    stage: DealStage = DealStage.OFFER_ACCEPTED
    status: DealStatus = DealStatus.ACTIVE
    timeline: DealTimeline


# =============================================================================
# Cycle, agent and party references
# =============================================================================


class SellCycleRef(BaseModel):
    id: str
    agent_id: str
    agent_name: str | None = None
    property_id: str
    offer_id: str


class PurchaseCycleRef(BaseModel):
    id: str
    agent_id: str
    agent_name: str | None = None
    buyer_requirement_id: str | None = None


class DealCycles(BaseModel):
    sell_cycle: SellCycleRef
    purchase_cycle: PurchaseCycleRef | None = None


class DealAgent(BaseModel):
    id: str
    name: str | None = None
    role: str = Field(..., description="'seller-agent' or 'buyer-agent'")


class DealAgents(BaseModel):
    primary: DealAgent
    secondary: DealAgent | None = None


class DealParty(BaseModel):
    id: str | None = None
    name: str | None = None
    contact: str | None = None


class DealParties(BaseModel):
    seller: DealParty
    buyer: DealParty


# =============================================================================
# Financials
# =============================================================================


class CommissionSplit(BaseModel):
    """Commission shares in percent, plus the resulting amounts."""

    primary_percentage: float
    primary_amount: float
    secondary_percentage: float = 0
    secondary_amount: float = 0


class Commission(BaseModel):
    rate: float = Field(..., description='Percent of agreed price')
    total: float
    split: CommissionSplit


class DealFinancial(BaseModel):
    agreed_price: float
    commission: Commission
    total_paid: float = 0
    balance_remaining: float


# =============================================================================
# Deal
# =============================================================================


class Deal(BaseModel):
    """Canonical record of one accepted-offer transaction."""

    id: str = Field(default_factory=lambda: new_id('deal'), frozen=True)
    deal_number: str = Field(..., frozen=True, description='PREFIX-YYYY-NNN, immutable')

    cycles: DealCycles
    agents: DealAgents
    parties: DealParties
    financial: DealFinancial
    lifecycle: DealLifecycle

    created_by: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None

    @property
    def sell_cycle_id(self) -> str:
        return self.cycles.sell_cycle.id

    @property
    def purchase_cycle_id(self) -> str | None:
        if self.cycles.purchase_cycle is None:
            return None
        return self.cycles.purchase_cycle.id

    @property
    def property_id(self) -> str:
        return self.cycles.sell_cycle.property_id
