"""
Deal creation and stage progress.

A Deal is created exactly once per accepted offer, from the sell cycle and
the winning offer plus, when the buyer side is represented, the purchase
cycle and buyer requirement.

- deal_number is PREFIX-YYYY-NNN: the per-year sequence is the number of
  deals already numbered in that year plus one, advanced past any number
  already in use
- commission is the sell cycle's rate on the agreed price; with a buyer-side
  agent it splits primary/secondary (60/40 by default), otherwise 100/0
- the deal starts at stage offer-accepted, status active, with an expected
  closing date EXPECTED_CLOSING_DAYS after acceptance
- completing the last stage or cancelling the deal closes its sell and
  purchase cycles in the same step; a failure restores every touched
  collection
"""

from datetime import datetime, timedelta

import structlog

from ..config import config
from ..errors import NotFoundError, ValidationError
from ..models.cycles import Offer, PurchaseCycle, SellCycle
from ..models.deal import (
    Commission,
    CommissionSplit,
    Deal,
    DealAgent,
    DealAgents,
    DealCycles,
    DealFinancial,
    DealLifecycle,
    DealParties,
    DealParty,
    DealStage,
    DealStatus,
    DealTimeline,
    PurchaseCycleRef,
    SellCycleRef,
    StageProgress,
    StageStatus,
)
from ..models.requirement import BuyerRequirement
from ..repository import BrokerageRepository, Collections
from ..utils import utc_now
from .lifecycle import CycleLifecycle

logger = structlog.get_logger(__name__)

STAGE_ORDER: list[str] = [s.value for s in DealStage]

_CLOSING_COLLECTIONS = (
    Collections.DEALS,
    Collections.SELL_CYCLES,
    Collections.PURCHASE_CYCLES,
    Collections.PROPERTIES,
)


def _round_money(value: float) -> float:
    return round(value, 2)


class DealBuilder:
    """Builds, numbers and persists Deals; advances their stages."""

    def __init__(
        self,
        repository: BrokerageRepository,
        prefix: str | None = None,
        expected_closing_days: int | None = None,
        primary_share: float | None = None,
    ):
        self.repository = repository
        self.prefix = prefix or config.DEAL_NUMBER_PREFIX
        self.expected_closing_days = (
            expected_closing_days if expected_closing_days is not None else config.EXPECTED_CLOSING_DAYS
        )
        self.primary_share = primary_share if primary_share is not None else config.PRIMARY_COMMISSION_SHARE
        self.cycles = CycleLifecycle(repository)

    # =========================================================================
    # Numbering
    # =========================================================================

    def next_deal_number(self, year: int) -> str:
        """Next free PREFIX-YYYY-NNN number for the year."""
        year_prefix = f"{self.prefix}-{year}-"
        used = {d.deal_number for d in self.repository.get_deals()}
        sequence = sum(1 for n in used if n.startswith(year_prefix)) + 1
        while f"{year_prefix}{sequence:03d}" in used:
            sequence += 1
        return f"{year_prefix}{sequence:03d}"

    # =========================================================================
    # Creation
    # =========================================================================

    def build_commission(self, agreed_price: float, rate: float, two_agents: bool) -> Commission:
        total = _round_money(agreed_price * rate / 100)
        primary_pct = self.primary_share if two_agents else 100.0
        secondary_pct = 100.0 - primary_pct if two_agents else 0.0
        primary_amount = _round_money(total * primary_pct / 100)
        return Commission(
            rate=rate,
            total=total,
            split=CommissionSplit(
                primary_percentage=primary_pct,
                primary_amount=primary_amount,
                secondary_percentage=secondary_pct,
                secondary_amount=_round_money(total - primary_amount) if two_agents else 0.0,
            ),
        )

    def build_deal(
        self,
        sell_cycle: SellCycle,
        offer: Offer,
        purchase_cycle: PurchaseCycle | None = None,
        buyer_requirement: BuyerRequirement | None = None,
        agreed_price: float | None = None,
        created_by: str | None = None,
        accepted_at: datetime | None = None,
    ) -> Deal:
        """Assemble an unsaved Deal with a fresh number."""
        price = agreed_price if agreed_price is not None else offer.offer_amount
        if price <= 0:
            raise ValidationError('Agreed price must be greater than 0', context={'offer_id': offer.id})

        accepted_at = accepted_at or utc_now()
        two_agents = purchase_cycle is not None

        secondary = None
        purchase_ref = None
        if purchase_cycle is not None:
            secondary = DealAgent(id=purchase_cycle.agent_id, name=purchase_cycle.agent_name, role='buyer-agent')
            purchase_ref = PurchaseCycleRef(
                id=purchase_cycle.id,
                agent_id=purchase_cycle.agent_id,
                agent_name=purchase_cycle.agent_name,
                buyer_requirement_id=purchase_cycle.buyer_requirement_id
                or (buyer_requirement.id if buyer_requirement else None),
            )

        buyer = DealParty(id=offer.buyer_id, name=offer.buyer_name, contact=offer.buyer_contact)
        if buyer_requirement is not None:
            buyer = DealParty(
                id=buyer_requirement.buyer_id or offer.buyer_id,
                name=buyer_requirement.buyer_name or offer.buyer_name,
                contact=buyer_requirement.buyer_contact or offer.buyer_contact,
            )

        stages = {name: StageProgress() for name in STAGE_ORDER}
        stages[DealStage.OFFER_ACCEPTED.value] = StageProgress(
            status=StageStatus.IN_PROGRESS, started_at=accepted_at
        )

        commission = self.build_commission(price, sell_cycle.commission_rate, two_agents)
        return Deal(
            deal_number=self.next_deal_number(accepted_at.year),
            cycles=DealCycles(
                sell_cycle=SellCycleRef(
                    id=sell_cycle.id,
                    agent_id=sell_cycle.agent_id,
                    agent_name=sell_cycle.agent_name,
                    property_id=sell_cycle.property_id,
                    offer_id=offer.id,
                ),
                purchase_cycle=purchase_ref,
            ),
            agents=DealAgents(
                primary=DealAgent(id=sell_cycle.agent_id, name=sell_cycle.agent_name, role='seller-agent'),
                secondary=secondary,
            ),
            parties=DealParties(
                seller=DealParty(id=sell_cycle.seller_id, name=sell_cycle.seller_name),
                buyer=buyer,
            ),
            financial=DealFinancial(
                agreed_price=price,
                commission=commission,
                balance_remaining=price,
            ),
            lifecycle=DealLifecycle(
                timeline=DealTimeline(
                    offer_accepted_date=accepted_at,
                    expected_closing_date=accepted_at + timedelta(days=self.expected_closing_days),
                    stages=stages,
                ),
            ),
            created_by=created_by,
            created_at=accepted_at,
            updated_at=accepted_at,
        )

    def create_deal_from_offer(
        self,
        sell_cycle: SellCycle,
        offer: Offer,
        purchase_cycle: PurchaseCycle | None = None,
        buyer_requirement: BuyerRequirement | None = None,
        agreed_price: float | None = None,
        created_by: str | None = None,
    ) -> Deal:
        """
        Build and persist the Deal for an accepted offer.

        Raises:
            ValidationError: If the agreed price is not positive.
            DealIntegrityError: If the deal number collides on save.
        """
        deal = self.build_deal(
            sell_cycle,
            offer,
            purchase_cycle=purchase_cycle,
            buyer_requirement=buyer_requirement,
            agreed_price=agreed_price,
            created_by=created_by,
        )
        self.repository.save_deal(deal)
        logger.info(
            'deal_builder.created',
            deal_id=deal.id,
            deal_number=deal.deal_number,
            sell_cycle_id=sell_cycle.id,
            purchase_cycle_id=deal.purchase_cycle_id,
            agreed_price=deal.financial.agreed_price,
        )
        return deal

    # =========================================================================
    # Stage progress
    # =========================================================================

    def complete_stage(self, deal_id: str, stage: str, completed_at: datetime | None = None) -> Deal:
        """
        Mark a stage completed and start the next one.

        Completing the final stage completes the deal, marks its sell cycle
        sold and its purchase cycle completed.

        Raises:
            NotFoundError: Unknown deal.
            ValidationError: Unknown stage, or the deal is not active.
        """
        deal = self.repository.get_deal(deal_id)
        if deal is None:
            raise NotFoundError('Deal not found', context={'deal_id': deal_id})
        stage = getattr(stage, 'value', stage)
        if stage not in STAGE_ORDER:
            raise ValidationError('Unknown deal stage', context={'deal_id': deal_id, 'stages': STAGE_ORDER})
        if deal.lifecycle.status != DealStatus.ACTIVE.value:
            raise ValidationError(
                'Only active deals can progress',
                context={'deal_id': deal_id, 'status': deal.lifecycle.status},
            )

        now = completed_at or utc_now()
        timeline = deal.lifecycle.timeline
        progress = timeline.stages.setdefault(stage, StageProgress())
        progress.status = StageStatus.COMPLETED.value
        progress.started_at = progress.started_at or now
        progress.completed_at = now
        progress.completion_percentage = 100

        index = STAGE_ORDER.index(stage)
        if index + 1 < len(STAGE_ORDER):
            next_stage = STAGE_ORDER[index + 1]
            nxt = timeline.stages.setdefault(next_stage, StageProgress())
            if nxt.status == StageStatus.NOT_STARTED.value:
                nxt.status = StageStatus.IN_PROGRESS.value
                nxt.started_at = now
            deal.lifecycle.stage = next_stage
        else:
            deal.lifecycle.status = DealStatus.COMPLETED.value
            timeline.actual_closing_date = now
            deal.completed_at = now

        deal.updated_at = now
        if deal.lifecycle.status == DealStatus.COMPLETED.value:
            self._close(deal)
        else:
            self.repository.save_deal(deal)
        logger.info('deal_builder.stage_completed', deal_id=deal_id, stage=stage)
        return deal

    # =========================================================================
    # Closing
    # =========================================================================

    def cancel_deal(self, deal_id: str, reason: str | None = None, cancelled_by: str | None = None) -> Deal:
        """
        Cancel a deal and both of its cycles.

        Raises:
            NotFoundError: Unknown deal.
            ValidationError: The deal is already completed or cancelled.
        """
        deal = self.repository.get_deal(deal_id)
        if deal is None:
            raise NotFoundError('Deal not found', context={'deal_id': deal_id})
        if deal.lifecycle.status in (DealStatus.COMPLETED.value, DealStatus.CANCELLED.value):
            raise ValidationError(
                'Deal is already closed',
                context={'deal_id': deal_id, 'status': deal.lifecycle.status},
            )

        now = utc_now()
        deal.lifecycle.status = DealStatus.CANCELLED.value
        deal.cancelled_at = now
        deal.cancellation_reason = reason
        deal.updated_at = now
        self._close(deal)
        logger.info('deal_builder.cancelled', deal_id=deal_id, reason=reason, cancelled_by=cancelled_by)
        return deal

    def _close(self, deal: Deal) -> None:
        """Save a completed or cancelled deal and close its cycles, all or nothing."""
        snapshot = self.repository.snapshot(_CLOSING_COLLECTIONS)
        try:
            self.repository.save_deal(deal)
            self.cycles.sync_deal_to_cycles(deal)
        except Exception as exc:
            logger.error('deal_builder.close_rolled_back', deal_id=deal.id, error=str(exc))
            self.repository.restore(snapshot)
            raise
