"""
Cross-agent offer pipeline.

Submit / accept / reject / counter / withdraw workflow for offers on a sell
cycle, including the reconciliation that runs when an offer is accepted.

Offer state machine:
    pending   -> accepted | rejected | countered | withdrawn
    countered -> accepted | rejected | withdrawn

Acceptance runs as explicit steps against a snapshot of the affected
collections:
1. mark_winner: offer -> accepted, open siblings -> rejected, cycle -> under-contract
2. resolve_purchase_cycle: linked -> reuse; requirement + buyer agent -> look up
   by (requirement, property) or create now; otherwise none. A purchase
   cycle already tied to a deal is never reused.
3. create_deal: exactly one Deal per accepted offer
4. cross_link: sell cycle <-> deal <-> purchase cycle
If any step fails the snapshot is restored and AcceptanceError is raised, so
no offer is left accepted without a Deal; if the restore fails too,
RollbackError is raised instead. Match status updates and
notifications run afterwards and never fail the acceptance.
"""

from dataclasses import dataclass, field
from typing import Any

import structlog

from ..clients.notifier import NotificationDispatcher
from ..errors import (
    AcceptanceError,
    CycleNotSharedError,
    NotFoundError,
    OfferStateError,
    RollbackError,
    ValidationError,
)
from ..logging import PipelineTimer, logging_context
from ..models.cycles import (
    OPEN_OFFER_STATUSES,
    Offer,
    OfferInput,
    OfferSourceType,
    OfferStatus,
    PurchaseCycle,
    PurchaseCycleStatus,
    PurchaserType,
    SellCycle,
    SellCycleStatus,
    ShareEvent,
    ShareLevel,
)
from ..models.deal import Deal
from ..models.match import MatchStatus
from ..models.notification import Notification, NotificationPriority, NotificationType
from ..models.requirement import BuyerRequirement
from ..repository import BrokerageRepository, Collections
from ..utils import today, utc_now
from .deals import DealBuilder

logger = structlog.get_logger(__name__)

_ACCEPTANCE_COLLECTIONS = (
    Collections.SELL_CYCLES,
    Collections.PURCHASE_CYCLES,
    Collections.DEALS,
    Collections.PROPERTIES,
)


# =============================================================================
# Result Models
# =============================================================================


@dataclass
class AcceptanceResult:
    """
    Everything an offer acceptance produced.

    purchase_cycle_resolution values:
    - 'linked': the offer already pointed at a purchase cycle
    - 'reused': found by (buyer requirement, property)
    - 'created': materialized during acceptance
    - 'none': single-cycle deal, no buyer-side purchase cycle
    """

    sell_cycle: SellCycle
    offer: Offer
    deal: Deal
    purchase_cycle: PurchaseCycle | None
    purchase_cycle_resolution: str
    rejected_offer_ids: list[str] = field(default_factory=list)
    notifications_delivered: int = 0
    stage_timings: dict[str, Any] = field(default_factory=dict)


@dataclass
class CycleOffer:
    """An offer together with the sell cycle it was made on."""

    sell_cycle_id: str
    property_id: str
    offer: Offer


# =============================================================================
# OfferPipeline
# =============================================================================


class OfferPipeline:
    """Offer workflow over sell cycles, purchase cycles and deals."""

    def __init__(
        self,
        repository: BrokerageRepository,
        dispatcher: NotificationDispatcher | None = None,
        deal_builder: DealBuilder | None = None,
    ):
        self.repository = repository
        if dispatcher is None:
            logger.warning(
                'offer_pipeline.default_dispatcher',
                detail='no dispatcher given; notifications go to an in-memory client',
            )
            dispatcher = NotificationDispatcher()
        self.dispatcher = dispatcher
        self.deal_builder = deal_builder or DealBuilder(repository)

    # =========================================================================
    # Lookups and validation
    # =========================================================================

    def _require_sell_cycle(self, sell_cycle_id: str) -> SellCycle:
        cycle = self.repository.get_sell_cycle(sell_cycle_id)
        if cycle is None:
            raise NotFoundError('Sell cycle not found', context={'sell_cycle_id': sell_cycle_id})
        return cycle

    @staticmethod
    def _require_offer(cycle: SellCycle, offer_id: str) -> Offer:
        offer = cycle.find_offer(offer_id)
        if offer is None:
            raise NotFoundError(
                'Offer not found', context={'sell_cycle_id': cycle.id, 'offer_id': offer_id}
            )
        return offer

    @staticmethod
    def _require_open_offer(cycle: SellCycle, offer: Offer, action: str) -> None:
        if offer.status not in OPEN_OFFER_STATUSES:
            raise OfferStateError(
                f"Cannot {action} an offer that is {offer.status}",
                context={'sell_cycle_id': cycle.id, 'offer_id': offer.id, 'status': offer.status},
            )

    @staticmethod
    def validate_offer_input(offer_input: OfferInput) -> None:
        """
        Raises:
            ValidationError: Non-positive amount, missing buyer name, or a
                token amount above the offer amount.
        """
        if offer_input.offer_amount is None or offer_input.offer_amount <= 0:
            raise ValidationError(
                'Offer amount must be greater than 0',
                context={'offer_amount': offer_input.offer_amount},
            )
        if not (offer_input.buyer_name or '').strip():
            raise ValidationError('Buyer name is required')
        if offer_input.token_amount is not None:
            if offer_input.token_amount < 0:
                raise ValidationError('Token money cannot be negative')
            if offer_input.token_amount > offer_input.offer_amount:
                raise ValidationError(
                    'Token money cannot exceed offer amount',
                    context={
                        'token_amount': offer_input.token_amount,
                        'offer_amount': offer_input.offer_amount,
                    },
                )

    @staticmethod
    def _require_open_cycle(cycle: SellCycle) -> None:
        if not cycle.is_open:
            raise OfferStateError(
                f"Sell cycle is {cycle.status} and no longer takes offers",
                context={'sell_cycle_id': cycle.id, 'status': cycle.status},
            )

    @staticmethod
    def _on_offer_received(cycle: SellCycle) -> None:
        if cycle.status == SellCycleStatus.LISTED.value:
            cycle.status = SellCycleStatus.OFFER_RECEIVED.value
        cycle.updated_at = utc_now()

    # =========================================================================
    # Submission
    # =========================================================================

    def add_offer(self, sell_cycle_id: str, offer_input: OfferInput) -> Offer:
        """Record an offer brought in directly by the listing agent."""
        cycle = self._require_sell_cycle(sell_cycle_id)
        self.validate_offer_input(offer_input)
        self._require_open_cycle(cycle)

        offer = Offer(**offer_input.model_dump(exclude_none=True), source_type=OfferSourceType.MANUAL)
        cycle.offers.append(offer)
        self._on_offer_received(cycle)
        self.repository.save_sell_cycle(cycle)
        logger.info(
            'offer_pipeline.offer_added',
            sell_cycle_id=cycle.id,
            offer_id=offer.id,
            offer_amount=offer.offer_amount,
        )
        return offer

    def submit_cross_agent_offer(self, sell_cycle_id: str, offer_input: OfferInput) -> Offer:
        """
        Submit an offer on another agent's shared sell cycle.

        Raises:
            NotFoundError: Unknown cycle, requirement or purchase cycle.
            ValidationError: Bad amounts, missing buyer or submitting agent,
                the listing agent submitting on their own cycle, or a linked
                purchase cycle for another property.
            CycleNotSharedError: The cycle is not shared.
            OfferStateError: The cycle no longer takes offers, or the linked
                purchase cycle is closed or tied to a deal.
        """
        cycle = self._require_sell_cycle(sell_cycle_id)
        submitter = offer_input.submitted_by_agent_id

        requirement = None
        if offer_input.buyer_requirement_id:
            requirement = self.repository.get_buyer_requirement(offer_input.buyer_requirement_id)
            if requirement is None:
                raise NotFoundError(
                    'Buyer requirement not found',
                    context={'buyer_requirement_id': offer_input.buyer_requirement_id},
                )
            if not offer_input.buyer_name:
                offer_input = offer_input.model_copy(
                    update={
                        'buyer_id': offer_input.buyer_id or requirement.buyer_id,
                        'buyer_name': requirement.buyer_name,
                        'buyer_contact': offer_input.buyer_contact or requirement.buyer_contact,
                    }
                )

        self.validate_offer_input(offer_input)
        if not cycle.sharing.is_shared:
            raise CycleNotSharedError(
                'Cannot submit offer - cycle is not shared',
                context={'sell_cycle_id': cycle.id},
            )
        if not submitter:
            raise ValidationError('Submitting agent is required for a cross-agent offer')
        if submitter == cycle.agent_id:
            raise ValidationError(
                'Listing agent cannot submit a cross-agent offer on their own cycle',
                context={'sell_cycle_id': cycle.id, 'agent_id': submitter},
            )
        self._require_open_cycle(cycle)

        if offer_input.linked_purchase_cycle_id:
            linked = self.repository.get_purchase_cycle(offer_input.linked_purchase_cycle_id)
            if linked is None:
                raise NotFoundError(
                    'Purchase cycle not found',
                    context={'purchase_cycle_id': offer_input.linked_purchase_cycle_id},
                )
            self._require_linkable_purchase_cycle(linked, cycle)

        if offer_input.match_id:
            source = OfferSourceType.MATCH
        elif offer_input.linked_purchase_cycle_id:
            source = OfferSourceType.PURCHASE_CYCLE
        elif requirement is not None:
            source = OfferSourceType.BUYER_REQUIREMENT
        else:
            source = OfferSourceType.MANUAL

        offer = Offer(
            **offer_input.model_dump(exclude_none=True),
            source_type=source,
            buyer_agent_id=submitter,
            buyer_agent_name=offer_input.submitted_by_agent_name,
            coordination_required=True,
        )
        cycle.offers.append(offer)
        self._on_offer_received(cycle)
        self.repository.save_sell_cycle(cycle)

        log = logger.bind(sell_cycle_id=cycle.id, offer_id=offer.id, submitted_by=submitter)
        log.info('offer_pipeline.cross_agent_offer_submitted', offer_amount=offer.offer_amount)

        if offer.match_id:
            self._update_match_best_effort(
                offer.match_id, status=MatchStatus.OFFER_SUBMITTED.value, offer_id=offer.id
            )
        self._notify(
            Notification(
                user_id=cycle.agent_id,
                type=NotificationType.CROSS_AGENT_OFFER,
                priority=NotificationPriority.HIGH,
                title='New cross-agent offer',
                message=(
                    f"{offer.submitted_by_agent_name or submitter} submitted an offer of "
                    f"{offer.offer_amount:,.0f} for {offer.buyer_name}"
                ),
                entity_type='sell-cycle',
                entity_id=cycle.id,
                metadata={'offer_id': offer.id, 'submitted_by': submitter},
                dedupe_key=f"{offer.id}:submitted",
            )
        )
        return offer

    def submit_offer_from_match(
        self,
        match_id: str,
        agent_id: str,
        agent_name: str | None = None,
        agent_contact: str | None = None,
        offer_amount: float | None = None,
    ) -> Offer:
        """Submit a cross-agent offer for a match's requirement, at asking price by default."""
        match = self.repository.get_match(match_id)
        if match is None:
            raise NotFoundError('Match not found', context={'match_id': match_id})
        if match.cycle_type != 'sell':
            raise ValidationError(
                'Offers from matches are supported for sell cycles only',
                context={'match_id': match_id, 'cycle_type': match.cycle_type},
            )
        requirement = self.repository.get_buyer_requirement(match.requirement_id)
        if requirement is None:
            raise NotFoundError(
                'Buyer requirement not found', context={'buyer_requirement_id': match.requirement_id}
            )
        cycle = self._require_sell_cycle(match.cycle_id)

        return self.submit_cross_agent_offer(
            cycle.id,
            OfferInput(
                buyer_id=requirement.buyer_id,
                buyer_name=requirement.buyer_name,
                buyer_contact=requirement.buyer_contact,
                offer_amount=offer_amount if offer_amount is not None else cycle.asking_price,
                buyer_requirement_id=requirement.id,
                submitted_by_agent_id=agent_id,
                submitted_by_agent_name=agent_name,
                submitted_by_agent_contact=agent_contact,
                match_id=match.match_id,
                match_score=match.match_score,
                notes=f"Submitted from property match ({match.match_score}% match)",
            ),
        )

    # =========================================================================
    # Acceptance
    # =========================================================================

    def accept_offer(
        self, sell_cycle_id: str, offer_id: str, accepted_by: str | None = None
    ) -> AcceptanceResult:
        """
        Accept an offer and derive its purchase cycle and deal.

        Raises:
            NotFoundError: Unknown cycle, offer, or linked purchase cycle;
                or a requirement-backed offer whose requirement is gone.
            OfferStateError: Offer not open, the cycle already has a winner, or the
                linked purchase cycle is closed or tied to another deal.
            ValidationError: The linked purchase cycle is for another property.
            AcceptanceError: A downstream step failed; all writes were rolled back.
            RollbackError: A downstream step failed and the rollback failed too.
        """
        with logging_context(user_id=accepted_by):
            cycle = self._require_sell_cycle(sell_cycle_id)
            offer = self._require_offer(cycle, offer_id)
            self._require_open_offer(cycle, offer, 'accept')
            if cycle.accepted_offers or cycle.status in (
                SellCycleStatus.UNDER_CONTRACT.value,
                SellCycleStatus.SOLD.value,
                SellCycleStatus.CANCELLED.value,
            ):
                raise OfferStateError(
                    'Sell cycle already has an accepted offer or is closed',
                    context={'sell_cycle_id': cycle.id, 'status': cycle.status},
                )
            self._check_purchase_cycle_sources(cycle, offer)

            log = logger.bind(sell_cycle_id=cycle.id, offer_id=offer.id)
            timer = PipelineTimer()
            agreed_price = offer.agreed_amount
            snapshot = self.repository.snapshot(_ACCEPTANCE_COLLECTIONS)

            try:
                with timer.stage('mark_winner'):
                    rejected_ids = self.mark_winner(cycle, offer)
                with timer.stage('resolve_purchase_cycle'):
                    purchase_cycle, resolution, requirement = self.resolve_purchase_cycle(
                        cycle, offer, agreed_price
                    )
                with timer.stage('create_deal'):
                    deal = self.deal_builder.create_deal_from_offer(
                        cycle,
                        offer,
                        purchase_cycle=purchase_cycle,
                        buyer_requirement=requirement,
                        agreed_price=agreed_price,
                        created_by=accepted_by,
                    )
                with timer.stage('cross_link'):
                    self.cross_link(cycle, offer, purchase_cycle, deal)
            except Exception as exc:
                context = {'sell_cycle_id': cycle.id, 'offer_id': offer.id, 'cause': str(exc)}
                if not self._rollback(snapshot, log):
                    raise RollbackError(
                        'Offer acceptance failed and the rollback did not complete; '
                        'the store needs repair before retrying',
                        context={**context, 'rollback_failed': True},
                    ) from exc
                log.error('offer_pipeline.accept_rolled_back', error=str(exc), error_type=type(exc).__name__)
                raise AcceptanceError(
                    'Offer acceptance failed and was rolled back; it is safe to retry',
                    context=context,
                ) from exc

            result = AcceptanceResult(
                sell_cycle=cycle,
                offer=offer,
                deal=deal,
                purchase_cycle=purchase_cycle,
                purchase_cycle_resolution=resolution,
                rejected_offer_ids=rejected_ids,
            )

            with timer.stage('follow_up'):
                if offer.match_id:
                    self._update_match_best_effort(
                        offer.match_id, status=MatchStatus.DEAL_CREATED.value, deal_id=deal.id
                    )
                result.notifications_delivered = self._notify_deal_created(deal, cycle)

            result.stage_timings = timer.summary()
            log.info(
                'offer_pipeline.offer_accepted',
                deal_id=deal.id,
                deal_number=deal.deal_number,
                purchase_cycle_id=purchase_cycle.id if purchase_cycle else None,
                resolution=resolution,
                rejected=len(rejected_ids),
                timing=result.stage_timings,
            )
            return result

    def _check_purchase_cycle_sources(self, cycle: SellCycle, offer: Offer) -> None:
        """Fail before any write when the offer points at entities that are gone or unusable."""
        if offer.linked_purchase_cycle_id:
            linked = self.repository.get_purchase_cycle(offer.linked_purchase_cycle_id)
            if linked is None:
                raise NotFoundError(
                    'Linked purchase cycle not found',
                    context={'purchase_cycle_id': offer.linked_purchase_cycle_id},
                )
            self._require_linkable_purchase_cycle(linked, cycle)
            return
        if offer.buyer_requirement_id and offer.buyer_agent_id:
            if self.repository.get_buyer_requirement(offer.buyer_requirement_id) is None:
                raise NotFoundError(
                    'Buyer requirement not found',
                    context={'buyer_requirement_id': offer.buyer_requirement_id},
                )

    @staticmethod
    def _require_linkable_purchase_cycle(purchase_cycle: PurchaseCycle, cycle: SellCycle) -> None:
        """A linked purchase cycle must pursue this property and not belong to another deal."""
        if purchase_cycle.property_id != cycle.property_id:
            raise ValidationError(
                'Linked purchase cycle is for a different property',
                context={
                    'purchase_cycle_id': purchase_cycle.id,
                    'purchase_cycle_property_id': purchase_cycle.property_id,
                    'property_id': cycle.property_id,
                },
            )
        if purchase_cycle.is_closed:
            raise OfferStateError(
                'Linked purchase cycle is already closed or tied to a deal',
                context={
                    'purchase_cycle_id': purchase_cycle.id,
                    'status': purchase_cycle.status,
                    'linked_deal_id': purchase_cycle.linked_deal_id,
                },
            )

    def mark_winner(self, cycle: SellCycle, offer: Offer) -> list[str]:
        """Step 1: accept one offer, reject open siblings. Returns rejected ids."""
        today_ = today()
        now = utc_now()
        rejected = []
        for other in cycle.offers:
            if other.id == offer.id:
                continue
            if other.status in OPEN_OFFER_STATUSES:
                other.status = OfferStatus.REJECTED.value
                other.response_date = today_
                other.listing_agent_notes = other.listing_agent_notes or 'Another offer was accepted'
                other.updated_at = now
                rejected.append(other.id)

        offer.status = OfferStatus.ACCEPTED.value
        offer.response_date = today_
        offer.updated_at = now
        cycle.status = SellCycleStatus.UNDER_CONTRACT.value
        cycle.accepted_offer_id = offer.id
        cycle.updated_at = now
        self.repository.save_sell_cycle(cycle)
        return rejected

    def resolve_purchase_cycle(
        self, cycle: SellCycle, offer: Offer, agreed_price: float
    ) -> tuple[PurchaseCycle | None, str, BuyerRequirement | None]:
        """
        Step 2: find or create the buyer-side purchase cycle and mark it accepted.

        Returns:
            (purchase cycle or None, resolution, buyer requirement or None)
        """
        requirement = None
        if offer.buyer_requirement_id:
            requirement = self.repository.get_buyer_requirement(offer.buyer_requirement_id)

        if offer.linked_purchase_cycle_id:
            purchase_cycle = self.repository.get_purchase_cycle(offer.linked_purchase_cycle_id)
            if purchase_cycle is None:
                raise NotFoundError(
                    'Linked purchase cycle not found',
                    context={'purchase_cycle_id': offer.linked_purchase_cycle_id},
                )
            self._require_linkable_purchase_cycle(purchase_cycle, cycle)
            resolution = 'linked'
        elif offer.buyer_requirement_id and offer.buyer_agent_id:
            purchase_cycle = self.repository.find_purchase_cycle_for_requirement(
                offer.buyer_requirement_id, cycle.property_id
            )
            resolution = 'reused'
            if purchase_cycle is None:
                if requirement is None:
                    raise NotFoundError(
                        'Buyer requirement not found',
                        context={'buyer_requirement_id': offer.buyer_requirement_id},
                    )
                purchase_cycle = self.create_purchase_cycle_from_requirement(requirement, cycle, offer)
                resolution = 'created'
        else:
            return None, 'none', requirement

        self.mark_purchase_cycle_accepted(purchase_cycle, agreed_price)
        logger.info(
            'offer_pipeline.purchase_cycle_resolved',
            purchase_cycle_id=purchase_cycle.id,
            resolution=resolution,
        )
        return purchase_cycle, resolution, requirement

    def create_purchase_cycle_from_requirement(
        self, requirement: BuyerRequirement, cycle: SellCycle, offer: Offer
    ) -> PurchaseCycle:
        """Materialize the buyer agent's purchase cycle for this property."""
        purchase_cycle = PurchaseCycle(
            property_id=cycle.property_id,
            purchaser_type=PurchaserType.CLIENT,
            purchaser_id=requirement.buyer_id or offer.buyer_id,
            purchaser_name=requirement.buyer_name or offer.buyer_name,
            purchaser_contact=requirement.buyer_contact or offer.buyer_contact,
            seller_id=cycle.seller_id,
            seller_name=cycle.seller_name,
            asking_price=cycle.asking_price,
            offer_amount=offer.offer_amount,
            agent_id=offer.buyer_agent_id or requirement.agent_id,
            agent_name=offer.buyer_agent_name or requirement.agent_name,
            buyer_requirement_id=requirement.id,
            buyer_budget_min=requirement.min_budget,
            buyer_budget_max=requirement.max_budget,
            sell_cycle_id=cycle.id,
            offer_date=offer.offered_date,
            notes=f"Created on acceptance of offer {offer.id}",
        )
        self.repository.save_purchase_cycle(purchase_cycle)

        prop = self.repository.get_property(cycle.property_id)
        if prop is not None:
            if purchase_cycle.id not in prop.active_purchase_cycle_ids:
                prop.active_purchase_cycle_ids.append(purchase_cycle.id)
            if purchase_cycle.id not in prop.cycle_history.purchase_cycles:
                prop.cycle_history.purchase_cycles.append(purchase_cycle.id)
            prop.updated_at = utc_now()
            self.repository.save_property(prop)

        logger.info(
            'offer_pipeline.purchase_cycle_created',
            purchase_cycle_id=purchase_cycle.id,
            buyer_requirement_id=requirement.id,
            property_id=cycle.property_id,
        )
        return purchase_cycle

    def mark_purchase_cycle_accepted(self, purchase_cycle: PurchaseCycle, agreed_price: float) -> None:
        purchase_cycle.status = PurchaseCycleStatus.ACCEPTED.value
        purchase_cycle.negotiated_price = agreed_price
        purchase_cycle.acceptance_date = today()
        purchase_cycle.updated_at = utc_now()
        self.repository.save_purchase_cycle(purchase_cycle)

    def cross_link(
        self, cycle: SellCycle, offer: Offer, purchase_cycle: PurchaseCycle | None, deal: Deal
    ) -> None:
        """Step 4: link sell cycle, offer and purchase cycle to the deal and each other."""
        now = utc_now()
        cycle.linked_deal_id = deal.id
        cycle.created_deal_id = deal.id
        if purchase_cycle is not None:
            cycle.winning_purchase_cycle_id = purchase_cycle.id
            offer.linked_purchase_cycle_id = purchase_cycle.id
        cycle.updated_at = now
        self.repository.save_sell_cycle(cycle)

        if purchase_cycle is not None:
            purchase_cycle.linked_deal_id = deal.id
            purchase_cycle.created_deal_id = deal.id
            purchase_cycle.linked_sell_cycle_id = cycle.id
            purchase_cycle.sell_cycle_id = purchase_cycle.sell_cycle_id or cycle.id
            purchase_cycle.updated_at = now
            self.repository.save_purchase_cycle(purchase_cycle)

    def _rollback(self, snapshot: dict[str, list[dict[str, Any]]], log: Any) -> bool:
        """Restore the acceptance snapshot. Returns False if the restore itself failed."""
        try:
            self.repository.restore(snapshot)
        except Exception as exc:
            log.error('offer_pipeline.rollback_failed', error=str(exc), error_type=type(exc).__name__)
            return False
        return True

    # =========================================================================
    # Rejection / counter / withdrawal
    # =========================================================================

    def reject_offer(
        self, sell_cycle_id: str, offer_id: str, reason: str | None = None
    ) -> Offer:
        """Reject one offer. Only that offer changes."""
        cycle = self._require_sell_cycle(sell_cycle_id)
        offer = self._require_offer(cycle, offer_id)
        self._require_open_offer(cycle, offer, 'reject')

        offer.status = OfferStatus.REJECTED.value
        offer.response_date = today()
        if reason:
            offer.listing_agent_notes = reason
        offer.updated_at = utc_now()
        self.repository.save_sell_cycle(cycle)
        logger.info('offer_pipeline.offer_rejected', sell_cycle_id=cycle.id, offer_id=offer.id)

        if offer.submitted_by_agent_id and offer.submitted_by_agent_id != cycle.agent_id:
            self._notify(
                Notification(
                    user_id=offer.submitted_by_agent_id,
                    type=NotificationType.OFFER_REJECTED,
                    priority=NotificationPriority.MEDIUM,
                    title='Offer rejected',
                    message=(
                        f"Your offer of {offer.offer_amount:,.0f} for {offer.buyer_name} was rejected"
                        + (f": {reason}" if reason else '')
                    ),
                    entity_type='sell-cycle',
                    entity_id=cycle.id,
                    metadata={'offer_id': offer.id},
                    dedupe_key=f"{offer.id}:rejected",
                )
            )
        return offer

    def counter_offer(
        self,
        sell_cycle_id: str,
        offer_id: str,
        counter_amount: float,
        note: str | None = None,
    ) -> Offer:
        """Counter an offer; both amounts are kept and the cycle enters negotiation."""
        cycle = self._require_sell_cycle(sell_cycle_id)
        offer = self._require_offer(cycle, offer_id)
        self._require_open_offer(cycle, offer, 'counter')
        if counter_amount is None or counter_amount <= 0:
            raise ValidationError(
                'Counter offer amount must be greater than 0',
                context={'counter_amount': counter_amount},
            )

        offer.status = OfferStatus.COUNTERED.value
        offer.counter_offer_amount = counter_amount
        offer.response_date = today()
        if note:
            offer.agent_notes = note
        offer.updated_at = utc_now()
        if cycle.is_open:
            cycle.status = SellCycleStatus.NEGOTIATION.value
        cycle.updated_at = utc_now()
        self.repository.save_sell_cycle(cycle)
        logger.info(
            'offer_pipeline.offer_countered',
            sell_cycle_id=cycle.id,
            offer_id=offer.id,
            offer_amount=offer.offer_amount,
            counter_amount=counter_amount,
        )
        return offer

    def withdraw_offer(self, sell_cycle_id: str, offer_id: str, note: str | None = None) -> Offer:
        """Withdraw one offer on the buyer's behalf."""
        cycle = self._require_sell_cycle(sell_cycle_id)
        offer = self._require_offer(cycle, offer_id)
        self._require_open_offer(cycle, offer, 'withdraw')

        offer.status = OfferStatus.WITHDRAWN.value
        offer.response_date = today()
        if note:
            offer.notes = note
        offer.updated_at = utc_now()
        self.repository.save_sell_cycle(cycle)
        logger.info('offer_pipeline.offer_withdrawn', sell_cycle_id=cycle.id, offer_id=offer.id)
        return offer

    # =========================================================================
    # Sharing
    # =========================================================================

    def toggle_sharing(
        self, sell_cycle_id: str, is_shared: bool, user_id: str, user_name: str | None = None
    ) -> SellCycle:
        """Share or unshare a sell cycle, appending to its share history."""
        cycle = self._require_sell_cycle(sell_cycle_id)
        now = utc_now()
        sharing = cycle.sharing
        sharing.is_shared = is_shared
        sharing.share_level = (ShareLevel.ORGANIZATION if is_shared else ShareLevel.NONE).value
        if is_shared:
            sharing.shared_at = now
        sharing.share_history.append(
            ShareEvent(
                action='shared' if is_shared else 'unshared',
                timestamp=now,
                user_id=user_id,
                user_name=user_name,
            )
        )
        cycle.updated_at = now
        self.repository.save_sell_cycle(cycle)
        logger.info('offer_pipeline.sharing_toggled', sell_cycle_id=cycle.id, is_shared=is_shared)
        return cycle

    # =========================================================================
    # Queries
    # =========================================================================

    def get_offers_by_buyer_requirement(self, requirement_id: str) -> list[CycleOffer]:
        return [
            CycleOffer(sell_cycle_id=c.id, property_id=c.property_id, offer=o)
            for c in self.repository.get_sell_cycles()
            for o in c.offers
            if o.buyer_requirement_id == requirement_id
        ]

    def get_offers_submitted_by_agent(self, agent_id: str) -> list[CycleOffer]:
        return [
            CycleOffer(sell_cycle_id=c.id, property_id=c.property_id, offer=o)
            for c in self.repository.get_sell_cycles()
            for o in c.offers
            if o.submitted_by_agent_id == agent_id
        ]

    # =========================================================================
    # Best-effort side effects
    # =========================================================================

    def _update_match_best_effort(self, match_id: str, **updates: Any) -> None:
        try:
            match = self.repository.get_match(match_id)
            if match is None:
                logger.warning('offer_pipeline.match_missing', match_id=match_id)
                return
            updates['updated_at'] = utc_now()
            self.repository.save_match(match.model_copy(update=updates))
        except Exception as exc:
            logger.warning('offer_pipeline.match_update_failed', match_id=match_id, error=str(exc))

    def _notify(self, notification: Notification) -> bool:
        try:
            return self.dispatcher.dispatch(notification)
        except Exception as exc:
            logger.warning('offer_pipeline.notification_failed', error=str(exc))
            return False

    def _notify_deal_created(self, deal: Deal, cycle: SellCycle) -> int:
        delivered = 0
        recipients = [(deal.agents.primary.id, 'listing')]
        secondary = deal.agents.secondary
        if secondary is not None and secondary.id != deal.agents.primary.id:
            recipients.append((secondary.id, 'buyer-side'))

        for user_id, side in recipients:
            sent = self._notify(
                Notification(
                    user_id=user_id,
                    type=NotificationType.DEAL_CREATED,
                    priority=NotificationPriority.HIGH,
                    title=f"Deal {deal.deal_number} created",
                    message=(
                        f"Offer accepted at {deal.financial.agreed_price:,.0f}; "
                        f"you are the {side} agent on this deal"
                    ),
                    entity_type='deal',
                    entity_id=deal.id,
                    metadata={'sell_cycle_id': cycle.id, 'deal_number': deal.deal_number},
                    dedupe_key=f"{deal.id}:deal-created:{user_id}",
                )
            )
            delivered += int(sent)
        return delivered
