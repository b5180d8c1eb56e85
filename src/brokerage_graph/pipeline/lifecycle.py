"""
Listing lifecycle: opening and closing sell cycles, and keeping both cycles
of a deal in step with the deal's status.

A property holds at most one active (not sold, not cancelled) sell cycle.
Closing a sell cycle removes it from the property's active_sell_cycle_ids
and records it in cycle_history.sell_cycles, after which the property can be
listed again.

Deal status drives the cycles it links:
    completed -> sell cycle sold, purchase cycle completed
    cancelled -> sell cycle cancelled, purchase cycle cancelled
A sell cycle with an active deal is closed through the deal, never directly.
"""

from datetime import date

import structlog

from ..errors import NotFoundError, OfferStateError
from ..models.cycles import (
    OPEN_OFFER_STATUSES,
    OfferStatus,
    PurchaseCycle,
    PurchaseCycleStatus,
    SellCycle,
    SellCycleStatus,
)
from ..models.deal import Deal, DealStatus
from ..repository import BrokerageRepository
from ..utils import today, utc_now

logger = structlog.get_logger(__name__)


class CycleLifecycle:
    """Opens and closes sell cycles and syncs deal outcomes onto cycles."""

    def __init__(self, repository: BrokerageRepository):
        self.repository = repository

    # =========================================================================
    # Listing
    # =========================================================================

    def active_sell_cycle(self, property_id: str) -> SellCycle | None:
        return next(
            (c for c in self.repository.get_sell_cycles() if c.property_id == property_id and c.is_active),
            None,
        )

    def create_sell_cycle(self, sell_cycle: SellCycle) -> SellCycle:
        """
        List a property by saving a new sell cycle and registering it on the property.

        Raises:
            NotFoundError: The property does not exist.
            OfferStateError: The property already has an active sell cycle.
        """
        prop = self.repository.get_property(sell_cycle.property_id)
        if prop is None:
            raise NotFoundError('Property not found', context={'property_id': sell_cycle.property_id})
        existing = self.active_sell_cycle(prop.id)
        if existing is not None and existing.id != sell_cycle.id:
            raise OfferStateError(
                'Property already has an active sell cycle',
                context={'property_id': prop.id, 'sell_cycle_id': existing.id, 'status': existing.status},
            )

        self.repository.save_sell_cycle(sell_cycle)
        if sell_cycle.id not in prop.active_sell_cycle_ids:
            prop.active_sell_cycle_ids.append(sell_cycle.id)
        if sell_cycle.id not in prop.cycle_history.sell_cycles:
            prop.cycle_history.sell_cycles.append(sell_cycle.id)
        prop.updated_at = utc_now()
        self.repository.save_property(prop)

        logger.info(
            'cycle_lifecycle.sell_cycle_created',
            sell_cycle_id=sell_cycle.id,
            property_id=prop.id,
            asking_price=sell_cycle.asking_price,
        )
        return sell_cycle

    # =========================================================================
    # Closing
    # =========================================================================

    def _require_closable(self, sell_cycle_id: str, action: str) -> SellCycle:
        cycle = self.repository.get_sell_cycle(sell_cycle_id)
        if cycle is None:
            raise NotFoundError('Sell cycle not found', context={'sell_cycle_id': sell_cycle_id})
        if not cycle.is_active:
            raise OfferStateError(
                f"Cannot {action} - sell cycle is already {cycle.status}",
                context={'sell_cycle_id': cycle.id, 'status': cycle.status},
            )
        if cycle.linked_deal_id:
            deal = self.repository.get_deal(cycle.linked_deal_id)
            if deal is not None and deal.lifecycle.status not in (
                DealStatus.COMPLETED.value,
                DealStatus.CANCELLED.value,
            ):
                raise OfferStateError(
                    f"Cannot {action} - sell cycle has an open deal; close the deal instead",
                    context={'sell_cycle_id': cycle.id, 'deal_id': deal.id},
                )
        return cycle

    def complete_sale(
        self, sell_cycle_id: str, sold_price: float | None = None, sold_date: date | None = None
    ) -> SellCycle:
        """
        Mark a sell cycle sold and retire it from its property.

        sold_price defaults to the accepted offer's agreed amount.

        Raises:
            NotFoundError: Unknown sell cycle.
            OfferStateError: The cycle is already closed or has an open deal.
        """
        cycle = self._require_closable(sell_cycle_id, 'complete sale')
        if sold_price is None and cycle.accepted_offer_id:
            accepted = cycle.find_offer(cycle.accepted_offer_id)
            sold_price = accepted.agreed_amount if accepted else None
        self._mark_sold(cycle, sold_date or today(), sold_price)
        return cycle

    def cancel_sell_cycle(self, sell_cycle_id: str, reason: str | None = None) -> SellCycle:
        """
        Cancel a listing. Open offers on it are rejected.

        Raises:
            NotFoundError: Unknown sell cycle.
            OfferStateError: The cycle is already closed or has an open deal.
        """
        cycle = self._require_closable(sell_cycle_id, 'cancel')
        today_ = today()
        now = utc_now()
        for offer in cycle.offers:
            if offer.status in OPEN_OFFER_STATUSES:
                offer.status = OfferStatus.REJECTED.value
                offer.response_date = today_
                offer.listing_agent_notes = offer.listing_agent_notes or 'Listing cancelled'
                offer.updated_at = now
        self._mark_cancelled(cycle, reason)
        return cycle

    def _mark_sold(self, cycle: SellCycle, sold_date: date, sold_price: float | None) -> None:
        cycle.status = SellCycleStatus.SOLD.value
        cycle.sold_date = sold_date
        cycle.sold_price = sold_price
        cycle.updated_at = utc_now()
        self.repository.save_sell_cycle(cycle)
        self._retire_sell_cycle(cycle)
        logger.info('cycle_lifecycle.sale_completed', sell_cycle_id=cycle.id, sold_price=sold_price)

    def _mark_cancelled(self, cycle: SellCycle, reason: str | None) -> None:
        cycle.status = SellCycleStatus.CANCELLED.value
        if reason:
            cycle.notes = f"Cancelled: {reason}"
        cycle.updated_at = utc_now()
        self.repository.save_sell_cycle(cycle)
        self._retire_sell_cycle(cycle)
        logger.info('cycle_lifecycle.sell_cycle_cancelled', sell_cycle_id=cycle.id, reason=reason)

    def _retire_sell_cycle(self, cycle: SellCycle) -> None:
        prop = self.repository.get_property(cycle.property_id)
        if prop is None:
            logger.warning('cycle_lifecycle.property_missing', sell_cycle_id=cycle.id, property_id=cycle.property_id)
            return
        if cycle.id in prop.active_sell_cycle_ids:
            prop.active_sell_cycle_ids.remove(cycle.id)
        if cycle.id not in prop.cycle_history.sell_cycles:
            prop.cycle_history.sell_cycles.append(cycle.id)
        prop.updated_at = utc_now()
        self.repository.save_property(prop)

    def _close_purchase_cycle(self, purchase_cycle: PurchaseCycle, status: str, when: date) -> None:
        purchase_cycle.status = status
        if status == PurchaseCycleStatus.COMPLETED.value:
            purchase_cycle.completion_date = when
        purchase_cycle.updated_at = utc_now()
        self.repository.save_purchase_cycle(purchase_cycle)

        prop = self.repository.get_property(purchase_cycle.property_id)
        if prop is not None:
            if purchase_cycle.id in prop.active_purchase_cycle_ids:
                prop.active_purchase_cycle_ids.remove(purchase_cycle.id)
            if purchase_cycle.id not in prop.cycle_history.purchase_cycles:
                prop.cycle_history.purchase_cycles.append(purchase_cycle.id)
            prop.updated_at = utc_now()
            self.repository.save_property(prop)

    # =========================================================================
    # Deal sync
    # =========================================================================

    def sync_deal_to_cycles(self, deal: Deal) -> None:
        """Carry a completed or cancelled deal's outcome onto its sell and purchase cycles."""
        status = deal.lifecycle.status
        if status == DealStatus.COMPLETED.value:
            closed_at = deal.lifecycle.timeline.actual_closing_date or deal.completed_at or utc_now()
            when = closed_at.date()
            sell_status = SellCycleStatus.SOLD.value
            purchase_status = PurchaseCycleStatus.COMPLETED.value
        elif status == DealStatus.CANCELLED.value:
            when = today()
            sell_status = SellCycleStatus.CANCELLED.value
            purchase_status = PurchaseCycleStatus.CANCELLED.value
        else:
            return

        cycle = self.repository.get_sell_cycle(deal.sell_cycle_id)
        if cycle is not None and cycle.status != sell_status:
            if sell_status == SellCycleStatus.SOLD.value:
                self._mark_sold(cycle, when, deal.financial.agreed_price)
            else:
                self._mark_cancelled(cycle, deal.cancellation_reason or f"Deal {deal.deal_number} cancelled")

        if deal.purchase_cycle_id:
            purchase_cycle = self.repository.get_purchase_cycle(deal.purchase_cycle_id)
            if purchase_cycle is not None and purchase_cycle.status != purchase_status:
                self._close_purchase_cycle(purchase_cycle, purchase_status, when)

        logger.info(
            'cycle_lifecycle.deal_synced',
            deal_id=deal.id,
            deal_status=status,
            sell_cycle_id=deal.sell_cycle_id,
            purchase_cycle_id=deal.purchase_cycle_id,
        )
