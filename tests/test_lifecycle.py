"""
Tests for CycleLifecycle and deal-to-cycle sync.

Tests cover:
- create_sell_cycle() registers the listing and refuses a second active one
- cancel_sell_cycle() / complete_sale() close the cycle and retire it from
  the property (active ids -> cycle history)
- A sell cycle with an open deal is closed through the deal only
- Completing the last deal stage marks the sell cycle sold and the purchase
  cycle completed; cancel_deal() cancels both
- A failing sync leaves deal and cycles as they were
- The property can be relisted once its cycle is closed

Run with: pytest tests/test_lifecycle.py -v
"""

from datetime import date
from unittest.mock import MagicMock

import pytest

from brokerage_graph.errors import NotFoundError, OfferStateError, StoreWriteError, ValidationError
from brokerage_graph.models import Offer, OfferInput, SellCycle, SharingSettings
from brokerage_graph.pipeline.deals import STAGE_ORDER, DealBuilder
from brokerage_graph.pipeline.graph import TransactionGraphResolver
from brokerage_graph.pipeline.lifecycle import CycleLifecycle
from brokerage_graph.pipeline.offers import OfferPipeline


@pytest.fixture
def lifecycle(seeded_repository):
    return CycleLifecycle(seeded_repository)


@pytest.fixture
def pipeline(seeded_repository, dispatcher):
    return OfferPipeline(seeded_repository, dispatcher=dispatcher)


@pytest.fixture
def accepted(pipeline):
    """sell_1 under contract with a deal and a purchase cycle for req_1."""
    offer = pipeline.submit_cross_agent_offer(
        'sell_1',
        OfferInput(
            buyer_name='Sara Malik',
            offer_amount=48_000_000,
            buyer_requirement_id='req_1',
            submitted_by_agent_id='agent_b',
        ),
    )
    return pipeline.accept_offer('sell_1', offer.id)


def _new_listing(cycle_id: str = 'sell_2') -> SellCycle:
    return SellCycle(
        id=cycle_id,
        property_id='prop_1',
        agent_id='agent_a',
        agent_name='Ayesha',
        seller_name='Kamran Sheikh',
        asking_price=52_000_000,
        sharing=SharingSettings(is_shared=True),
    )


# =============================================================================
# Listing
# =============================================================================


class TestCreateSellCycle:
    def test_second_active_listing_refused(self, lifecycle, seeded_repository):
        with pytest.raises(OfferStateError):
            lifecycle.create_sell_cycle(_new_listing())

        assert seeded_repository.get_sell_cycle('sell_2') is None

    def test_relist_after_cancel(self, lifecycle, seeded_repository):
        lifecycle.cancel_sell_cycle('sell_1', reason='Seller withdrew')

        lifecycle.create_sell_cycle(_new_listing())

        prop = seeded_repository.get_property('prop_1')
        assert prop.active_sell_cycle_ids == ['sell_2']
        assert prop.cycle_history.sell_cycles == ['sell_1', 'sell_2']

    def test_unknown_property(self, lifecycle):
        with pytest.raises(NotFoundError):
            lifecycle.create_sell_cycle(_new_listing().model_copy(update={'property_id': 'prop_missing'}))


# =============================================================================
# Closing a listing directly
# =============================================================================


class TestCancelSellCycle:
    def test_cancel_retires_cycle_and_rejects_open_offers(self, lifecycle, pipeline, seeded_repository):
        offer = pipeline.add_offer('sell_1', OfferInput(buyer_name='Walk-in', offer_amount=45_000_000))

        lifecycle.cancel_sell_cycle('sell_1', reason='Seller withdrew')

        cycle = seeded_repository.get_sell_cycle('sell_1')
        assert cycle.status == 'cancelled'
        assert cycle.notes == 'Cancelled: Seller withdrew'
        assert cycle.find_offer(offer.id).status == 'rejected'
        assert cycle.find_offer(offer.id).listing_agent_notes == 'Listing cancelled'
        prop = seeded_repository.get_property('prop_1')
        assert prop.active_sell_cycle_ids == []
        assert prop.cycle_history.sell_cycles == ['sell_1']

    def test_cancelled_cycle_takes_no_offers(self, lifecycle, pipeline):
        lifecycle.cancel_sell_cycle('sell_1')

        with pytest.raises(OfferStateError):
            pipeline.add_offer('sell_1', OfferInput(buyer_name='Walk-in', offer_amount=45_000_000))

    def test_already_closed(self, lifecycle):
        lifecycle.cancel_sell_cycle('sell_1')

        with pytest.raises(OfferStateError):
            lifecycle.cancel_sell_cycle('sell_1')

    def test_open_deal_blocks_direct_cancel(self, lifecycle, seeded_repository, accepted):
        with pytest.raises(OfferStateError):
            lifecycle.cancel_sell_cycle('sell_1')

        assert seeded_repository.get_sell_cycle('sell_1').status == 'under-contract'

    def test_unknown_cycle(self, lifecycle):
        with pytest.raises(NotFoundError):
            lifecycle.cancel_sell_cycle('sell_missing')


class TestCompleteSale:
    def test_sale_recorded(self, lifecycle, seeded_repository):
        cycle = lifecycle.complete_sale('sell_1', sold_price=49_000_000, sold_date=date(2026, 5, 1))

        assert cycle.status == 'sold'
        assert cycle.sold_date == date(2026, 5, 1)
        assert cycle.sold_price == 49_000_000
        prop = seeded_repository.get_property('prop_1')
        assert 'sell_1' not in prop.active_sell_cycle_ids
        assert 'sell_1' in prop.cycle_history.sell_cycles

    def test_price_defaults_to_accepted_offer(self, lifecycle, seeded_repository):
        cycle = seeded_repository.get_sell_cycle('sell_1')
        cycle.offers.append(
            Offer(id='offer_won', buyer_name='Walk-in', offer_amount=47_000_000, status='accepted')
        )
        cycle.accepted_offer_id = 'offer_won'
        seeded_repository.save_sell_cycle(cycle)

        assert lifecycle.complete_sale('sell_1').sold_price == 47_000_000

    def test_open_deal_blocks_direct_sale(self, lifecycle, accepted):
        with pytest.raises(OfferStateError):
            lifecycle.complete_sale('sell_1')


# =============================================================================
# Deal sync
# =============================================================================


class TestDealSync:
    def test_completed_deal_closes_both_cycles(self, seeded_repository, accepted):
        builder = DealBuilder(seeded_repository)
        for stage in STAGE_ORDER:
            builder.complete_stage(accepted.deal.id, stage)

        deal = seeded_repository.get_deal(accepted.deal.id)
        cycle = seeded_repository.get_sell_cycle('sell_1')
        pc = seeded_repository.get_purchase_cycle(accepted.purchase_cycle.id)
        prop = seeded_repository.get_property('prop_1')

        assert deal.lifecycle.status == 'completed'
        assert cycle.status == 'sold'
        assert cycle.sold_date == deal.lifecycle.timeline.actual_closing_date.date()
        assert cycle.sold_price == deal.financial.agreed_price
        assert pc.status == 'completed'
        assert pc.completion_date == cycle.sold_date
        assert prop.active_sell_cycle_ids == []
        assert prop.active_purchase_cycle_ids == []
        assert pc.id in prop.cycle_history.purchase_cycles

    def test_completion_shows_in_timeline(self, seeded_repository, accepted):
        builder = DealBuilder(seeded_repository)
        for stage in STAGE_ORDER:
            builder.complete_stage(accepted.deal.id, stage)

        kinds = [e.event for e in TransactionGraphResolver(seeded_repository).get_unified_timeline(accepted.deal.id)]

        assert {'sold', 'purchase-completed', 'deal-completed'} <= set(kinds)

    def test_cancelled_deal_cancels_both_cycles(self, seeded_repository, accepted):
        deal = DealBuilder(seeded_repository).cancel_deal(accepted.deal.id, reason='Finance fell through')

        cycle = seeded_repository.get_sell_cycle('sell_1')
        pc = seeded_repository.get_purchase_cycle(accepted.purchase_cycle.id)
        assert deal.lifecycle.status == 'cancelled'
        assert deal.cancellation_reason == 'Finance fell through'
        assert seeded_repository.get_deal(deal.id).cancelled_at is not None
        assert cycle.status == 'cancelled'
        assert cycle.notes == 'Cancelled: Finance fell through'
        assert pc.status == 'cancelled'
        assert seeded_repository.get_property('prop_1').active_sell_cycle_ids == []

    def test_closed_deal_cannot_be_cancelled(self, seeded_repository, accepted):
        builder = DealBuilder(seeded_repository)
        builder.cancel_deal(accepted.deal.id)

        with pytest.raises(ValidationError):
            builder.cancel_deal(accepted.deal.id)

    def test_unknown_deal(self, seeded_repository):
        with pytest.raises(NotFoundError):
            DealBuilder(seeded_repository).cancel_deal('deal_missing')

    def test_failed_sync_restores_deal_and_cycles(self, seeded_repository, accepted):
        builder = DealBuilder(seeded_repository)
        builder.cycles = MagicMock()
        builder.cycles.sync_deal_to_cycles.side_effect = StoreWriteError('store unavailable')
        before = seeded_repository.snapshot()

        with pytest.raises(StoreWriteError):
            builder.cancel_deal(accepted.deal.id)

        assert seeded_repository.snapshot() == before
        assert seeded_repository.get_deal(accepted.deal.id).lifecycle.status == 'active'

    def test_relist_after_cancelled_deal_gets_new_purchase_cycle(
        self, seeded_repository, pipeline, lifecycle, accepted
    ):
        DealBuilder(seeded_repository).cancel_deal(accepted.deal.id)
        lifecycle.create_sell_cycle(_new_listing())
        offer = pipeline.submit_cross_agent_offer(
            'sell_2',
            OfferInput(
                buyer_name='Sara Malik',
                offer_amount=51_000_000,
                buyer_requirement_id='req_1',
                submitted_by_agent_id='agent_b',
            ),
        )

        second = pipeline.accept_offer('sell_2', offer.id)

        assert second.purchase_cycle_resolution == 'created'
        assert second.purchase_cycle.id != accepted.purchase_cycle.id
        first_graph = TransactionGraphResolver(seeded_repository).get_transaction_graph(
            accepted.purchase_cycle.id, 'purchase_cycle'
        )
        assert first_graph.deal.id == accepted.deal.id
