"""
Tests for DealBuilder.

Tests cover:
- Deal numbers PREFIX-YYYY-NNN, per-year sequence, collisions skipped
- Commission 60/40 with a buyer-side agent, 100/0 without
- Initial lifecycle: offer-accepted in progress, expected closing date
- complete_stage() advances stages and completes the deal on the last one,
  closing its sell cycle as sold

Run with: pytest tests/test_deals.py -v
"""

from datetime import datetime, timedelta, timezone

import pytest

from brokerage_graph.errors import NotFoundError, ValidationError
from brokerage_graph.models import DealStage, Offer, PurchaseCycle
from brokerage_graph.pipeline.deals import STAGE_ORDER, DealBuilder


@pytest.fixture
def builder(seeded_repository):
    return DealBuilder(seeded_repository, prefix='DEAL', expected_closing_days=60, primary_share=60.0)


@pytest.fixture
def offer():
    return Offer(id='offer_1', buyer_id='buyer_1', buyer_name='Sara Malik', offer_amount=50_000_000)


@pytest.fixture
def purchase_cycle():
    return PurchaseCycle(
        id='pc_1',
        property_id='prop_1',
        purchaser_name='Sara Malik',
        agent_id='agent_b',
        agent_name='Bilal',
        buyer_requirement_id='req_1',
    )


# =============================================================================
# Numbering
# =============================================================================


class TestDealNumbers:
    def test_first_number_of_year(self, builder):
        assert builder.next_deal_number(2025) == 'DEAL-2025-001'

    def test_sequence_advances_per_year(self, builder, sample_sell_cycle, offer):
        first = builder.create_deal_from_offer(sample_sell_cycle, offer)
        second = builder.create_deal_from_offer(sample_sell_cycle, offer.model_copy(update={'id': 'offer_2'}))

        year = first.created_at.year
        assert first.deal_number == f"DEAL-{year}-001"
        assert second.deal_number == f"DEAL-{year}-002"
        assert builder.next_deal_number(year + 1) == f"DEAL-{year + 1}-001"

    def test_collision_is_skipped(self, builder, seeded_repository, sample_sell_cycle, offer):
        # a single deal already holding -002 would otherwise collide with count + 1
        deal = builder.build_deal(sample_sell_cycle, offer)
        year = deal.created_at.year
        seeded_repository.save_deal(deal.model_copy(update={'deal_number': f"DEAL-{year}-002"}))

        assert builder.next_deal_number(year) == f"DEAL-{year}-003"

    def test_custom_prefix(self, seeded_repository):
        assert DealBuilder(seeded_repository, prefix='AGY').next_deal_number(2026) == 'AGY-2026-001'


# =============================================================================
# Commission and construction
# =============================================================================


class TestCommission:
    def test_split_between_two_agents(self, builder, sample_sell_cycle, offer, purchase_cycle):
        deal = builder.build_deal(sample_sell_cycle, offer, purchase_cycle=purchase_cycle)

        commission = deal.financial.commission
        assert commission.rate == 2.0
        assert commission.total == 1_000_000
        assert commission.split.primary_percentage == 60
        assert commission.split.primary_amount == 600_000
        assert commission.split.secondary_percentage == 40
        assert commission.split.secondary_amount == 400_000
        assert deal.agents.primary.id == 'agent_a'
        assert deal.agents.secondary.id == 'agent_b'

    def test_single_agent_keeps_all(self, builder, sample_sell_cycle, offer):
        split = builder.build_deal(sample_sell_cycle, offer).financial.commission.split

        assert split.primary_percentage == 100
        assert split.primary_amount == 1_000_000
        assert split.secondary_amount == 0

    def test_amounts_rounded_to_cents(self, builder):
        commission = builder.build_commission(1_234_567.89, 1.5, two_agents=True)

        assert commission.total == 18_518.52
        assert commission.split.primary_amount + commission.split.secondary_amount == pytest.approx(
            commission.total
        )

    def test_non_positive_price_rejected(self, builder, sample_sell_cycle, offer):
        with pytest.raises(ValidationError):
            builder.build_deal(sample_sell_cycle, offer, agreed_price=0)


class TestInitialLifecycle:
    def test_starts_at_offer_accepted(self, builder, sample_sell_cycle, offer, sample_buyer_requirement):
        accepted_at = datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)

        deal = builder.build_deal(
            sample_sell_cycle, offer, buyer_requirement=sample_buyer_requirement, accepted_at=accepted_at
        )

        timeline = deal.lifecycle.timeline
        assert deal.lifecycle.stage == 'offer-accepted'
        assert deal.lifecycle.status == 'active'
        assert timeline.stages['offer-accepted'].status == 'in-progress'
        assert timeline.stages['agreement-signing'].status == 'not-started'
        assert timeline.expected_closing_date == accepted_at + timedelta(days=60)
        assert deal.deal_number == 'DEAL-2026-001'
        assert deal.parties.buyer.contact == '+92-300-0000000'
        assert deal.parties.seller.name == 'Kamran Sheikh'
        assert deal.property_id == 'prop_1'


# =============================================================================
# Stage progress
# =============================================================================


class TestCompleteStage:
    @pytest.fixture
    def deal(self, builder, sample_sell_cycle, offer):
        return builder.create_deal_from_offer(sample_sell_cycle, offer)

    def test_completing_starts_next(self, builder, deal):
        updated = builder.complete_stage(deal.id, DealStage.OFFER_ACCEPTED)

        stages = updated.lifecycle.timeline.stages
        assert stages[STAGE_ORDER[0]].status == 'completed'
        assert stages[STAGE_ORDER[0]].completion_percentage == 100
        assert stages[STAGE_ORDER[1]].status == 'in-progress'
        assert updated.lifecycle.stage == STAGE_ORDER[1]

    def test_last_stage_completes_deal(self, builder, seeded_repository, deal):
        for stage in STAGE_ORDER:
            builder.complete_stage(deal.id, stage)

        stored = seeded_repository.get_deal(deal.id)
        assert stored.lifecycle.status == 'completed'
        assert stored.completed_at is not None
        assert stored.lifecycle.timeline.actual_closing_date == stored.completed_at
        assert stored.deal_number == deal.deal_number
        assert seeded_repository.get_sell_cycle('sell_1').status == 'sold'

    def test_completed_deal_cannot_progress(self, builder, deal):
        for stage in STAGE_ORDER:
            builder.complete_stage(deal.id, stage)

        with pytest.raises(ValidationError):
            builder.complete_stage(deal.id, STAGE_ORDER[0])

    def test_unknown_stage(self, builder, deal):
        with pytest.raises(ValidationError):
            builder.complete_stage(deal.id, 'celebration')

    def test_unknown_deal(self, builder):
        with pytest.raises(NotFoundError):
            builder.complete_stage('deal_missing', STAGE_ORDER[0])
