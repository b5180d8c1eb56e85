"""
Transaction graph resolver.

Read-only view across Property, SellCycle, PurchaseCycle, BuyerRequirement
and Deal, reachable from any of the five.

Resolution first walks from the entry entity to its Deal. When a Deal is
found, the graph is expanded from the Deal alone, so every entry point of
the same deal returns the same populated fields. Entities with no deal are
expanded through their direct links.

The unified timeline flattens the dated events of one deal's graph into a
single list ordered by date; events on the same instant keep the order in
which they were discovered.
"""

from dataclasses import dataclass, field
from datetime import date, datetime

import structlog

from ..errors import NotFoundError, ValidationError
from ..models.cycles import OfferStatus, PurchaseCycle, RentCycle, SellCycle
from ..models.deal import Deal, StageStatus
from ..models.property import Property
from ..models.requirement import BuyerRequirement
from ..repository import BrokerageRepository
from ..utils import as_utc_datetime
from .deals import STAGE_ORDER

logger = structlog.get_logger(__name__)

ENTITY_TYPES = ('deal', 'sell_cycle', 'purchase_cycle', 'property', 'buyer_requirement')

_RESPONSE_EVENTS = {
    OfferStatus.ACCEPTED.value: 'offer-accepted',
    OfferStatus.REJECTED.value: 'offer-rejected',
    OfferStatus.COUNTERED.value: 'offer-countered',
    OfferStatus.WITHDRAWN.value: 'offer-withdrawn',
}


# =============================================================================
# Data Structures
# =============================================================================


@dataclass
class TransactionGraph:
    """Entities connected to one transaction; any may be missing."""

    deal: Deal | None = None
    sell_cycle: SellCycle | None = None
    purchase_cycle: PurchaseCycle | None = None
    property: Property | None = None
    buyer_requirement: BuyerRequirement | None = None

    def ids(self) -> dict[str, str | None]:
        """Entity type -> id of each member (None when absent)."""
        return {
            'deal': self.deal.id if self.deal else None,
            'sell_cycle': self.sell_cycle.id if self.sell_cycle else None,
            'purchase_cycle': self.purchase_cycle.id if self.purchase_cycle else None,
            'property': self.property.id if self.property else None,
            'buyer_requirement': self.buyer_requirement.id if self.buyer_requirement else None,
        }


@dataclass
class TimelineEvent:
    date: datetime
    event: str
    entity_type: str
    entity_id: str
    description: str


@dataclass
class EntityLink:
    entity_type: str
    entity_id: str
    label: str


@dataclass
class PropertyCycles:
    sell_cycles: list[SellCycle] = field(default_factory=list)
    purchase_cycles: list[PurchaseCycle] = field(default_factory=list)
    rent_cycles: list[RentCycle] = field(default_factory=list)


def normalize_entity_type(entity_type: str) -> str:
    """
    Accept 'sell_cycle', 'sell-cycle' or 'sellCycle' style names.

    Raises:
        ValidationError: Not one of the five entity kinds.
    """
    raw = (entity_type or '').strip()
    if raw != raw.lower() and raw != raw.upper():
        raw = ''.join('_' + ch if ch.isupper() else ch for ch in raw).lstrip('_')
    snake = raw.lower().replace('-', '_')
    if snake not in ENTITY_TYPES:
        raise ValidationError(
            f"Unknown entity type: {entity_type!r}",
            context={'allowed': list(ENTITY_TYPES)},
        )
    return snake


def _latest(items):
    return max(items, key=lambda e: e.created_at) if items else None


# =============================================================================
# TransactionGraphResolver
# =============================================================================


class TransactionGraphResolver:
    """Builds transaction graphs and timelines. Never writes."""

    def __init__(self, repository: BrokerageRepository):
        self.repository = repository

    # =========================================================================
    # Graph
    # =========================================================================

    def get_transaction_graph(self, entity_id: str, entity_type: str) -> TransactionGraph:
        """
        Raises:
            ValidationError: Unknown entity type.
            NotFoundError: No entity of that type has this id.
        """
        kind = normalize_entity_type(entity_type)
        root = self._load(kind, entity_id)

        deal = self._deal_for(kind, root)
        if deal is not None:
            graph = self._graph_from_deal(deal)
        else:
            graph = self._graph_without_deal(kind, root)

        # The entry entity is always part of its own graph.
        if getattr(graph, kind) is None:
            setattr(graph, kind, root)
        logger.debug('graph_resolver.resolved', entry_type=kind, entry_id=entity_id, ids=graph.ids())
        return graph

    def _load(self, kind: str, entity_id: str):
        loaders = {
            'deal': self.repository.get_deal,
            'sell_cycle': self.repository.get_sell_cycle,
            'purchase_cycle': self.repository.get_purchase_cycle,
            'property': self.repository.get_property,
            'buyer_requirement': self.repository.get_buyer_requirement,
        }
        entity = loaders[kind](entity_id)
        if entity is None:
            raise NotFoundError(f"{kind} not found", context={'entity_id': entity_id, 'entity_type': kind})
        return entity

    def _deal_for(self, kind: str, root) -> Deal | None:
        if kind == 'deal':
            return root

        if kind in ('sell_cycle', 'purchase_cycle'):
            linked_id = root.linked_deal_id or root.created_deal_id
            if linked_id:
                deal = self.repository.get_deal(linked_id)
                if deal is not None:
                    return deal

        deals = self.repository.get_deals()
        if kind == 'sell_cycle':
            return _latest([d for d in deals if d.sell_cycle_id == root.id])
        if kind == 'purchase_cycle':
            return _latest([d for d in deals if d.purchase_cycle_id == root.id])
        if kind == 'property':
            return _latest([d for d in deals if d.property_id == root.id])

        # buyer_requirement: through the deal's own reference or its purchase cycles
        pc_ids = {
            pc.id for pc in self.repository.get_purchase_cycles() if pc.buyer_requirement_id == root.id
        }
        return _latest(
            [
                d
                for d in deals
                if (d.cycles.purchase_cycle and d.cycles.purchase_cycle.buyer_requirement_id == root.id)
                or d.purchase_cycle_id in pc_ids
            ]
        )

    def _graph_from_deal(self, deal: Deal) -> TransactionGraph:
        graph = TransactionGraph(deal=deal)
        graph.sell_cycle = self.repository.get_sell_cycle(deal.sell_cycle_id)
        if deal.purchase_cycle_id:
            graph.purchase_cycle = self.repository.get_purchase_cycle(deal.purchase_cycle_id)
        graph.property = self.repository.get_property(deal.property_id)

        requirement_id = None
        if deal.cycles.purchase_cycle is not None:
            requirement_id = deal.cycles.purchase_cycle.buyer_requirement_id
        if not requirement_id and graph.purchase_cycle is not None:
            requirement_id = graph.purchase_cycle.buyer_requirement_id
        if not requirement_id and graph.sell_cycle is not None:
            offer = graph.sell_cycle.find_offer(deal.cycles.sell_cycle.offer_id)
            requirement_id = offer.buyer_requirement_id if offer else None
        if requirement_id:
            graph.buyer_requirement = self.repository.get_buyer_requirement(requirement_id)
        return graph

    def _graph_without_deal(self, kind: str, root) -> TransactionGraph:
        graph = TransactionGraph()
        repo = self.repository

        if kind == 'sell_cycle':
            graph.sell_cycle = root
            if root.winning_purchase_cycle_id:
                graph.purchase_cycle = repo.get_purchase_cycle(root.winning_purchase_cycle_id)
        elif kind == 'purchase_cycle':
            graph.purchase_cycle = root
            sell_id = root.linked_sell_cycle_id or root.sell_cycle_id
            if sell_id:
                graph.sell_cycle = repo.get_sell_cycle(sell_id)
        elif kind == 'property':
            graph.property = root
            graph.sell_cycle = _latest([c for c in repo.get_sell_cycles() if c.property_id == root.id])
            graph.purchase_cycle = _latest(
                [c for c in repo.get_purchase_cycles() if c.property_id == root.id]
            )
        elif kind == 'buyer_requirement':
            graph.buyer_requirement = root
            graph.purchase_cycle = _latest(
                [c for c in repo.get_purchase_cycles() if c.buyer_requirement_id == root.id]
            )
            if graph.purchase_cycle is not None:
                sell_id = graph.purchase_cycle.linked_sell_cycle_id or graph.purchase_cycle.sell_cycle_id
                if sell_id:
                    graph.sell_cycle = repo.get_sell_cycle(sell_id)

        if graph.property is None:
            anchor = graph.sell_cycle or graph.purchase_cycle
            if anchor is not None:
                graph.property = repo.get_property(anchor.property_id)
        if graph.buyer_requirement is None and graph.purchase_cycle is not None:
            if graph.purchase_cycle.buyer_requirement_id:
                graph.buyer_requirement = repo.get_buyer_requirement(graph.purchase_cycle.buyer_requirement_id)
        return graph

    # =========================================================================
    # Timeline
    # =========================================================================

    def get_unified_timeline(self, deal_id: str) -> list[TimelineEvent]:
        """
        Every dated event of a deal's graph, ordered by date (stable).

        Raises:
            NotFoundError: Unknown deal.
        """
        deal = self.repository.get_deal(deal_id)
        if deal is None:
            raise NotFoundError('Deal not found', context={'deal_id': deal_id})
        graph = self._graph_from_deal(deal)
        events: list[TimelineEvent] = []

        def add(when: date | datetime | None, event: str, entity_type: str, entity_id: str, description: str):
            if when is not None:
                events.append(TimelineEvent(as_utc_datetime(when), event, entity_type, entity_id, description))

        prop = graph.property
        if prop is not None:
            add(prop.created_at, 'property-added', 'property', prop.id, f"Property added: {prop.title or prop.id}")

        req = graph.buyer_requirement
        if req is not None:
            add(req.created_at, 'requirement-created', 'buyer_requirement', req.id,
                f"Buyer requirement created for {req.buyer_name}")

        cycle = graph.sell_cycle
        if cycle is not None:
            add(cycle.listed_date, 'listed', 'sell_cycle', cycle.id,
                f"Listed for sale at {cycle.asking_price:,.0f}")
            for offer in cycle.offers:
                add(offer.offered_date, 'offer-received', 'sell_cycle', cycle.id,
                    f"Offer of {offer.offer_amount:,.0f} from {offer.buyer_name}")
                response = _RESPONSE_EVENTS.get(offer.status)
                if response:
                    add(offer.response_date, response, 'sell_cycle', cycle.id,
                        f"Offer from {offer.buyer_name} {offer.status}")
            add(cycle.sold_date, 'sold', 'sell_cycle', cycle.id, f"Sold for {cycle.sold_price or 0:,.0f}")

        pc = graph.purchase_cycle
        if pc is not None:
            add(pc.created_at, 'purchase-cycle-created', 'purchase_cycle', pc.id,
                f"Purchase cycle opened for {pc.purchaser_name}")
            add(pc.offer_date, 'purchase-offer-made', 'purchase_cycle', pc.id,
                f"Offer made by {pc.purchaser_name}")
            add(pc.acceptance_date, 'purchase-offer-accepted', 'purchase_cycle', pc.id,
                'Purchase offer accepted')
            add(pc.completion_date, 'purchase-completed', 'purchase_cycle', pc.id, 'Purchase completed')

        add(deal.created_at, 'deal-created', 'deal', deal.id, f"Deal {deal.deal_number} created")
        stages = deal.lifecycle.timeline.stages
        for name in STAGE_ORDER:
            progress = stages.get(name)
            if progress is not None and progress.status == StageStatus.COMPLETED.value:
                add(progress.completed_at, 'stage-completed', 'deal', deal.id, f"Stage completed: {name}")
        add(deal.completed_at, 'deal-completed', 'deal', deal.id, f"Deal {deal.deal_number} completed")
        add(deal.cancelled_at, 'deal-cancelled', 'deal', deal.id, f"Deal {deal.deal_number} cancelled")

        # sorted() is stable: same-instant events keep discovery order
        return sorted(events, key=lambda e: e.date)

    # =========================================================================
    # Relations
    # =========================================================================

    def are_entities_related(
        self, entity_id: str, entity_type: str, other_id: str, other_type: str
    ) -> bool:
        """True when either entity's transaction graph contains the other."""
        kind, other_kind = normalize_entity_type(entity_type), normalize_entity_type(other_type)
        if self.get_transaction_graph(entity_id, kind).ids()[other_kind] == other_id:
            return True
        return self.get_transaction_graph(other_id, other_kind).ids()[kind] == entity_id

    def get_related_entity_links(self, entity_id: str, entity_type: str) -> list[EntityLink]:
        """Links to every other member of the entity's transaction graph."""
        kind = normalize_entity_type(entity_type)
        graph = self.get_transaction_graph(entity_id, kind)
        links = []
        if graph.deal is not None and kind != 'deal':
            links.append(EntityLink('deal', graph.deal.id, f"Deal {graph.deal.deal_number}"))
        if graph.sell_cycle is not None and kind != 'sell_cycle':
            links.append(EntityLink('sell_cycle', graph.sell_cycle.id, 'Sell cycle'))
        if graph.purchase_cycle is not None and kind != 'purchase_cycle':
            links.append(EntityLink('purchase_cycle', graph.purchase_cycle.id,
                                    f"Purchase cycle ({graph.purchase_cycle.purchaser_name})"))
        if graph.property is not None and kind != 'property':
            links.append(EntityLink('property', graph.property.id, graph.property.title or 'Property'))
        if graph.buyer_requirement is not None and kind != 'buyer_requirement':
            links.append(EntityLink('buyer_requirement', graph.buyer_requirement.id,
                                    f"Requirement ({graph.buyer_requirement.buyer_name})"))
        return links

    def get_property_deals(self, property_id: str) -> list[Deal]:
        return sorted(
            (d for d in self.repository.get_deals() if d.property_id == property_id),
            key=lambda d: d.created_at,
        )

    def get_property_cycles(self, property_id: str) -> PropertyCycles:
        repo = self.repository
        return PropertyCycles(
            sell_cycles=[c for c in repo.get_sell_cycles() if c.property_id == property_id],
            purchase_cycles=[c for c in repo.get_purchase_cycles() if c.property_id == property_id],
            rent_cycles=[c for c in repo.get_rent_cycles() if c.property_id == property_id],
        )
