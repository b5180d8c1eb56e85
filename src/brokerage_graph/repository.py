"""
Typed repository over the entity store.

Wraps an EntityStore (key -> JSON array) with pydantic (de)serialization,
find/upsert helpers and caller visibility filters.

Key design decisions:
- Every write is "load the full collection, replace/append one entity, save
  the full collection". There is no locking: the core assumes one logical
  writer at a time.
- snapshot()/restore() capture and put back raw collection arrays. The offer
  pipeline uses them as the rollback path for offer acceptance.
- save_deal() refuses to change the deal_number of an existing deal.
"""

from typing import Any, TypeVar

import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .clients.store import EntityStore, create_store
from .errors import DealIntegrityError, StoreError, StoreReadError, wrap_store_error
from .models.cycles import PurchaseCycle, RentCycle, SellCycle
from .models.deal import Deal
from .models.match import PropertyMatch
from .models.property import Property
from .models.requirement import BuyerRequirement, RentRequirement

logger = structlog.get_logger(__name__)

ModelT = TypeVar('ModelT', bound=BaseModel)

ADMIN_ROLES = frozenset({'admin', 'superadmin'})


class Collections:
    """Store keys, one per entity collection."""

    PROPERTIES = 'properties'
    SELL_CYCLES = 'sell_cycles'
    RENT_CYCLES = 'rent_cycles'
    PURCHASE_CYCLES = 'purchase_cycles'
    BUYER_REQUIREMENTS = 'buyer_requirements'
    RENT_REQUIREMENTS = 'rent_requirements'
    DEALS = 'deals'
    MATCHES = 'property_matches'

    ALL = (
        PROPERTIES,
        SELL_CYCLES,
        RENT_CYCLES,
        PURCHASE_CYCLES,
        BUYER_REQUIREMENTS,
        RENT_REQUIREMENTS,
        DEALS,
        MATCHES,
    )


# key -> (model class, id attribute)
_SCHEMA: dict[str, tuple[type[BaseModel], str]] = {
    Collections.PROPERTIES: (Property, 'id'),
    Collections.SELL_CYCLES: (SellCycle, 'id'),
    Collections.RENT_CYCLES: (RentCycle, 'id'),
    Collections.PURCHASE_CYCLES: (PurchaseCycle, 'id'),
    Collections.BUYER_REQUIREMENTS: (BuyerRequirement, 'id'),
    Collections.RENT_REQUIREMENTS: (RentRequirement, 'id'),
    Collections.DEALS: (Deal, 'id'),
    Collections.MATCHES: (PropertyMatch, 'match_id'),
}


def is_admin(user_role: str | None) -> bool:
    return (user_role or '').lower() in ADMIN_ROLES


class BrokerageRepository:
    """
    Load/save operations for every brokerage collection.

    Entities returned are fresh copies; mutate them and call the matching
    save/upsert method to persist.
    """

    def __init__(self, store: EntityStore | None = None):
        self.store = store if store is not None else create_store()

    # =========================================================================
    # Generic collection access
    # =========================================================================

    def load(self, key: str) -> list[Any]:
        """Load and validate every entity stored under ``key``."""
        model, _ = _SCHEMA[key]
        try:
            raw = self.store.get(key)
        except StoreError:
            raise
        except Exception as e:
            raise wrap_store_error(e, {'key': key}) from e
        try:
            return [model.model_validate(item) for item in raw]
        except PydanticValidationError as e:
            raise StoreReadError(
                f"Malformed entity in collection '{key}'",
                context={'key': key, 'errors': e.error_count()},
            ) from e

    def save_all(self, key: str, entities: list[BaseModel]) -> None:
        """Replace the whole collection stored under ``key``."""
        payload = [e.model_dump(mode='json') for e in entities]
        try:
            self.store.set(key, payload)
        except StoreError:
            raise
        except Exception as e:
            raise wrap_store_error(e, {'key': key}, writing=True) from e

    def find(self, key: str, entity_id: str) -> Any | None:
        _, id_attr = _SCHEMA[key]
        return next((e for e in self.load(key) if getattr(e, id_attr) == entity_id), None)

    def upsert(self, key: str, entity: ModelT) -> ModelT:
        """Replace the entity with the same id, or append it."""
        _, id_attr = _SCHEMA[key]
        entity_id = getattr(entity, id_attr)
        items = self.load(key)
        for i, existing in enumerate(items):
            if getattr(existing, id_attr) == entity_id:
                items[i] = entity
                break
        else:
            items.append(entity)
        self.save_all(key, items)
        return entity

    # =========================================================================
    # Snapshot / restore (acceptance rollback)
    # =========================================================================

    def snapshot(self, keys: tuple[str, ...] = Collections.ALL) -> dict[str, list[dict[str, Any]]]:
        """Capture the raw arrays of the given collections."""
        return {key: self.store.get(key) for key in keys}

    def restore(self, snapshot: dict[str, list[dict[str, Any]]]) -> None:
        """Write back arrays captured by snapshot()."""
        for key, items in snapshot.items():
            self.store.set(key, items)
        logger.info('repository.restored', collections=sorted(snapshot))

    # =========================================================================
    # Properties
    # =========================================================================

    def get_properties(self) -> list[Property]:
        return self.load(Collections.PROPERTIES)

    def get_property(self, property_id: str) -> Property | None:
        return self.find(Collections.PROPERTIES, property_id)

    def save_property(self, prop: Property) -> Property:
        return self.upsert(Collections.PROPERTIES, prop)

    # =========================================================================
    # Sell / rent cycles
    # =========================================================================

    def get_sell_cycles(self, user_id: str | None = None, user_role: str | None = 'admin') -> list[SellCycle]:
        """Sell cycles visible to the caller: admins see all, agents own + shared."""
        cycles = self.load(Collections.SELL_CYCLES)
        if is_admin(user_role):
            return cycles
        return [c for c in cycles if c.agent_id == user_id or c.sharing.is_shared]

    def get_sell_cycle(self, cycle_id: str) -> SellCycle | None:
        return self.find(Collections.SELL_CYCLES, cycle_id)

    def save_sell_cycle(self, cycle: SellCycle) -> SellCycle:
        return self.upsert(Collections.SELL_CYCLES, cycle)

    def get_rent_cycles(self, user_id: str | None = None, user_role: str | None = 'admin') -> list[RentCycle]:
        cycles = self.load(Collections.RENT_CYCLES)
        if is_admin(user_role):
            return cycles
        return [c for c in cycles if c.agent_id == user_id or c.sharing.is_shared]

    def get_rent_cycle(self, cycle_id: str) -> RentCycle | None:
        return self.find(Collections.RENT_CYCLES, cycle_id)

    def save_rent_cycle(self, cycle: RentCycle) -> RentCycle:
        return self.upsert(Collections.RENT_CYCLES, cycle)

    # =========================================================================
    # Purchase cycles
    # =========================================================================

    def get_purchase_cycles(
        self, user_id: str | None = None, user_role: str | None = 'admin'
    ) -> list[PurchaseCycle]:
        cycles = self.load(Collections.PURCHASE_CYCLES)
        if is_admin(user_role):
            return cycles
        return [c for c in cycles if c.agent_id == user_id]

    def get_purchase_cycle(self, cycle_id: str) -> PurchaseCycle | None:
        return self.find(Collections.PURCHASE_CYCLES, cycle_id)

    def save_purchase_cycle(self, cycle: PurchaseCycle) -> PurchaseCycle:
        return self.upsert(Collections.PURCHASE_CYCLES, cycle)

    def find_purchase_cycle_for_requirement(
        self, requirement_id: str, property_id: str
    ) -> PurchaseCycle | None:
        """
        Reusable purchase cycle for a (requirement, property) pair.

        Cycles already tied to a deal, completed or cancelled are skipped, so a
        relisted property gets a fresh purchase cycle for its new deal.
        """
        return next(
            (
                c
                for c in self.load(Collections.PURCHASE_CYCLES)
                if c.buyer_requirement_id == requirement_id
                and c.property_id == property_id
                and not c.is_closed
            ),
            None,
        )

    # =========================================================================
    # Requirements
    # =========================================================================

    def get_buyer_requirements(
        self, user_id: str | None = None, user_role: str | None = 'admin'
    ) -> list[BuyerRequirement]:
        reqs = self.load(Collections.BUYER_REQUIREMENTS)
        if is_admin(user_role):
            return reqs
        return [r for r in reqs if r.agent_id == user_id]

    def get_rent_requirements(
        self, user_id: str | None = None, user_role: str | None = 'admin'
    ) -> list[RentRequirement]:
        reqs = self.load(Collections.RENT_REQUIREMENTS)
        if is_admin(user_role):
            return reqs
        return [r for r in reqs if r.agent_id == user_id]

    def get_buyer_requirement(self, requirement_id: str) -> BuyerRequirement | None:
        return self.find(Collections.BUYER_REQUIREMENTS, requirement_id)

    def get_requirement(self, requirement_id: str) -> BuyerRequirement | RentRequirement | None:
        return self.find(Collections.BUYER_REQUIREMENTS, requirement_id) or self.find(
            Collections.RENT_REQUIREMENTS, requirement_id
        )

    def save_requirement(self, requirement: BuyerRequirement | RentRequirement):
        if isinstance(requirement, BuyerRequirement):
            return self.upsert(Collections.BUYER_REQUIREMENTS, requirement)
        if isinstance(requirement, RentRequirement):
            return self.upsert(Collections.RENT_REQUIREMENTS, requirement)
        raise TypeError(f"Unsupported requirement type: {type(requirement).__name__}")

    # =========================================================================
    # Deals
    # =========================================================================

    def get_deals(self) -> list[Deal]:
        return self.load(Collections.DEALS)

    def get_deal(self, deal_id: str) -> Deal | None:
        return self.find(Collections.DEALS, deal_id)

    def save_deal(self, deal: Deal) -> Deal:
        """
        Insert or update a deal.

        Raises:
            DealIntegrityError: If the deal_number of an existing deal would
                change, or another deal already uses the number.
        """
        deals = self.get_deals()
        for i, existing in enumerate(deals):
            if existing.id == deal.id:
                if existing.deal_number != deal.deal_number:
                    raise DealIntegrityError(
                        'Deal number is immutable once assigned',
                        context={
                            'deal_id': deal.id,
                            'deal_number': existing.deal_number,
                            'attempted': deal.deal_number,
                        },
                    )
                deals[i] = deal
                break
            if existing.deal_number == deal.deal_number:
                raise DealIntegrityError(
                    'Deal number already in use',
                    context={'deal_number': deal.deal_number, 'existing_deal_id': existing.id},
                )
        else:
            deals.append(deal)
        self.save_all(Collections.DEALS, deals)
        return deal

    # =========================================================================
    # Matches
    # =========================================================================

    def get_matches(self) -> list[PropertyMatch]:
        return self.load(Collections.MATCHES)

    def get_match(self, match_id: str) -> PropertyMatch | None:
        return self.find(Collections.MATCHES, match_id)

    def save_matches(self, matches: list[PropertyMatch]) -> None:
        self.save_all(Collections.MATCHES, matches)

    def save_match(self, match: PropertyMatch) -> PropertyMatch:
        return self.upsert(Collections.MATCHES, match)
