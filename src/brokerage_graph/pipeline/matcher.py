"""
Cross-agent matching engine.

Pairs shared, open sell/rent cycles with active requirements owned by other
agents, keeps pairs scoring at or above the match threshold, and persists
them as PropertyMatch records.

Run semantics:
- Match ids are derived from (cycle id, requirement id), and persistence is a
  merge by id. A rerun on an unchanged store produces the same match set and
  never drops matches from earlier runs.
- A merged match keeps its workflow state (status, notification_sent,
  offer/deal links, matched_at); only the score and details are refreshed.
- A match notifies the requirement's agent once: only while
  notification_sent is False. Matches are persisted before any notification
  goes out, and the stored flag is written back on every confirmed delivery,
  including a later ``retry_pending()`` on the dispatcher.

Interactive finders (one requirement against all visible shared cycles) use
the same scorer and threshold and are not persisted.
"""

from dataclasses import dataclass, field
from typing import Any

import structlog

from ..clients.notifier import NotificationDispatcher
from ..config import config
from ..errors import MatchingError, NotFoundError, NotificationError, PartialSuccessResult, StoreError
from ..logging import PipelineTimer, logging_context
from ..models.cycles import OPEN_RENT_STATUSES, OPEN_SELL_STATUSES, RentCycle, SellCycle
from ..models.match import CycleType, MatchStatus, PropertyMatch, match_id_for
from ..models.notification import Notification, NotificationPriority, NotificationType
from ..models.property import Property
from ..models.requirement import BuyerRequirement, RentRequirement
from ..repository import BrokerageRepository
from ..utils import utc_now
from .scorer import MatchScorer

logger = structlog.get_logger(__name__)

# Fields a rerun may refresh on an existing match; everything else is kept.
_REFRESHED_FIELDS = (
    'match_score',
    'match_details',
    'listing_agent_name',
    'buyer_agent_name',
    'renter_agent_name',
)


# =============================================================================
# Result Model
# =============================================================================


@dataclass
class MatchingRunResult:
    """Outcome of one batch matching run."""

    matches: list[PropertyMatch] = field(default_factory=list)
    new_match_ids: list[str] = field(default_factory=list)
    notifications: PartialSuccessResult = field(default_factory=PartialSuccessResult)
    cycles_considered: int = 0
    requirements_considered: int = 0
    stage_timings: dict[str, Any] = field(default_factory=dict)

    @property
    def match_count(self) -> int:
        return len(self.matches)


# =============================================================================
# MatchingEngine
# =============================================================================


class MatchingEngine:
    """
    Batch and interactive matching of shared cycles against requirements.

    Pipeline (run):
    1. Load shared open cycles visible to the caller, active requirements and properties
    2. Score every (cycle, requirement) pair across different agents
    3. Merge results into the stored matches by id and persist
    4. Notify requirement agents about matches not yet notified
    """

    def __init__(
        self,
        repository: BrokerageRepository,
        dispatcher: NotificationDispatcher | None = None,
        scorer: MatchScorer | None = None,
        threshold: int | None = None,
        high_priority_score: int | None = None,
    ):
        self.repository = repository
        if dispatcher is None:
            logger.warning(
                'matching_engine.default_dispatcher',
                detail='no dispatcher given; notifications go to an in-memory client',
            )
            dispatcher = NotificationDispatcher()
        self.dispatcher = dispatcher
        self.dispatcher.add_delivery_listener(self._mark_notified)
        self.scorer = scorer or MatchScorer()
        self.threshold = threshold if threshold is not None else config.MATCH_THRESHOLD
        self.high_priority_score = (
            high_priority_score if high_priority_score is not None else config.HIGH_PRIORITY_SCORE
        )

    # =========================================================================
    # Batch matching
    # =========================================================================

    def run_matching_for_all_shared_cycles(self, user_id: str, user_role: str) -> list[PropertyMatch]:
        """Run matching and return the matches produced by this run."""
        return self.run(user_id, user_role).matches

    def run(self, user_id: str, user_role: str) -> MatchingRunResult:
        """
        Run matching over every shared cycle visible to the caller.

        Raises:
            MatchingError: If the store cannot be read or written.
        """
        with logging_context(user_id=user_id, user_role=user_role):
            log = logger.bind(user_id=user_id, user_role=user_role)
            timer = PipelineTimer()
            result = MatchingRunResult()

            try:
                with timer.stage('load'):
                    sell_cycles = self._shared_sell_cycles(user_id, user_role)
                    rent_cycles = self._shared_rent_cycles(user_id, user_role)
                    buyer_reqs = [r for r in self.repository.get_buyer_requirements() if r.is_active]
                    rent_reqs = [r for r in self.repository.get_rent_requirements() if r.is_active]
                    properties = {p.id: p for p in self.repository.get_properties()}

                result.cycles_considered = len(sell_cycles) + len(rent_cycles)
                result.requirements_considered = len(buyer_reqs) + len(rent_reqs)

                with timer.stage('score'):
                    produced: list[PropertyMatch] = []
                    for cycle in sell_cycles:
                        produced.extend(self._score_cycle(cycle, properties, buyer_reqs, log))
                    for cycle in rent_cycles:
                        produced.extend(self._score_cycle(cycle, properties, rent_reqs, log))

                with timer.stage('merge'):
                    stored, merged, result.new_match_ids = self._merge(produced)

                with timer.stage('persist'):
                    self.repository.save_matches(stored)

                with timer.stage('notify'):
                    result.notifications = self._notify(merged, properties)
            except StoreError as e:
                log.error('matching_engine.failed', error=str(e))
                raise MatchingError(
                    f"Matching run failed: {e.message}",
                    context={'user_id': user_id, 'user_role': user_role},
                ) from e

            result.matches = merged
            result.stage_timings = timer.summary()
            log.info(
                'matching_engine.complete',
                cycles=result.cycles_considered,
                requirements=result.requirements_considered,
                matches=result.match_count,
                new_matches=len(result.new_match_ids),
                notifications=result.notifications.to_dict(),
                timing=result.stage_timings,
            )
            return result

    def _shared_sell_cycles(self, user_id: str, user_role: str) -> list[SellCycle]:
        return [
            c
            for c in self.repository.get_sell_cycles(user_id, user_role)
            if c.sharing.is_shared and c.status in OPEN_SELL_STATUSES
        ]

    def _shared_rent_cycles(self, user_id: str, user_role: str) -> list[RentCycle]:
        return [
            c
            for c in self.repository.get_rent_cycles(user_id, user_role)
            if c.sharing.is_shared and c.status in OPEN_RENT_STATUSES
        ]

    def _score_cycle(
        self,
        cycle: SellCycle | RentCycle,
        properties: dict[str, Property],
        requirements: list[BuyerRequirement] | list[RentRequirement],
        log: Any,
    ) -> list[PropertyMatch]:
        prop = properties.get(cycle.property_id)
        if prop is None:
            log.warning('matching_engine.property_missing', cycle_id=cycle.id, property_id=cycle.property_id)
            return []

        matches = []
        for requirement in requirements:
            if requirement.agent_id == cycle.agent_id:
                continue
            match = self.build_match(cycle, prop, requirement)
            if match is not None:
                matches.append(match)
        return matches

    def build_match(
        self,
        cycle: SellCycle | RentCycle,
        prop: Property,
        requirement: BuyerRequirement | RentRequirement,
    ) -> PropertyMatch | None:
        """Score one pair; return a PropertyMatch if it clears the threshold."""
        if isinstance(cycle, SellCycle):
            cycle_type, price = CycleType.SELL, cycle.asking_price
        else:
            cycle_type, price = CycleType.RENT, cycle.monthly_rent

        evaluation = self.scorer.evaluate(prop, requirement, price)
        score = evaluation.score
        if score < self.threshold:
            return None

        match = PropertyMatch(
            match_id=match_id_for(cycle.id, requirement.id),
            cycle_id=cycle.id,
            cycle_type=cycle_type,
            property_id=prop.id,
            listing_agent_id=cycle.agent_id,
            listing_agent_name=cycle.agent_name,
            requirement_id=requirement.id,
            requirement_type=requirement.requirement_type,
            match_score=score,
            match_details=self.scorer.details_from(evaluation),
        )
        if isinstance(requirement, BuyerRequirement):
            match.buyer_agent_id = requirement.agent_id
            match.buyer_agent_name = requirement.agent_name
        else:
            match.renter_agent_id = requirement.agent_id
            match.renter_agent_name = requirement.agent_name
        return match

    def _merge(
        self, produced: list[PropertyMatch]
    ) -> tuple[list[PropertyMatch], list[PropertyMatch], list[str]]:
        """
        Merge this run's matches into the stored set by id.

        Returns:
            (full stored list to persist, this run's matches as merged, new ids)
        """
        stored = self.repository.get_matches()
        index = {m.match_id: i for i, m in enumerate(stored)}
        merged: list[PropertyMatch] = []
        new_ids: list[str] = []

        for match in produced:
            i = index.get(match.match_id)
            if i is None:
                index[match.match_id] = len(stored)
                stored.append(match)
                merged.append(match)
                new_ids.append(match.match_id)
                continue

            existing = stored[i]
            updates = {
                name: getattr(match, name)
                for name in _REFRESHED_FIELDS
                if getattr(match, name) != getattr(existing, name)
            }
            if updates:
                updates['updated_at'] = utc_now()
                existing = existing.model_copy(update=updates)
                stored[i] = existing
            merged.append(existing)

        return stored, merged, new_ids

    def _notify(self, matches: list[PropertyMatch], properties: dict[str, Property]) -> PartialSuccessResult:
        """
        Notify requirement agents for matches not yet notified.

        Flags are set in place on the returned matches; the stored flag is
        written by _mark_notified when the dispatcher confirms delivery.
        """
        outcome = PartialSuccessResult()
        for match in matches:
            if match.notification_sent:
                continue
            recipient = match.requirement_agent_id
            if not recipient:
                continue

            prop = properties.get(match.property_id or '')
            title = prop.title if prop and prop.title else match.cycle_id
            notification = Notification(
                user_id=recipient,
                type=NotificationType.NEW_PROPERTY_MATCH,
                priority=(
                    NotificationPriority.HIGH
                    if match.match_score >= self.high_priority_score
                    else NotificationPriority.MEDIUM
                ),
                title=f"New property match ({match.match_score}%)",
                message=(
                    f"{title} listed by {match.listing_agent_name or match.listing_agent_id} "
                    f"matches your client's requirement"
                ),
                entity_type='property-match',
                entity_id=match.match_id,
                metadata={
                    'cycle_id': match.cycle_id,
                    'cycle_type': match.cycle_type,
                    'requirement_id': match.requirement_id,
                    'match_score': match.match_score,
                },
                dedupe_key=f"{match.match_id}:new-match",
            )
            if self.dispatcher.dispatch(notification):
                match.notification_sent = True
                outcome.add_success(item_id=match.match_id)
            else:
                outcome.add_failure(
                    NotificationError('Match notification not delivered', context={'user_id': recipient}),
                    item_id=match.match_id,
                )
        return outcome

    def _mark_notified(self, notification: Notification) -> None:
        """Delivery listener: persist notification_sent for the delivered match."""
        if notification.entity_type != 'property-match' or not notification.entity_id:
            return
        match = self.repository.get_match(notification.entity_id)
        if match is None or match.notification_sent:
            return
        self.repository.save_match(
            match.model_copy(update={'notification_sent': True, 'updated_at': utc_now()})
        )
        logger.debug('matching_engine.notification_recorded', match_id=match.match_id)

    # =========================================================================
    # Interactive finders
    # =========================================================================

    def find_shared_matches_for_buyer_requirement(
        self, requirement: BuyerRequirement, user_id: str, user_role: str
    ) -> list[PropertyMatch]:
        """Shared sell cycles matching one buyer requirement, best first."""
        return self._find_for_requirement(
            requirement, self._shared_sell_cycles(user_id, user_role)
        )

    def find_shared_matches_for_rent_requirement(
        self, requirement: RentRequirement, user_id: str, user_role: str
    ) -> list[PropertyMatch]:
        """Shared rent cycles matching one rent requirement, best first."""
        return self._find_for_requirement(
            requirement, self._shared_rent_cycles(user_id, user_role)
        )

    def _find_for_requirement(
        self,
        requirement: BuyerRequirement | RentRequirement,
        cycles: list[SellCycle] | list[RentCycle],
    ) -> list[PropertyMatch]:
        properties = {p.id: p for p in self.repository.get_properties()}
        matches = self._score_cycle_list(cycles, properties, requirement)
        matches.sort(key=lambda m: m.match_score, reverse=True)
        logger.debug(
            'matching_engine.requirement_matches',
            requirement_id=requirement.id,
            cycles=len(cycles),
            matches=len(matches),
        )
        return matches

    def _score_cycle_list(
        self,
        cycles: list[SellCycle] | list[RentCycle],
        properties: dict[str, Property],
        requirement: BuyerRequirement | RentRequirement,
    ) -> list[PropertyMatch]:
        matches = []
        for cycle in cycles:
            if cycle.agent_id == requirement.agent_id:
                continue
            prop = properties.get(cycle.property_id)
            if prop is None:
                continue
            match = self.build_match(cycle, prop, requirement)
            if match is not None:
                matches.append(match)
        return matches

    # =========================================================================
    # Match queries and updates
    # =========================================================================

    def get_matches(self) -> list[PropertyMatch]:
        return self.repository.get_matches()

    def get_matches_for_requirement(self, requirement_id: str) -> list[PropertyMatch]:
        matches = [m for m in self.repository.get_matches() if m.requirement_id == requirement_id]
        return sorted(matches, key=lambda m: m.match_score, reverse=True)

    def get_matches_for_agent(self, agent_id: str) -> list[PropertyMatch]:
        """Matches where the agent is on either side."""
        matches = [
            m
            for m in self.repository.get_matches()
            if m.listing_agent_id == agent_id or m.requirement_agent_id == agent_id
        ]
        return sorted(matches, key=lambda m: m.match_score, reverse=True)

    def update_match(self, match_id: str, **updates: Any) -> PropertyMatch:
        """
        Apply field updates to a stored match.

        Raises:
            NotFoundError: If no match has this id.
        """
        match = self.repository.get_match(match_id)
        if match is None:
            raise NotFoundError('Match not found', context={'match_id': match_id})
        if 'status' in updates:
            updates['status'] = MatchStatus(updates['status']).value
        updates['updated_at'] = utc_now()
        updated = match.model_copy(update=updates)
        self.repository.save_match(updated)
        logger.info('matching_engine.match_updated', match_id=match_id, fields=sorted(updates))
        return updated

    def dismiss_match(self, match_id: str) -> PropertyMatch:
        return self.update_match(match_id, status=MatchStatus.DISMISSED)

    def clear_matches(self) -> None:
        self.repository.save_matches([])
        logger.info('matching_engine.matches_cleared')
