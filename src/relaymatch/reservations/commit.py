"""
Turning a scored candidate into a held match.

Both the batch optimizer and the on-demand path go through
:class:`MatchCommitter` so relay plans are built, published and released the
same way regardless of who won the hold.
"""

import threading
from collections import Counter

from relaymatch.core_types import Candidate, CandidateKind, FleetSnapshot, Match, MatchState, RelayPlan
from relaymatch.events import EventBus, EventType
from relaymatch.exceptions import StaleState
from relaymatch.hubs.selector import HubSelector
from relaymatch.relay.planner import RelayPlanner
from relaymatch.utils.logging import RelayMatchLogger

from .manager import TERMINAL_STATES, ReservationManager

logger = RelayMatchLogger.get_logger(__name__)


class MatchCommitter:
    def __init__(
        self,
        reservations: ReservationManager,
        planner: RelayPlanner | None = None,
        hub_selector: HubSelector | None = None,
        events: EventBus | None = None,
    ):
        self.reservations = reservations
        self.planner = planner or RelayPlanner()
        self.hub_selector = hub_selector
        self._events = events or EventBus()
        self._lock = threading.Lock()
        # Serializes the hub capacity check and the hold of relay commits
        self._relay_lock = threading.Lock()
        self._plans: dict[str, RelayPlan] = {}
        reservations.subscribe(self._on_transition)

    def commit(
        self,
        candidate: Candidate,
        snapshot: FleetSnapshot,
        source: str = "on_demand",
        ttl_s: float | None = None,
    ) -> tuple[Match, RelayPlan | None]:
        """Plan (for relays) and hold ``candidate``.

        Raises StaleState when a relay can no longer be executed or one of its
        hubs has no exchange capacity left, and Conflict when the load or a
        vehicle is already held.  Nothing is held on error.
        """
        if candidate.kind != CandidateKind.RELAY:
            return self._hold(candidate, source, ttl_s), None

        plan = self.planner.plan(candidate, snapshot, self.reservations.now())
        with self._relay_lock:
            self._check_hub_capacity(candidate, snapshot)
            match = self._hold(candidate, source, ttl_s)
            with self._lock:
                self._plans[match.match_id] = plan
        if self.hub_selector is not None:
            self.hub_selector.register_plan(plan)
        self._events.emit(
            EventType.RELAY_PLAN_PUBLISHED,
            plan_id=plan.plan_id,
            match_id=match.match_id,
            load_id=plan.load_id,
            hub_ids=list(plan.hub_ids),
            vehicle_ids=list(plan.vehicle_ids),
        )
        return match, plan

    def _hold(self, candidate: Candidate, source: str, ttl_s: float | None) -> Match:
        if source == "batch":
            proposal = self.reservations.propose(
                candidate.load_id,
                candidate.vehicle_ids,
                candidate_id=candidate.candidate_id,
                score=candidate.score,
                source=source,
            )
            return self.reservations.hold_proposed(proposal.match_id, ttl_s)
        return self.reservations.hold(
            candidate.load_id,
            candidate.vehicle_ids,
            ttl_s=ttl_s,
            candidate_id=candidate.candidate_id,
            score=candidate.score,
            source=source,
        )

    def _check_hub_capacity(self, candidate: Candidate, snapshot: FleetSnapshot) -> None:
        usage = self.hub_usage()
        for hub_id in candidate.hub_ids:
            hub = snapshot.hubs.get(hub_id)
            if hub is not None and usage.get(hub_id, 0) >= hub.capacity:
                raise StaleState(candidate.candidate_id, f"hub {hub_id} has no exchange capacity left")

    def hub_usage(self) -> dict[str, int]:
        """Exchanges booked per hub by active relay plans."""
        return dict(Counter(hub_id for plan in self.active_plans() for hub_id in plan.hub_ids))

    def plan_for(self, match_id: str) -> RelayPlan | None:
        with self._lock:
            return self._plans.get(match_id)

    def active_plans(self) -> list[RelayPlan]:
        with self._lock:
            return list(self._plans.values())

    def _on_transition(self, match: Match, previous: MatchState | None) -> None:
        if match.state not in TERMINAL_STATES:
            return
        with self._lock:
            plan = self._plans.pop(match.match_id, None)
        if plan is not None and self.hub_selector is not None:
            self.hub_selector.release_plan(plan.plan_id)
            logger.debug(f"Released relay plan {plan.plan_id} ({match.state.value})")
