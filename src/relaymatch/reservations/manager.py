"""
Reservation Manager.

Single source of truth for holds on loads and vehicles, shared by the batch
optimizer and the on-demand match path.  The lock table maps each load id and
vehicle id to the match that currently holds it; every state change is one
compare-and-set under a single short-lived lock.

State machine::

    Proposed --hold--> Held --accept--> Accepted --cancel--> Rejected
        |                |  \\--release--> Rejected
        |                 \\--ttl elapsed--> Expired
        \\--release / lost hold--> Rejected

Events and listeners are invoked after the lock is released.
"""

import threading
import uuid
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta, timezone

from relaymatch.config.params import ReservationParams
from relaymatch.core_types import ACTIVE_MATCH_STATES, Match, MatchState
from relaymatch.events import EventBus, EventType
from relaymatch.exceptions import Conflict, Expired, MatchNotFound
from relaymatch.utils.logging import RelayMatchLogger

logger = RelayMatchLogger.get_logger(__name__)

TERMINAL_STATES = frozenset({MatchState.REJECTED, MatchState.EXPIRED})

Listener = Callable[[Match, MatchState | None], None]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ReservationManager:
    def __init__(
        self,
        params: ReservationParams | Callable[[], ReservationParams] | None = None,
        clock: Callable[[], datetime] | None = None,
        events: EventBus | None = None,
    ):
        if params is None:
            params = ReservationParams()
        self._params = params
        self._clock = clock or utc_now
        self._events = events or EventBus()
        self._lock = threading.Lock()
        self._matches: dict[str, Match] = {}
        self._load_keys: dict[str, str] = {}
        self._vehicle_keys: dict[str, str] = {}
        self._listeners: list[Listener] = []

    @property
    def params(self) -> ReservationParams:
        if callable(self._params):
            return self._params()
        return self._params

    def now(self) -> datetime:
        return self._clock()

    def subscribe(self, listener: Listener) -> None:
        """Call ``listener(match, previous_state)`` after every transition."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def propose(
        self,
        load_id: str,
        vehicle_ids: Iterable[str],
        candidate_id: str | None = None,
        score: float = 0.0,
        source: str = "batch",
    ) -> Match:
        """Record a Proposed match; proposals take no keys."""
        now = self.now()
        match = Match(
            match_id=_new_match_id(),
            load_id=load_id,
            vehicle_ids=tuple(vehicle_ids),
            state=MatchState.PROPOSED,
            created_at=now,
            updated_at=now,
            candidate_id=candidate_id,
            score=score,
            source=source,
        )
        with self._lock:
            self._matches[match.match_id] = match
        self._notify([(match, None, EventType.MATCH_CREATED)])
        return match

    def hold(
        self,
        load_id: str,
        vehicle_ids: Iterable[str],
        ttl_s: float | None = None,
        candidate_id: str | None = None,
        score: float = 0.0,
        source: str = "on_demand",
    ) -> Match:
        """Create a Held match, or raise Conflict if the load or a vehicle is taken."""
        vehicle_ids = tuple(vehicle_ids)
        ttl = self.params.hold_ttl_s if ttl_s is None else ttl_s
        pending: list = []
        with self._lock:
            now = self.now()
            self._check_free(load_id, vehicle_ids, now, pending)
            match = Match(
                match_id=_new_match_id(),
                load_id=load_id,
                vehicle_ids=vehicle_ids,
                state=MatchState.HELD,
                created_at=now,
                updated_at=now,
                held_until=now + timedelta(seconds=ttl),
                candidate_id=candidate_id,
                score=score,
                source=source,
            )
            self._matches[match.match_id] = match
            self._take_keys(match)
        # Lazily expired holds are reported before the new match
        self._notify(pending)
        self._events.emit(EventType.MATCH_CREATED, **match.to_dict())
        self._notify([(match, None, EventType.MATCH_HELD)])
        return match

    def hold_proposed(self, match_id: str, ttl_s: float | None = None) -> Match:
        """Promote a Proposed match to Held; on a lost race it becomes Rejected."""
        ttl = self.params.hold_ttl_s if ttl_s is None else ttl_s
        pending: list = []
        with self._lock:
            match = self._get(match_id)
            if match.state != MatchState.PROPOSED:
                raise Conflict(f"Match {match_id} is {match.state.value}, not Proposed", match_id)
            now = self.now()
            try:
                self._check_free(match.load_id, match.vehicle_ids, now, pending)
            except Conflict:
                self._transition(match, MatchState.REJECTED, now)
                pending.append((match, MatchState.PROPOSED, EventType.MATCH_REJECTED))
                lost = True
            else:
                self._transition(match, MatchState.HELD, now)
                match.held_until = now + timedelta(seconds=ttl)
                self._take_keys(match)
                pending.append((match, MatchState.PROPOSED, EventType.MATCH_HELD))
                lost = False
        self._notify(pending)
        if lost:
            raise Conflict(f"Load or vehicle of match {match_id} is already held", match_id)
        return match

    def accept(self, match_id: str) -> Match:
        """Held -> Accepted while the hold is live; an elapsed hold raises Expired."""
        pending: list = []
        with self._lock:
            match = self._get(match_id)
            if match.state == MatchState.ACCEPTED:
                return match
            if match.state != MatchState.HELD:
                raise Conflict(f"Match {match_id} is {match.state.value} and cannot be accepted", match_id)
            now = self.now()
            expired = self._lapsed(match, now)
            if expired:
                self._expire(match, now, pending)
            else:
                self._transition(match, MatchState.ACCEPTED, now)
                pending.append((match, MatchState.HELD, EventType.MATCH_ACCEPTED))
        self._notify(pending)
        if expired:
            raise Expired(match_id)
        return match

    def release(self, match_id: str) -> Match:
        """Proposed/Held -> Rejected, freeing the match's keys."""
        pending: list = []
        with self._lock:
            match = self._get(match_id)
            previous = match.state
            if previous not in (MatchState.PROPOSED, MatchState.HELD):
                raise Conflict(f"Match {match_id} is {previous.value} and cannot be released", match_id)
            self._free_keys(match)
            self._transition(match, MatchState.REJECTED, self.now())
            pending.append((match, previous, EventType.MATCH_REJECTED))
        self._notify(pending)
        return match

    def cancel(self, match_id: str) -> Match:
        """External cancellation of a Held or Accepted match."""
        pending: list = []
        with self._lock:
            match = self._get(match_id)
            previous = match.state
            if previous not in ACTIVE_MATCH_STATES:
                raise Conflict(f"Match {match_id} is {previous.value} and cannot be cancelled", match_id)
            self._free_keys(match)
            self._transition(match, MatchState.REJECTED, self.now())
            pending.append((match, previous, EventType.MATCH_CANCELLED))
        self._notify(pending)
        return match

    def sweep_expired(self) -> list[Match]:
        """Move every Held match past its held-until time to Expired."""
        pending: list = []
        with self._lock:
            now = self.now()
            for match in list(self._matches.values()):
                if match.state == MatchState.HELD and self._lapsed(match, now):
                    self._expire(match, now, pending)
        self._notify(pending)
        if pending:
            logger.debug(f"Swept {len(pending)} expired holds")
        return [match for match, _, _ in pending]

    def gc(self) -> int:
        """Forget terminal and stale Proposed matches older than ``retention_s``."""
        with self._lock:
            cutoff = self.now() - timedelta(seconds=self.params.retention_s)
            stale = [
                match_id
                for match_id, match in self._matches.items()
                if (match.state in TERMINAL_STATES or match.state == MatchState.PROPOSED)
                and match.updated_at <= cutoff
            ]
            for match_id in stale:
                del self._matches[match_id]
        return len(stale)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, match_id: str) -> Match:
        with self._lock:
            return self._get(match_id)

    def match_for_load(self, load_id: str) -> Match | None:
        """The Held or Accepted match on ``load_id``, if any."""
        with self._lock:
            match_id = self._load_keys.get(load_id)
            return self._matches.get(match_id) if match_id else None

    def match_for_vehicle(self, vehicle_id: str) -> Match | None:
        with self._lock:
            match_id = self._vehicle_keys.get(vehicle_id)
            return self._matches.get(match_id) if match_id else None

    def matches(self, state: MatchState | None = None) -> list[Match]:
        with self._lock:
            found = [m for m in self._matches.values() if state is None or m.state == state]
        return sorted(found, key=lambda m: (m.created_at, m.match_id))

    def locked_vehicles(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._vehicle_keys)

    def locked_loads(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._load_keys)

    # ------------------------------------------------------------------
    # Internals (caller holds the lock)
    # ------------------------------------------------------------------

    def _get(self, match_id: str) -> Match:
        match = self._matches.get(match_id)
        if match is None:
            raise MatchNotFound(match_id)
        return match

    @staticmethod
    def _lapsed(match: Match, now: datetime) -> bool:
        return match.held_until is not None and now >= match.held_until

    def _check_free(self, load_id: str, vehicle_ids: tuple[str, ...], now: datetime, pending: list) -> None:
        holders = [self._load_keys.get(load_id)] + [self._vehicle_keys.get(v) for v in vehicle_ids]
        for match_id in dict.fromkeys(h for h in holders if h):
            holder = self._matches[match_id]
            # Holds past their TTL give way even before the next sweep
            if holder.state == MatchState.HELD and self._lapsed(holder, now):
                self._expire(holder, now, pending)
        if load_id in self._load_keys:
            raise Conflict(f"Load {load_id} is already held", self._load_keys[load_id])
        for vehicle_id in vehicle_ids:
            if vehicle_id in self._vehicle_keys:
                raise Conflict(f"Vehicle {vehicle_id} is already held", self._vehicle_keys[vehicle_id])

    def _take_keys(self, match: Match) -> None:
        self._load_keys[match.load_id] = match.match_id
        for vehicle_id in match.vehicle_ids:
            self._vehicle_keys[vehicle_id] = match.match_id

    def _free_keys(self, match: Match) -> None:
        if self._load_keys.get(match.load_id) == match.match_id:
            del self._load_keys[match.load_id]
        for vehicle_id in match.vehicle_ids:
            if self._vehicle_keys.get(vehicle_id) == match.match_id:
                del self._vehicle_keys[vehicle_id]

    def _expire(self, match: Match, now: datetime, pending: list) -> None:
        self._free_keys(match)
        self._transition(match, MatchState.EXPIRED, now)
        pending.append((match, MatchState.HELD, EventType.MATCH_EXPIRED))

    @staticmethod
    def _transition(match: Match, state: MatchState, now: datetime) -> None:
        match.state = state
        match.updated_at = now

    def _notify(self, pending: list) -> None:
        for match, previous, event_type in pending:
            self._events.emit(event_type, **match.to_dict())
            for listener in list(self._listeners):
                try:
                    listener(match, previous)
                except Exception as exc:  # noqa: BLE001 - listeners never break a transition
                    logger.warning(f"Reservation listener failed for {match.match_id}: {exc}")


def _new_match_id() -> str:
    return f"M-{uuid.uuid4().hex[:12]}"
