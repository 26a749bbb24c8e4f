"""
Matching engine facade.

Wires the feed, hub selector, forecaster, reservation manager, relay planner
and network optimizer together and exposes the query surface
(``top_candidates``, ``match_state``, ``hubs_near``), the on-demand match path
and the batch scheduler.

Example
-------
>>> engine = MatchingEngine(ParamsStore())
>>> engine.ingestor.ingest_vehicle_update(vehicle)
>>> engine.ingestor.ingest_load_event("created", load)
>>> match = engine.request_match(load.load_id)
>>> engine.accept(match.match_id)
"""

import threading
from collections import deque
from collections.abc import Callable
from datetime import datetime

from relaymatch.config.params import RelayMatchParams
from relaymatch.config.store import ParamsStore
from relaymatch.core_types import (
    Candidate,
    Facility,
    FleetSnapshot,
    GeoPoint,
    LoadStatus,
    Match,
    MatchState,
    OptimizationRun,
    SmartHub,
)
from relaymatch.events import EventBus, EventSink, LoggingEventSink
from relaymatch.exceptions import Conflict, FeedUnavailable, InfeasibleInstance, RelayMatchError, StaleState
from relaymatch.hubs.selector import HubSelector
from relaymatch.ingestion import FeedIngestor
from relaymatch.interfaces import DemandForecaster
from relaymatch.matching.candidates import generate_candidates
from relaymatch.matching.scoring import Scorer
from relaymatch.optimization.core import NetworkOptimizer
from relaymatch.relay.planner import RelayPlanner
from relaymatch.reservations.commit import MatchCommitter
from relaymatch.reservations.manager import ReservationManager, utc_now
from relaymatch.utils.logging import RelayMatchLogger, log_warning

logger = RelayMatchLogger.get_logger(__name__)

_LOAD_STATUS_FOR_MATCH = {
    MatchState.HELD: LoadStatus.RESERVED,
    MatchState.ACCEPTED: LoadStatus.ASSIGNED,
    MatchState.REJECTED: LoadStatus.OPEN,
    MatchState.EXPIRED: LoadStatus.OPEN,
}


class MatchingEngine:
    def __init__(
        self,
        store: ParamsStore | None = None,
        *,
        ingestor: FeedIngestor | None = None,
        hub_selector: HubSelector | None = None,
        forecaster: DemandForecaster | None = None,
        sinks: list[EventSink] | None = None,
        clock: Callable[[], datetime] | None = None,
        solver=None,
    ):
        self.store = store or ParamsStore()
        self.clock = clock or utc_now
        self.events = EventBus([LoggingEventSink(), *(sinks or [])])
        self.forecaster = forecaster

        self.ingestor = ingestor or FeedIngestor(
            lambda: self.params.optimizer.feed_stale_after_s, clock=self.clock
        )
        self.hub_selector = hub_selector or HubSelector(self.events)
        self.reservations = ReservationManager(
            lambda: self.params.reservations, clock=self.clock, events=self.events
        )
        self.planner = RelayPlanner(lambda: self.params.candidates)
        self.committer = MatchCommitter(self.reservations, self.planner, self.hub_selector, self.events)
        self.optimizer = NetworkOptimizer(
            lambda: self.params, self.committer, forecaster, self.events, solver=solver
        )

        self.ingestor.attach_hubs(lambda: self.hub_selector.hubs, self._hub_usage)
        self.reservations.subscribe(self._sync_load_status)

    @property
    def params(self) -> RelayMatchParams:
        return self.store.current()

    # ------------------------------------------------------------------
    # Query surface
    # ------------------------------------------------------------------

    def snapshot(self, require_fresh: bool = False) -> FleetSnapshot:
        return self.ingestor.snapshot(require_fresh=require_fresh)

    def top_candidates(self, load_id: str, n: int | None = None) -> list[Candidate]:
        """Best scored candidates for one load against the current snapshot."""
        params = self.params
        snapshot = self.snapshot()
        return self._scored_candidates(load_id, snapshot, params)[: n or params.candidates.top_k]

    def match_state(self, load_id: str | None = None, vehicle_id: str | None = None) -> Match | None:
        """The Held/Accepted match for a load or a vehicle, if any."""
        if (load_id is None) == (vehicle_id is None):
            raise ValueError("Pass exactly one of load_id or vehicle_id")
        if load_id is not None:
            return self.reservations.match_for_load(load_id)
        return self.reservations.match_for_vehicle(vehicle_id)

    def hubs_near(self, point: GeoPoint, radius_km: float) -> list[SmartHub]:
        return self.hub_selector.hubs_near(point, radius_km)

    # ------------------------------------------------------------------
    # On-demand path
    # ------------------------------------------------------------------

    def request_match(self, load_id: str, ttl_s: float | None = None) -> Match:
        """Hold the best available candidate for ``load_id``.

        Candidates that lose their hold race or went stale are skipped in score
        order; Conflict is raised when the load itself is already held.
        """
        existing = self.reservations.match_for_load(load_id)
        if existing is not None:
            raise Conflict(f"Load {load_id} is already {existing.state.value}", existing.match_id)

        params = self.params
        snapshot = self.snapshot()
        candidates = self._scored_candidates(load_id, snapshot, params)
        ttl = ttl_s if ttl_s is not None else params.reservations.hold_ttl_s
        last_error: Exception | None = None
        for candidate in candidates:
            try:
                match, _ = self.committer.commit(candidate, snapshot, source="on_demand", ttl_s=ttl)
                return match
            except (Conflict, StaleState) as exc:
                last_error = exc
                logger.debug(f"Skipping {candidate.candidate_id}: {exc}")
        if isinstance(last_error, Conflict):
            raise last_error
        raise InfeasibleInstance(load_id, "every candidate went stale")

    def hold(self, load_id: str, vehicle_ids, ttl_s: float | None = None) -> Match:
        return self.reservations.hold(load_id, vehicle_ids, ttl_s=ttl_s)

    def accept(self, match_id: str) -> Match:
        return self.reservations.accept(match_id)

    def release(self, match_id: str) -> Match:
        return self.reservations.release(match_id)

    def cancel(self, match_id: str) -> Match:
        return self.reservations.cancel(match_id)

    # ------------------------------------------------------------------
    # Batch path and housekeeping
    # ------------------------------------------------------------------

    def run_optimization(self, cancel: threading.Event | None = None) -> OptimizationRun:
        """One batch pass; raises FeedUnavailable when the position feed is lost."""
        self.sweep()
        snapshot = self.ingestor.snapshot(require_fresh=True)
        run = self.optimizer.run(
            snapshot,
            cancel=cancel,
            latest_snapshot=lambda: self.ingestor.snapshot(require_fresh=False),
        )
        failed = {failure.load_id for failure in run.failures}
        held = {match.load_id for match in run.matches} | self.reservations.locked_loads()
        for load in snapshot.open_loads():
            if load.status == LoadStatus.OPEN and load.load_id not in failed | held:
                # Holds made while the run was solving have already moved the load on
                self.ingestor.set_load_status(load.load_id, LoadStatus.CANDIDATE, expected=LoadStatus.OPEN)
        return run

    def sweep(self) -> list[Match]:
        """Expire lapsed holds, expire loads past their pickup window, drop old matches."""
        expired = self.reservations.sweep_expired()
        now = self.clock()
        for load in self.snapshot().open_loads():
            if load.pickup_latest < now:
                self.ingestor.set_load_status(load.load_id, LoadStatus.EXPIRED, expected=load.status)
        self.reservations.gc()
        return expired

    def refresh_hubs(self, crossovers: list[GeoPoint], facilities: list[Facility]) -> list[SmartHub]:
        return self.hub_selector.refresh(crossovers, facilities, self.params.hubs)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _scored_candidates(
        self, load_id: str, snapshot: FleetSnapshot, params: RelayMatchParams
    ) -> list[Candidate]:
        load = snapshot.loads.get(load_id)
        if load is None:
            raise InfeasibleInstance(load_id, "unknown load")
        if load.status not in (LoadStatus.OPEN, LoadStatus.CANDIDATE):
            raise InfeasibleInstance(load_id, f"load is {load.status.value}")
        candidates = generate_candidates(
            load, snapshot, params.candidates, exclude_vehicles=self.reservations.locked_vehicles()
        )
        scorer = Scorer(params.scoring, self.forecaster, params.forecast.cell_size_deg)
        return scorer.score_all(candidates, load, snapshot)

    def _hub_usage(self) -> dict[str, int]:
        return self.committer.hub_usage()

    def _sync_load_status(self, match: Match, previous: MatchState | None) -> None:
        status = _LOAD_STATUS_FOR_MATCH.get(match.state)
        if status is None:
            return
        load = self.ingestor.get_load(match.load_id)
        if load is None or load.status in (LoadStatus.CANCELLED, LoadStatus.DELIVERED, LoadStatus.IN_TRANSIT):
            return
        self.ingestor.set_load_status(match.load_id, status)


class BatchScheduler:
    """Runs the network optimizer on a fixed cadence in a background thread.

    Each tick reloads configuration if its file changed, sweeps expired holds
    and runs one pass.  Passes never overlap; a pass that overruns delays the
    next tick.  While the feed is unavailable runs are skipped.
    """

    def __init__(self, engine: MatchingEngine, history: int = 10):
        self.engine = engine
        self.paused = False
        # Most recent runs, oldest first
        self.runs: deque[OptimizationRun] = deque(maxlen=history)
        self._stop = threading.Event()
        self._cancel = threading.Event()
        self._thread: threading.Thread | None = None

    def tick(self) -> OptimizationRun | None:
        self.engine.store.maybe_reload()
        try:
            run = self.engine.run_optimization(cancel=self._cancel)
        except FeedUnavailable as exc:
            if not self.paused:
                log_warning(f"Position feed unavailable, pausing batch runs: {exc}")
            self.paused = True
            return None
        if self.paused:
            logger.info("Position feed restored, resuming batch runs")
        self.paused = False
        self.runs.append(run)
        return run

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.tick()
            except RelayMatchError as exc:
                logger.error(f"Batch run failed: {exc}")
            self._stop.wait(self.engine.params.optimizer.cadence_s)

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._cancel.clear()
        self._thread = threading.Thread(target=self._loop, name="relaymatch-batch", daemon=True)
        self._thread.start()

    def stop(self, abort_running: bool = True, timeout: float | None = None) -> None:
        self._stop.set()
        if abort_running:
            self._cancel.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
