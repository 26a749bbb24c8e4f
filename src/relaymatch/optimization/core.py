"""
core.py

Network-wide batch matching.

One pass over an immutable :class:`FleetSnapshot`:

``Collecting``
    Generate and score candidates for every open, unheld load, excluding
    vehicles that already hold a match.  Per-load failures are isolated into
    the run.
``Solving``
    Exact assignment model (:mod:`relaymatch.optimization.model`) when the
    instance has fewer than ``exact_max_candidates`` candidates, bounded by
    ``solver_time_budget_s``; the deterministic greedy selection otherwise,
    or when the exact solve times out.
``Completed``
    Only now are holds issued, one compare-and-set per selected candidate.
    A hold that loses to an on-demand reservation made while the run was
    solving discards that proposal; the load re-enters the next run.

A run may be aborted through a cancel event or its deadline at any point; an
aborted run releases whatever it held and leaves no partial holds.

Typical usage
-------------
>>> optimizer = NetworkOptimizer(params_store, committer)
>>> run = optimizer.run(snapshot)
>>> run.summary()["matched"]
3
"""

import threading
import time
import uuid
from collections.abc import Callable

from relaymatch.config.params import RelayMatchParams
from relaymatch.core_types import (
    Candidate,
    FleetSnapshot,
    LoadFailure,
    OptimizationRun,
    RunState,
    SolverStatus,
)
from relaymatch.events import EventBus, EventType
from relaymatch.exceptions import Conflict, StaleState, SolverTimeout
from relaymatch.interfaces import DemandForecaster
from relaymatch.matching.candidates import generate_batch
from relaymatch.matching.scoring import Scorer
from relaymatch.reservations.commit import MatchCommitter
from relaymatch.utils.logging import RelayMatchLogger, Symbols
from relaymatch.utils.time_measurement import TimeRecorder

from .greedy import select_greedy
from .model import solve_exact

logger = RelayMatchLogger.get_logger(__name__)


class RunAborted(Exception):
    """Internal signal: the run's cancel event fired or its deadline passed."""


class NetworkOptimizer:
    def __init__(
        self,
        params: RelayMatchParams | Callable[[], RelayMatchParams],
        committer: MatchCommitter,
        forecaster: DemandForecaster | None = None,
        events: EventBus | None = None,
        solver=None,
    ):
        self._params = params
        self.committer = committer
        self.forecaster = forecaster
        self._events = events or EventBus()
        self.solver = solver
        # Timings of the most recent run only
        self.time_recorder = TimeRecorder()

    def current_params(self) -> RelayMatchParams:
        if callable(self._params):
            return self._params()
        return self._params

    def run(
        self,
        snapshot: FleetSnapshot,
        cancel: threading.Event | None = None,
        latest_snapshot: Callable[[], FleetSnapshot] | None = None,
    ) -> OptimizationRun:
        """Run one pass over ``snapshot``.

        ``latest_snapshot`` supplies the state holds are validated against; relay
        candidates whose vehicles reported since ``snapshot`` are discarded.
        """
        # One parameter version for the whole pass
        params = self.current_params()
        started = time.perf_counter()
        deadline = started + params.optimizer.run_deadline_s
        cancel = cancel or threading.Event()
        recorder = TimeRecorder()
        self.time_recorder = recorder

        run = OptimizationRun(run_id=f"run-{uuid.uuid4().hex[:12]}", snapshot_at=snapshot.taken_at)
        held = []
        try:
            candidates = self._collect(run, snapshot, params, recorder)
            _check_abort(cancel, deadline)

            run.state = RunState.SOLVING
            if not candidates:
                run.solver_status = SolverStatus.INFEASIBLE
                run.method = "none"
                logger.info(f"{Symbols.WARNING} Run {run.run_id}: no load has a feasible candidate")
            else:
                with recorder.measure("solve"):
                    self._solve(run, candidates, params, deadline, snapshot.spare_hub_capacity())
            _check_abort(cancel, deadline)

            commit_snapshot = latest_snapshot() if latest_snapshot else snapshot
            with recorder.measure("holds"):
                for candidate in run.selected:
                    _check_abort(cancel, deadline)
                    try:
                        match, _ = self.committer.commit(
                            candidate, commit_snapshot, source="batch", ttl_s=params.reservations.hold_ttl_s
                        )
                    except (Conflict, StaleState) as exc:
                        run.discarded.append(candidate.candidate_id)
                        logger.debug(f"Discarded {candidate.candidate_id}: {exc}")
                        continue
                    held.append(match)
            run.matches = held
            run.state = RunState.COMPLETED
        except RunAborted:
            self._rollback(held)
            run.matches = []
            run.state = RunState.ABORTED
            logger.warning(f"Run {run.run_id} aborted, released {len(held)} holds")

        run.runtime_sec = time.perf_counter() - started
        run.completed_at = self.committer.reservations.now()
        if run.state == RunState.COMPLETED:
            self._events.emit(EventType.OPTIMIZATION_RUN_COMPLETED, **run.summary())
            logger.info(
                f"Run {run.run_id}: {len(run.matches)} matched, {len(run.discarded)} discarded, "
                f"{len(run.failures)} failed ({run.method}, {run.runtime_sec:.2f}s)"
            )
        return run

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _collect(
        self,
        run: OptimizationRun,
        snapshot: FleetSnapshot,
        params: RelayMatchParams,
        recorder: TimeRecorder,
    ) -> list[Candidate]:
        reservations = self.committer.reservations
        locked_loads = reservations.locked_loads()
        loads = [load for load in snapshot.open_loads() if load.load_id not in locked_loads]
        run.load_count = len(loads)

        with recorder.measure("candidate_generation"):
            by_load, failures = generate_batch(
                loads, snapshot, params.candidates, exclude_vehicles=reservations.locked_vehicles()
            )
        run.failures.extend(failures)

        scorer = Scorer(params.scoring, self.forecaster, params.forecast.cell_size_deg)
        load_lookup = {load.load_id: load for load in loads}
        candidates: list[Candidate] = []
        with recorder.measure("scoring"):
            for load_id in sorted(by_load):
                try:
                    candidates.extend(scorer.score_all(by_load[load_id], load_lookup[load_id], snapshot))
                except (ValueError, KeyError, ZeroDivisionError) as exc:
                    logger.warning(f"Scoring failed for load {load_id}: {exc}")
                    run.failures.append(LoadFailure(load_id, "scoring", str(exc)))
        run.candidate_count = len(candidates)
        return candidates

    def _solve(
        self,
        run: OptimizationRun,
        candidates: list[Candidate],
        params: RelayMatchParams,
        deadline: float,
        hub_capacity: dict[str, int] | None = None,
    ) -> None:
        opt = params.optimizer
        if len(candidates) < opt.exact_max_candidates:
            budget = min(opt.solver_time_budget_s, max(deadline - time.perf_counter(), 0.0))
            try:
                if budget <= 0:
                    raise SolverTimeout("no time left before the run deadline")
                run.selected, run.objective_value = solve_exact(
                    candidates, params.runtime, budget, self.solver, hub_capacity=hub_capacity
                )
                run.solver_status = SolverStatus.OPTIMAL
                run.method = "exact"
                return
            except SolverTimeout as exc:
                logger.warning(f"Exact solve timed out, using greedy selection: {exc}")
                run.solver_status = SolverStatus.TIMED_OUT
        else:
            logger.debug(
                f"{len(candidates)} candidates exceed the exact limit of {opt.exact_max_candidates}"
            )
            run.solver_status = SolverStatus.FEASIBLE

        run.selected = select_greedy(candidates, hub_capacity)
        run.objective_value = sum(c.score for c in run.selected)
        run.method = "greedy"

    def _rollback(self, held) -> None:
        for match in held:
            try:
                self.committer.reservations.release(match.match_id)
            except Conflict as exc:
                # Accepted in the meantime; acceptance wins over the abort
                logger.debug(f"Kept {match.match_id} on abort: {exc}")


def _check_abort(cancel: threading.Event, deadline: float) -> None:
    if cancel.is_set() or time.perf_counter() > deadline:
        raise RunAborted()
