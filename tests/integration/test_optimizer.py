"""End-to-end batch runs of the network optimizer over small snapshots."""

import threading
from dataclasses import replace
from unittest.mock import patch

import pytest

from relaymatch.config.params import OptimizerParams, RelayMatchParams, RuntimeParams
from relaymatch.core_types import MatchState, RunState, SolverStatus
from relaymatch.events import EventBus, EventType, InMemoryEventSink
from relaymatch.exceptions import SolverTimeout
from relaymatch.optimization import NetworkOptimizer
from relaymatch.reservations import MatchCommitter, ReservationManager
from relaymatch.utils.solver import SOLVER_ENV_VAR


@pytest.fixture(autouse=True)
def _cbc_only(monkeypatch):
    monkeypatch.delenv(SOLVER_ENV_VAR, raising=False)


@pytest.fixture
def params():
    return RelayMatchParams(runtime=RuntimeParams(solver="cbc"))


@pytest.fixture
def sink():
    return InMemoryEventSink()


@pytest.fixture
def committer(t0, sink):
    events = EventBus([sink])
    return MatchCommitter(ReservationManager(clock=lambda: t0, events=events), events=events)


def _optimizer(params, committer, sink):
    return NetworkOptimizer(params, committer, events=EventBus([sink]))


@pytest.fixture
def two_loads(example_snapshot, make_load, make_snapshot):
    loads = [example_snapshot.loads["L1"], make_load("L2", pickup=(9, 12))]
    return make_snapshot(example_snapshot.vehicles.values(), loads, example_snapshot.hubs.values())


def test_example_assigns_direct_haul(params, committer, sink, example_snapshot):
    run = _optimizer(params, committer, sink).run(example_snapshot)

    assert run.state == RunState.COMPLETED
    assert run.method == "exact"
    assert run.solver_status == SolverStatus.OPTIMAL
    (match,) = run.matches
    assert match.load_id == "L1"
    assert match.vehicle_ids == ("V1",)
    assert match.state == MatchState.HELD
    assert match.source == "batch"
    assert run.objective_value == pytest.approx(run.selected[0].score)
    assert committer.reservations.match_for_load("L1") is match

    (event,) = sink.of_type(EventType.OPTIMIZATION_RUN_COMPLETED)
    assert event.payload["matched"] == 1
    assert event.payload["method"] == "exact"


def test_large_instance_uses_greedy(params, committer, sink, example_snapshot):
    params = replace(params, optimizer=OptimizerParams(exact_max_candidates=0))

    run = _optimizer(params, committer, sink).run(example_snapshot)

    assert run.method == "greedy"
    assert run.solver_status == SolverStatus.FEASIBLE
    assert [m.vehicle_ids for m in run.matches] == [("V1",)]


@patch("relaymatch.optimization.core.solve_exact", side_effect=SolverTimeout("budget exhausted"))
def test_solver_timeout_falls_back_to_greedy(mock_solve, params, committer, sink, example_snapshot):
    run = _optimizer(params, committer, sink).run(example_snapshot)

    mock_solve.assert_called_once()
    assert run.state == RunState.COMPLETED
    assert run.solver_status == SolverStatus.TIMED_OUT
    assert run.method == "greedy"
    assert len(run.matches) == 1


def test_every_load_matched_once(params, committer, sink, two_loads):
    run = _optimizer(params, committer, sink).run(two_loads)

    assert sorted(m.load_id for m in run.matches) == ["L1", "L2"]
    vehicles = [v for m in run.matches for v in m.vehicle_ids]
    assert len(vehicles) == len(set(vehicles))
    assert run.load_count == 2


def test_cancelled_run_holds_nothing(params, committer, sink, example_snapshot):
    cancel = threading.Event()
    cancel.set()

    run = _optimizer(params, committer, sink).run(example_snapshot, cancel=cancel)

    assert run.state == RunState.ABORTED
    assert run.matches == []
    assert committer.reservations.locked_loads() == frozenset()
    assert sink.of_type(EventType.OPTIMIZATION_RUN_COMPLETED) == []


def test_abort_during_holds_rolls_back(params, committer, sink, two_loads):
    cancel = threading.Event()
    original = committer.commit

    def commit_then_cancel(*args, **kwargs):
        result = original(*args, **kwargs)
        cancel.set()
        return result

    with patch.object(committer, "commit", side_effect=commit_then_cancel):
        run = _optimizer(params, committer, sink).run(two_loads, cancel=cancel)

    assert run.state == RunState.ABORTED
    assert committer.reservations.locked_loads() == frozenset()
    assert committer.reservations.locked_vehicles() == frozenset()
    (released,) = committer.reservations.matches(MatchState.REJECTED)
    assert released.source == "batch"


def test_hold_lost_to_on_demand_request_is_discarded(params, committer, sink, example_snapshot):
    def latest():
        # An on-demand reservation lands while the run is solving
        committer.reservations.hold("L1", ["V9"])
        return example_snapshot

    run = _optimizer(params, committer, sink).run(example_snapshot, latest_snapshot=latest)

    assert run.state == RunState.COMPLETED
    assert run.matches == []
    assert run.discarded == ["L1:D:V1"]
    assert committer.reservations.match_for_load("L1").vehicle_ids == ("V9",)


def test_held_loads_and_vehicles_are_skipped(params, committer, sink, two_loads):
    committer.reservations.hold("L1", ["V1"])

    run = _optimizer(params, committer, sink).run(two_loads)

    assert run.load_count == 1
    (match,) = run.matches
    assert match.load_id == "L2"
    assert "V1" not in match.vehicle_ids


def test_infeasible_loads_are_reported(params, committer, sink, example_snapshot, make_load, make_snapshot):
    snapshot = make_snapshot(example_snapshot.vehicles.values(), [make_load(equipment="reefer")])

    run = _optimizer(params, committer, sink).run(snapshot)

    assert run.state == RunState.COMPLETED
    assert run.solver_status == SolverStatus.INFEASIBLE
    assert run.method == "none"
    assert [(f.load_id, f.reason) for f in run.failures] == [("L1", "infeasible")]
    assert run.summary()["failures"] == 1


def test_params_are_read_once_per_run(committer, sink, example_snapshot, params):
    calls = []

    def provider():
        calls.append(1)
        return params

    _optimizer(provider, committer, sink).run(example_snapshot)

    assert len(calls) == 1


@pytest.fixture
def relay_only(points, make_vehicle, make_load, make_hub, make_snapshot):
    """Two A to B loads that both need a handoff at HUB-H, which takes one exchange."""
    vehicles = [
        make_vehicle(vehicle_id, position, duty=2.5)
        for vehicle_id, position in [("V1", points.A), ("V2", points.A), ("V3", points.H), ("V4", points.H)]
    ]
    return make_snapshot(vehicles, [make_load("L1"), make_load("L2")], [make_hub("HUB-H", points.H, capacity=1)])


@pytest.mark.parametrize("exact_max_candidates, method", [(2000, "exact"), (0, "greedy")])
def test_hub_capacity_caps_relays_per_run(params, committer, sink, relay_only, exact_max_candidates, method):
    params = replace(params, optimizer=OptimizerParams(exact_max_candidates=exact_max_candidates))

    run = _optimizer(params, committer, sink).run(relay_only)

    assert run.method == method
    assert run.candidate_count == 8
    assert len(run.selected) == 1
    assert len(run.matches) == 1
    assert committer.hub_usage() == {"HUB-H": 1}


def test_committed_exchanges_reduce_spare_capacity(params, committer, sink, relay_only):
    busy = replace(relay_only, hub_usage={"HUB-H": 1})

    run = _optimizer(params, committer, sink).run(busy)

    # A full hub generates no relay candidates at all
    assert run.method == "none"
    assert {f.load_id for f in run.failures} == {"L1", "L2"}


def test_timings_cover_the_latest_run_only(params, committer, sink, example_snapshot):
    optimizer = _optimizer(params, committer, sink)

    optimizer.run(example_snapshot)
    first = optimizer.time_recorder
    optimizer.run(example_snapshot)

    assert optimizer.time_recorder is not first
    assert [m.span_name for m in optimizer.time_recorder.measurements] == [
        "candidate_generation",
        "scoring",
        "holds",
    ]
