"""Tests for the matching engine facade and the batch scheduler."""

import threading
from dataclasses import replace
from datetime import timedelta

import pytest

from relaymatch.config import ParamsStore
from relaymatch.config.params import RelayMatchParams, RuntimeParams
from relaymatch.core_types import LoadStatus, Match, MatchState, RunState
from relaymatch.engine import BatchScheduler, MatchingEngine
from relaymatch.events import EventType, InMemoryEventSink
from relaymatch.exceptions import Conflict, FeedUnavailable, InfeasibleInstance, RelayMatchError
from relaymatch.ingestion import LoadEventKind
from relaymatch.utils.solver import SOLVER_ENV_VAR


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture(autouse=True)
def _cbc_only(monkeypatch):
    monkeypatch.delenv(SOLVER_ENV_VAR, raising=False)


@pytest.fixture
def clock(t0):
    return Clock(t0)


@pytest.fixture
def sink():
    return InMemoryEventSink()


@pytest.fixture
def engine(clock, sink, example_snapshot, t0):
    engine = MatchingEngine(
        ParamsStore(RelayMatchParams(runtime=RuntimeParams(solver="cbc"))), sinks=[sink], clock=clock
    )
    engine.hub_selector.publish(list(example_snapshot.hubs.values()))
    for vehicle in example_snapshot.vehicles.values():
        engine.ingestor.ingest_vehicle_update(vehicle)
    for load in example_snapshot.loads.values():
        engine.ingestor.ingest_load_event(LoadEventKind.CREATED, load, timestamp=t0)
    return engine


def test_top_candidates_are_scored(engine):
    top = engine.top_candidates("L1", 3)

    assert len(top) == 3
    assert top[0].candidate_id == "L1:D:V1"
    assert [c.score for c in top] == sorted((c.score for c in top), reverse=True)


def test_top_candidates_for_unknown_load(engine):
    with pytest.raises(InfeasibleInstance, match="unknown load"):
        engine.top_candidates("L404")


def test_request_match_holds_best_candidate(engine, sink):
    match = engine.request_match("L1")

    assert match.state == MatchState.HELD
    assert match.vehicle_ids == ("V1",)
    assert engine.match_state(load_id="L1") is match
    assert engine.match_state(vehicle_id="V1") is match
    assert engine.ingestor.get_load("L1").status == LoadStatus.RESERVED
    assert [e.event_type for e in sink.events] == [EventType.MATCH_CREATED, EventType.MATCH_HELD]


def test_second_request_conflicts(engine):
    first = engine.request_match("L1")
    with pytest.raises(Conflict) as exc_info:
        engine.request_match("L1")
    assert exc_info.value.conflicting_match_id == first.match_id


def test_accept_assigns_load(engine):
    match = engine.request_match("L1")

    engine.accept(match.match_id)

    assert engine.ingestor.get_load("L1").status == LoadStatus.ASSIGNED


def test_release_reopens_load(engine):
    match = engine.request_match("L1")

    engine.release(match.match_id)

    assert engine.match_state(load_id="L1") is None
    assert engine.ingestor.get_load("L1").status == LoadStatus.OPEN


def test_cancelled_load_stays_cancelled(engine, t0):
    match = engine.request_match("L1")
    engine.ingestor.ingest_load_event(LoadEventKind.CANCELLED, load_id="L1", timestamp=t0 + timedelta(minutes=1))

    engine.cancel(match.match_id)

    assert engine.ingestor.get_load("L1").status == LoadStatus.CANCELLED
    with pytest.raises(InfeasibleInstance, match="Cancelled"):
        engine.request_match("L1")


def test_sweep_expires_holds_and_reopens_load(engine, clock, t0):
    match = engine.request_match("L1", ttl_s=60)
    clock.now = t0 + timedelta(seconds=61)

    expired = engine.sweep()

    assert [m.match_id for m in expired] == [match.match_id]
    assert engine.ingestor.get_load("L1").status == LoadStatus.OPEN
    # The vehicle is free for the next request
    assert engine.request_match("L1").vehicle_ids == ("V1",)


def test_sweep_expires_missed_loads(engine, clock, t0):
    clock.now = t0.replace(hour=11, minute=30)

    engine.sweep()

    assert engine.ingestor.get_load("L1").status == LoadStatus.EXPIRED


def test_run_optimization(engine):
    run = engine.run_optimization()

    assert run.state == RunState.COMPLETED
    assert [m.load_id for m in run.matches] == ["L1"]
    assert engine.ingestor.get_load("L1").status == LoadStatus.RESERVED


def test_relay_usage_reaches_snapshot(engine):
    candidates = {c.candidate_id: c for c in engine.top_candidates("L1")}
    engine.committer.commit(candidates["L1:R:V1>HUB-H>V3"], engine.snapshot())

    assert engine.snapshot().hub_usage == {"HUB-H": 1}


def test_hubs_near(engine, points):
    assert [h.hub_id for h in engine.hubs_near(points.H, 10.0)] == ["HUB-H"]
    assert engine.hubs_near(points.FAR, 10.0) == []


def test_match_state_needs_exactly_one_key(engine):
    with pytest.raises(ValueError):
        engine.match_state()
    with pytest.raises(ValueError):
        engine.match_state(load_id="L1", vehicle_id="V1")


def test_scheduler_pauses_while_feed_is_down(engine, clock, t0):
    scheduler = BatchScheduler(engine)
    clock.now = t0 + timedelta(hours=1)

    assert scheduler.tick() is None
    assert scheduler.paused
    with pytest.raises(FeedUnavailable):
        engine.run_optimization()

    clock.now = t0 + timedelta(hours=1, minutes=1)
    for vehicle in engine.snapshot().vehicles.values():
        engine.ingestor.ingest_vehicle_update(replace(vehicle, timestamp=clock.now))

    run = scheduler.tick()
    assert run is not None
    assert not scheduler.paused
    assert list(scheduler.runs) == [run]


def test_scheduler_keeps_only_recent_runs(engine):
    scheduler = BatchScheduler(engine, history=2)

    runs = [scheduler.tick() for _ in range(3)]

    assert list(scheduler.runs) == runs[1:]


def test_request_match_with_zero_ttl(engine, t0):
    match = engine.request_match("L1", ttl_s=0)
    assert match.held_until == t0


def test_on_demand_hold_during_run_keeps_load_reserved(engine, monkeypatch):
    solve = engine.optimizer._solve
    interim = []

    def solve_then_hold(*args, **kwargs):
        solve(*args, **kwargs)
        interim.append(engine.request_match("L1"))

    monkeypatch.setattr(engine.optimizer, "_solve", solve_then_hold)

    run = engine.run_optimization()

    assert run.matches == []
    assert run.discarded == ["L1:D:V1"]
    (match,) = interim
    assert engine.match_state(load_id="L1") is match
    assert engine.ingestor.get_load("L1").status == LoadStatus.RESERVED


@pytest.fixture
def relay_only_engine(clock, sink, points, make_vehicle, make_load, make_hub, t0):
    """Two A to B loads; short duty forces a handoff at HUB-H, which takes one exchange."""
    engine = MatchingEngine(
        ParamsStore(RelayMatchParams(runtime=RuntimeParams(solver="cbc"))), sinks=[sink], clock=clock
    )
    engine.hub_selector.publish([make_hub("HUB-H", points.H, capacity=1)])
    for vehicle_id, position in [("V1", points.A), ("V2", points.A), ("V3", points.H), ("V4", points.H)]:
        engine.ingestor.ingest_vehicle_update(make_vehicle(vehicle_id, position, duty=2.5))
    for load_id in ("L1", "L2"):
        engine.ingestor.ingest_load_event(LoadEventKind.CREATED, make_load(load_id), timestamp=t0)
    return engine


def test_batch_run_respects_hub_capacity(relay_only_engine):
    run = relay_only_engine.run_optimization()

    assert run.state == RunState.COMPLETED
    assert len(run.matches) == 1
    assert run.discarded == []
    assert relay_only_engine._hub_usage() == {"HUB-H": 1}


def test_concurrent_relay_requests_respect_hub_capacity(relay_only_engine):
    barrier = threading.Barrier(2)
    results = {}

    def request(load_id):
        barrier.wait()
        try:
            results[load_id] = relay_only_engine.request_match(load_id)
        except RelayMatchError as exc:
            results[load_id] = exc

    threads = [threading.Thread(target=request, args=(load_id,)) for load_id in ("L1", "L2")]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(5.0)

    held = [r for r in results.values() if isinstance(r, Match)]
    assert len(results) == 2
    assert len(held) == 1
    assert relay_only_engine._hub_usage() == {"HUB-H": 1}
