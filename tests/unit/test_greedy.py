"""Tests for deterministic greedy selection."""

import random
from datetime import datetime, timedelta, timezone

import hypothesis.strategies as st
from hypothesis import given, settings

from relaymatch.core_types import Candidate, CandidateKind, GeoPoint, RouteLeg
from relaymatch.optimization import greedy_order, select_greedy

T0 = datetime(2026, 3, 2, 8, tzinfo=timezone.utc)


def candidate(load_id, vehicle_ids, score, hub=None):
    kind = CandidateKind.DIRECT if len(vehicle_ids) == 1 else CandidateKind.RELAY
    legs = tuple(
        RouteLeg(
            v,
            GeoPoint(0.0, 0.0),
            GeoPoint(0.0, 1.0),
            0.0,
            100.0,
            T0,
            T0 + timedelta(hours=1),
            1.0,
            end_hub_id=hub if i < len(vehicle_ids) - 1 else None,
        )
        for i, v in enumerate(vehicle_ids)
    )
    return Candidate(
        candidate_id=f"{load_id}:{'>'.join(vehicle_ids)}",
        load_id=load_id,
        kind=kind,
        legs=legs,
        generated_at=T0,
        expires_at=T0 + timedelta(minutes=5),
        score=score,
    )


def test_highest_score_wins():
    chosen = select_greedy([candidate("L1", ["V1"], 10.0), candidate("L1", ["V2"], 9.0)])
    assert [c.candidate_id for c in chosen] == ["L1:V1"]


def test_greedy_is_not_optimal():
    # Taking V1 for L1 leaves L2 without a vehicle
    candidates = [
        candidate("L1", ["V1"], 10.0),
        candidate("L1", ["V2"], 9.0),
        candidate("L2", ["V1"], 8.0),
    ]
    assert [c.candidate_id for c in select_greedy(candidates)] == ["L1:V1"]


def test_relay_consumes_every_leg_vehicle():
    candidates = [
        candidate("L1", ["V1", "V2"], 50.0),
        candidate("L2", ["V2"], 40.0),
        candidate("L3", ["V3"], 30.0),
    ]
    assert [c.candidate_id for c in select_greedy(candidates)] == ["L1:V1>V2", "L3:V3"]


def test_ties_break_by_load_then_candidate_id():
    candidates = [candidate("L2", ["V1"], 5.0), candidate("L1", ["V2"], 5.0), candidate("L1", ["V1"], 5.0)]
    assert [c.candidate_id for c in greedy_order(candidates)] == ["L1:V1", "L1:V2", "L2:V1"]
    assert [c.candidate_id for c in select_greedy(candidates)] == ["L1:V1"]


def test_empty_input():
    assert select_greedy([]) == []


def test_hub_capacity_limits_relays():
    candidates = [
        candidate("L1", ["V1", "V2"], 50.0, hub="HUB-H"),
        candidate("L2", ["V3", "V4"], 40.0, hub="HUB-H"),
        candidate("L2", ["V5"], 10.0),
    ]

    chosen = select_greedy(candidates, {"HUB-H": 1})
    assert [c.candidate_id for c in chosen] == ["L1:V1>V2", "L2:V5"]
    assert [c.candidate_id for c in select_greedy(candidates, {"HUB-H": 2})] == ["L1:V1>V2", "L2:V3>V4"]
    # Without capacities hubs are not limited
    assert len(select_greedy(candidates)) == 2


def test_full_hub_takes_no_relays():
    candidates = [candidate("L1", ["V1", "V2"], 50.0, hub="HUB-H"), candidate("L1", ["V3"], 5.0)]
    assert [c.candidate_id for c in select_greedy(candidates, {"HUB-H": 0})] == ["L1:V3"]


pools = st.lists(
    st.tuples(
        st.sampled_from(["L1", "L2", "L3", "L4"]),
        st.lists(st.sampled_from(["V1", "V2", "V3", "V4", "V5"]), min_size=1, max_size=3, unique=True),
        st.integers(0, 10).map(float),
    ),
    max_size=25,
    unique_by=lambda t: (t[0], tuple(t[1])),
)


@settings(max_examples=50)
@given(pool=pools, seed=st.integers(0, 1000))
def test_selection_ignores_input_order(pool, seed):
    candidates = [candidate(load_id, vehicles, score) for load_id, vehicles, score in pool]
    shuffled = list(candidates)
    random.Random(seed).shuffle(shuffled)

    assert [c.candidate_id for c in select_greedy(candidates)] == [
        c.candidate_id for c in select_greedy(shuffled)
    ]


@settings(max_examples=50)
@given(pool=pools)
def test_selection_never_reuses_loads_or_vehicles(pool):
    chosen = select_greedy([candidate(load_id, vehicles, score) for load_id, vehicles, score in pool])

    loads = [c.load_id for c in chosen]
    vehicles = [v for c in chosen for v in c.vehicle_ids]
    assert len(loads) == len(set(loads))
    assert len(vehicles) == len(set(vehicles))
