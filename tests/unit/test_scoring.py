"""Tests for the candidate scorer."""

from dataclasses import replace

import hypothesis.strategies as st
import pytest
from hypothesis import HealthCheck, given, settings

from relaymatch.config.params import ScoreWeights, ScoringParams
from relaymatch.core_types import DemandForecast
from relaymatch.matching import Scorer, generate_candidates
from relaymatch.matching.scoring import NEUTRAL


class FixedForecaster:
    """Returns a fixed imbalance per cell."""

    def __init__(self, balances, confidence=1.0):
        self.balances = balances
        self.confidence = confidence
        self.calls = 0

    def forecast(self, cell_id, bucket_start):
        self.calls += 1
        balance = self.balances.get(cell_id, 0.0)
        return DemandForecast(
            cell_id=cell_id,
            bucket_start=bucket_start,
            expected_loads=max(balance, 0.0),
            expected_trucks=max(-balance, 0.0),
            loads_interval=(0.0, 1.0),
            trucks_interval=(0.0, 1.0),
            confidence=self.confidence,
            cycles=4,
        )


@pytest.fixture
def scored_inputs(example_snapshot):
    load = example_snapshot.loads["L1"]
    candidates = {c.candidate_id: c for c in generate_candidates(load, example_snapshot)}
    return load, candidates, example_snapshot


def test_direct_hub_and_balance_are_neutral(scored_inputs):
    load, candidates, snapshot = scored_inputs
    parts = Scorer().breakdown(candidates["L1:D:V1"], load, snapshot)

    assert parts.hub_utilization == NEUTRAL
    assert parts.network_balance == NEUTRAL
    # No home base: zero deadhead is break-even
    assert parts.deadhead == pytest.approx(0.5)
    assert parts.tightness == pytest.approx(3.0 / 4.0)
    assert 0.0 <= parts.total <= 100.0


def test_relay_hub_component_uses_spare_capacity(scored_inputs, make_snapshot):
    load, candidates, snapshot = scored_inputs
    relay = candidates["L1:R:V1>HUB-H>V3"]
    busy = make_snapshot(
        snapshot.vehicles.values(), snapshot.loads.values(), snapshot.hubs.values(), hub_usage={"HUB-H": 1}
    )

    assert Scorer().hub_component(relay, snapshot) == pytest.approx(0.4)
    assert Scorer().hub_component(relay, busy) == pytest.approx(0.4 * 0.8)


def test_example_direct_outscores_relay(scored_inputs):
    load, candidates, snapshot = scored_inputs
    scorer = Scorer()
    assert scorer.score(candidates["L1:D:V1"], load, snapshot) > scorer.score(
        candidates["L1:R:V1>HUB-H>V3"], load, snapshot
    )


def test_deadhead_component_rewards_trips_home(points, make_vehicle, make_load, make_snapshot):
    homeward = make_snapshot([make_vehicle("V1", points.A, home=points.B)], [make_load()])
    (candidate,) = generate_candidates(homeward.loads["L1"], homeward)
    assert Scorer().deadhead_component(candidate) == pytest.approx(1.0)


def test_earnings_component_clamps(scored_inputs, make_load):
    _, candidates, _ = scored_inputs
    candidate = candidates["L1:D:V1"]
    scorer = Scorer()
    assert scorer.earnings_component(candidate, make_load(rate=0.0)) == 0.0
    assert scorer.earnings_component(candidate, make_load(rate=1e6)) == 1.0


def test_balance_bonus_for_undersupplied_destination(scored_inputs):
    load, candidates, snapshot = scored_inputs
    # Origin r41_c-88 has spare trucks, destination r39_c-87 is short of them
    forecaster = FixedForecaster({"r41_c-88": -10.0, "r39_c-87": 10.0})
    scorer = Scorer(forecaster=forecaster)

    assert scorer.balance_component(candidates["L1:D:V1"], load) == pytest.approx(1.0)
    assert forecaster.calls == 2


def test_low_confidence_pulls_towards_neutral(scored_inputs):
    load, candidates, _ = scored_inputs
    forecaster = FixedForecaster({"r39_c-87": 10.0}, confidence=0.0)
    assert Scorer(forecaster=forecaster).balance_component(candidates["L1:D:V1"], load) == NEUTRAL


def test_score_all_orders_best_first(scored_inputs):
    load, candidates, snapshot = scored_inputs
    scored = Scorer().score_all(list(candidates.values()), load, snapshot)

    keys = [(-c.score, c.candidate_id) for c in scored]
    assert keys == sorted(keys)
    assert scored[0].candidate_id == "L1:D:V1"
    # Inputs are left untouched
    assert all(c.score == 0.0 for c in candidates.values())


weights = st.builds(
    ScoreWeights,
    deadhead=st.floats(0.01, 5.0),
    tightness=st.floats(0.0, 5.0),
    earnings=st.floats(0.0, 5.0),
    network_balance=st.floats(0.0, 5.0),
    hub_utilization=st.floats(0.0, 5.0),
)


@settings(max_examples=30, suppress_health_check=[HealthCheck.function_scoped_fixture])
@given(w=weights, rate=st.floats(0.0, 5000.0))
def test_scoring_is_pure_and_bounded(scored_inputs, w, rate):
    """Scoring the same inputs twice always yields the same score in [0, 100]."""
    load, candidates, snapshot = scored_inputs
    load = replace(load, rate=rate)
    scorer = Scorer(ScoringParams(weights=w), FixedForecaster({"r39_c-87": 3.0}))

    for candidate in candidates.values():
        first = scorer.score(candidate, load, snapshot)
        second = Scorer(ScoringParams(weights=w), FixedForecaster({"r39_c-87": 3.0})).score(
            candidate, load, snapshot
        )
        assert first == second
        assert 0.0 <= first <= 100.0


@settings(max_examples=20, suppress_health_check=[HealthCheck.function_scoped_fixture])
@given(w=weights, factor=st.floats(0.1, 10.0))
def test_weights_are_normalised(scored_inputs, w, factor):
    load, candidates, snapshot = scored_inputs
    scaled = ScoreWeights(
        w.deadhead * factor,
        w.tightness * factor,
        w.earnings * factor,
        w.network_balance * factor,
        w.hub_utilization * factor,
    )
    candidate = candidates["L1:D:V1"]
    assert Scorer(ScoringParams(weights=w)).score(candidate, load, snapshot) == pytest.approx(
        Scorer(ScoringParams(weights=scaled)).score(candidate, load, snapshot), abs=1e-4
    )
