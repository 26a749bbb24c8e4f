"""Tests for writing optimization runs to disk."""

import json
from datetime import timedelta

import numpy as np
import pandas as pd
import pytest

from relaymatch.core_types import LoadFailure, Match, MatchState, OptimizationRun, RunState, SolverStatus
from relaymatch.matching.candidates import generate_candidates
from relaymatch.utils.save_results import ResultsEncoder, candidate_rows_columns, save_run_results
from relaymatch.utils.time_measurement import TimeRecorder


@pytest.fixture
def finished_run(example_snapshot, t0):
    load = example_snapshot.loads["L1"]
    candidate = generate_candidates(load, example_snapshot)[0]
    match = Match(
        match_id="M-1",
        load_id="L1",
        vehicle_ids=candidate.vehicle_ids,
        state=MatchState.HELD,
        created_at=t0,
        updated_at=t0,
        held_until=t0 + timedelta(seconds=120),
        candidate_id=candidate.candidate_id,
        source="batch",
    )
    return OptimizationRun(
        run_id="run-test",
        snapshot_at=t0,
        state=RunState.COMPLETED,
        solver_status=SolverStatus.OPTIMAL,
        method="exact",
        selected=[candidate],
        matches=[match],
        failures=[LoadFailure("L9", "infeasible", "no vehicles available")],
        candidate_count=5,
        load_count=2,
    )


def test_save_json(tmp_path, finished_run):
    recorder = TimeRecorder()
    with recorder.measure("solve"):
        pass

    path = save_run_results(finished_run, tmp_path / "out" / "run.json", time_recorder=recorder)

    data = json.loads(path.read_text())
    assert data["Run Summary"]["state"] == "Completed"
    assert data["Run Summary"]["matched"] == 1
    assert data["Matches"][0]["state"] == "Held"
    assert data["Selected Candidates"][0]["candidate_id"] == "L1:D:V1"
    assert data["Failures"][0]["load_id"] == "L9"
    assert data["Time Measurements"][0]["span_name"] == "solve"


def test_save_csv(tmp_path, finished_run):
    path = save_run_results(finished_run, tmp_path / "run.csv", format="csv")

    df = pd.read_csv(path)
    assert list(df.columns) == list(candidate_rows_columns())
    assert df.loc[0, "match_id"] == "M-1"
    assert df.loc[0, "kind"] == "direct"


def test_unsupported_format(tmp_path, finished_run):
    with pytest.raises(ValueError):
        save_run_results(finished_run, tmp_path / "run.xlsx", format="xlsx")


def test_encoder_handles_numpy():
    encoded = json.dumps({"a": np.int64(3), "b": np.float32(0.5), "c": np.arange(2)}, cls=ResultsEncoder)
    assert json.loads(encoded) == {"a": 3, "b": 0.5, "c": [0, 1]}
