"""
save_results.py: single exit point for writing optimization runs to disk.

JSON output carries the run summary, held matches, selected candidates with
their legs, per-load failures and (optionally) timing spans.  CSV output is one
row per selected candidate, convenient for spreadsheets.
"""

import json
from dataclasses import asdict
from datetime import datetime
from enum import Enum
from pathlib import Path

import numpy as np
import pandas as pd

from relaymatch.core_types import Candidate, OptimizationRun, RelayPlan
from relaymatch.utils.logging import RelayMatchLogger
from relaymatch.utils.time_measurement import TimeRecorder

logger = RelayMatchLogger.get_logger(__name__)


class ResultsEncoder(json.JSONEncoder):
    def default(self, obj):
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.floating):
            return float(obj)
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        return super().default(obj)


def candidate_rows(run: OptimizationRun) -> list[dict]:
    """Flat per-candidate records joined with the match that holds them."""
    match_by_candidate = {m.candidate_id: m for m in run.matches}
    rows = []
    for candidate in run.selected:
        match = match_by_candidate.get(candidate.candidate_id)
        rows.append(
            {
                "run_id": run.run_id,
                "load_id": candidate.load_id,
                "candidate_id": candidate.candidate_id,
                "kind": candidate.kind.value,
                "vehicle_ids": ";".join(candidate.vehicle_ids),
                "hub_ids": ";".join(candidate.hub_ids),
                "score": round(candidate.score, 4),
                "deadhead_km": round(candidate.total_deadhead_km, 2),
                "loaded_km": round(candidate.total_loaded_km, 2),
                "detour_km": round(candidate.detour_km, 2),
                "empty_miles_delta": round(candidate.empty_miles_delta, 2),
                "pickup_at": candidate.picked_up_at.isoformat(),
                "delivery_at": candidate.delivered_at.isoformat(),
                "match_id": match.match_id if match else None,
                "match_state": match.state.value if match else "Discarded",
            }
        )
    return rows


def _candidate_dict(candidate: Candidate) -> dict:
    data = asdict(candidate)
    data["vehicle_ids"] = list(candidate.vehicle_ids)
    data["hub_ids"] = list(candidate.hub_ids)
    return data


def save_run_results(
    run: OptimizationRun,
    filename: str | Path,
    format: str = "json",
    time_recorder: TimeRecorder | None = None,
    plans: list[RelayPlan] | None = None,
) -> Path:
    """Write ``run`` as JSON or CSV and return the path written."""
    output = Path(filename)
    output.parent.mkdir(parents=True, exist_ok=True)

    if format == "csv":
        columns = list(candidate_rows_columns())
        pd.DataFrame(candidate_rows(run), columns=columns).to_csv(output, index=False)
    elif format == "json":
        data = {
            "Run Summary": run.summary(),
            "Matches": [m.to_dict() for m in run.matches],
            "Selected Candidates": [_candidate_dict(c) for c in run.selected],
            "Failures": [asdict(f) for f in run.failures],
            "Discarded": list(run.discarded),
        }
        if plans:
            data["Relay Plans"] = [asdict(p) for p in plans]
        if time_recorder is not None and time_recorder.measurements:
            data["Time Measurements"] = [asdict(m) for m in time_recorder.measurements]
        with open(output, "w") as f:
            json.dump(data, f, cls=ResultsEncoder, indent=2)
    else:
        raise ValueError(f"Unsupported results format: {format}")

    logger.info(f"Results saved to {output}")
    return output


def candidate_rows_columns() -> tuple[str, ...]:
    return (
        "run_id",
        "load_id",
        "candidate_id",
        "kind",
        "vehicle_ids",
        "hub_ids",
        "score",
        "deadhead_km",
        "loaded_km",
        "detour_km",
        "empty_miles_delta",
        "pickup_at",
        "delivery_at",
        "match_id",
        "match_state",
    )
