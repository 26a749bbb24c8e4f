"""
Historical demand forecaster.

Estimates load demand and truck supply for a region cell and time bucket from
past observations of the same weekly slot.  One week of history is one
*cycle*: the estimate for Tuesday 08:00-12:00 in cell ``r40_c-75`` is the mean
of every earlier Tuesday 08:00-12:00 observation in that cell.

Expected history columns:

    cell_id        grid cell id as produced by :func:`relaymatch.utils.geo.cell_for`
    bucket_start   start timestamp of the observation bucket
    load_count     loads posted in the bucket
    truck_count    trucks that became available in the bucket
"""

from datetime import datetime, timedelta

import numpy as np
import pandas as pd

from relaymatch.config.params import ForecastParams
from relaymatch.core_types import DemandForecast, GeoPoint
from relaymatch.registry import register_forecaster
from relaymatch.utils.geo import cell_for
from relaymatch.utils.logging import RelayMatchLogger

logger = RelayMatchLogger.get_logger(__name__)

HISTORY_COLUMNS = ["cell_id", "bucket_start", "load_count", "truck_count"]


def bucket_floor(when: datetime, bucket_hours: int) -> datetime:
    """Start of the bucket that contains ``when``."""
    hour = (when.hour // bucket_hours) * bucket_hours
    return when.replace(hour=hour, minute=0, second=0, microsecond=0)


def _to_utc(ts) -> pd.Timestamp:
    ts = pd.Timestamp(ts)
    if ts.tzinfo is None:
        return ts.tz_localize("UTC")
    return ts.tz_convert("UTC")


@register_forecaster("historical")
class HistoricalDemandForecaster:
    """Mean and spread of past observations per (cell, weekday, bucket hour)."""

    def __init__(self, history: pd.DataFrame | None = None, params: ForecastParams | None = None):
        self.params = params or ForecastParams()
        if history is None:
            history = pd.DataFrame(columns=HISTORY_COLUMNS)
        missing = [c for c in HISTORY_COLUMNS if c not in history.columns]
        if missing:
            raise ValueError(f"History is missing required columns: {missing}")

        frame = history[HISTORY_COLUMNS].copy()
        self._stats: dict[tuple[str, int, int], dict[str, float]] = {}
        self._global_loads = 0.0
        self._global_trucks = 0.0
        if frame.empty:
            self._history = frame
            logger.debug("Forecaster built without history, every forecast is the prior")
            return

        frame["bucket_start"] = pd.to_datetime(frame["bucket_start"], utc=True)
        frame["load_count"] = pd.to_numeric(frame["load_count"]).astype(float)
        frame["truck_count"] = pd.to_numeric(frame["truck_count"]).astype(float)
        frame["bucket_start"] = frame["bucket_start"].dt.floor(f"{self.params.bucket_hours}h")
        # Several rows for the same bucket are one observation
        frame = frame.groupby(["cell_id", "bucket_start"], as_index=False)[
            ["load_count", "truck_count"]
        ].sum()
        frame["weekday"] = frame["bucket_start"].dt.weekday
        frame["hour"] = frame["bucket_start"].dt.hour
        self._history = frame

        self._global_loads = float(frame["load_count"].mean())
        self._global_trucks = float(frame["truck_count"].mean())

        stats = frame.groupby(["cell_id", "weekday", "hour"]).agg(
            loads_mean=("load_count", "mean"),
            loads_std=("load_count", lambda s: float(np.std(s.to_numpy()))),
            trucks_mean=("truck_count", "mean"),
            trucks_std=("truck_count", lambda s: float(np.std(s.to_numpy()))),
            cycles=("load_count", "size"),
        )
        self._stats = stats.to_dict("index")
        logger.debug(
            f"Forecaster built from {len(frame)} observations over "
            f"{frame['cell_id'].nunique()} cells"
        )

    def forecast(self, cell_id: str, bucket_start: datetime) -> DemandForecast:
        start = bucket_floor(bucket_start, self.params.bucket_hours)
        key_ts = _to_utc(bucket_start).floor(f"{self.params.bucket_hours}h")
        row = self._stats.get((cell_id, key_ts.weekday(), key_ts.hour))
        if row is None:
            return self._prior(cell_id, start)

        cycles = int(row["cycles"])
        z = self.params.z_score
        confidence = min(cycles / (cycles + 1), self.params.max_confidence)
        if cycles < 2:
            # One observation has no spread to speak of
            upper = max(self.params.wide_upper, row["loads_mean"], row["trucks_mean"])
            loads_interval = trucks_interval = (0.0, float(upper))
        else:
            loads_interval = _interval(row["loads_mean"], row["loads_std"], z)
            trucks_interval = _interval(row["trucks_mean"], row["trucks_std"], z)
        return DemandForecast(
            cell_id=cell_id,
            bucket_start=start,
            expected_loads=float(row["loads_mean"]),
            expected_trucks=float(row["trucks_mean"]),
            loads_interval=loads_interval,
            trucks_interval=trucks_interval,
            confidence=confidence,
            cycles=cycles,
        )

    def forecast_at(self, point: GeoPoint, when: datetime) -> DemandForecast:
        return self.forecast(cell_for(point, self.params.cell_size_deg), when)

    def balance(self, cell_id: str, bucket_start: datetime) -> float:
        """Expected loads minus expected trucks; positive means undersupplied."""
        return self.forecast(cell_id, bucket_start).balance

    def horizon(self, cell_id: str, start: datetime, buckets: int) -> list[DemandForecast]:
        """Consecutive bucket forecasts starting at ``start``."""
        step = timedelta(hours=self.params.bucket_hours)
        first = bucket_floor(start, self.params.bucket_hours)
        return [self.forecast(cell_id, first + i * step) for i in range(buckets)]

    def _prior(self, cell_id: str, start: datetime) -> DemandForecast:
        # No cycle for this slot: a wide, zero-confidence estimate
        upper = max(self.params.wide_upper, self._global_loads, self._global_trucks)
        return DemandForecast(
            cell_id=cell_id,
            bucket_start=start,
            expected_loads=self._global_loads,
            expected_trucks=self._global_trucks,
            loads_interval=(0.0, upper),
            trucks_interval=(0.0, upper),
            confidence=0.0,
            cycles=0,
        )


def _interval(mean: float, std: float, z: float) -> tuple[float, float]:
    return (max(0.0, float(mean) - z * float(std)), float(mean) + z * float(std))
