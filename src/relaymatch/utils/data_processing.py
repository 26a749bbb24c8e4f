"""
CSV loaders for fleet, load, hub and history data.

Every loader returns the engine's own dataclasses (or a DataFrame for
history); timestamps without a zone are read as UTC.

Expected columns (optional ones in brackets):

vehicles    vehicle_id, latitude, longitude, timestamp, duty_hours_remaining,
            capacity, equipment, [home_region, home_latitude, home_longitude,
            available_at]
loads       load_id, origin_latitude, origin_longitude, destination_latitude,
            destination_longitude, pickup_earliest, pickup_latest,
            delivery_earliest, delivery_latest, weight, equipment, [rate, status]
hubs        hub_id, latitude, longitude, capacity, suitability,
            [active_from_hour, active_to_hour, name]
facilities  facility_id, latitude, longitude, capacity, [safety, amenities,
            name, active_from_hour, active_to_hour]; amenities are
            ``;``-separated
crossovers  latitude, longitude
history     cell_id, bucket_start, load_count, truck_count
"""

from datetime import datetime
from pathlib import Path

import pandas as pd

from relaymatch.core_types import Facility, GeoPoint, Load, LoadStatus, SmartHub, VehicleSnapshot
from relaymatch.forecasting.historical import HISTORY_COLUMNS
from relaymatch.utils.logging import RelayMatchLogger

logger = RelayMatchLogger.get_logger(__name__)


def to_utc_datetime(value) -> datetime:
    ts = pd.Timestamp(value)
    if ts.tzinfo is None:
        ts = ts.tz_localize("UTC")
    return ts.to_pydatetime()


def _read(path: str | Path, required: list[str]) -> pd.DataFrame:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Data file not found: {path}")
    df = pd.read_csv(path)
    df.columns = [str(c).strip() for c in df.columns]
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise ValueError(f"{path.name} is missing required columns: {missing}")
    return df


def _optional(row: pd.Series, column: str, default=None):
    if column not in row.index:
        return default
    value = row[column]
    if pd.isna(value):
        return default
    return value


def load_vehicles(path: str | Path) -> list[VehicleSnapshot]:
    df = _read(
        path,
        ["vehicle_id", "latitude", "longitude", "timestamp", "duty_hours_remaining", "capacity", "equipment"],
    )
    vehicles = []
    for _, row in df.iterrows():
        home_lat = _optional(row, "home_latitude")
        home_lon = _optional(row, "home_longitude")
        available_at = _optional(row, "available_at")
        vehicles.append(
            VehicleSnapshot(
                vehicle_id=str(row["vehicle_id"]),
                position=GeoPoint(float(row["latitude"]), float(row["longitude"])),
                timestamp=to_utc_datetime(row["timestamp"]),
                duty_hours_remaining=float(row["duty_hours_remaining"]),
                capacity=float(row["capacity"]),
                equipment=str(row["equipment"]),
                home_region=str(_optional(row, "home_region", "")),
                home=GeoPoint(float(home_lat), float(home_lon))
                if home_lat is not None and home_lon is not None
                else None,
                available_at=to_utc_datetime(available_at) if available_at is not None else None,
            )
        )
    logger.debug(f"Loaded {len(vehicles)} vehicles from {path}")
    return vehicles


def load_loads(path: str | Path) -> list[Load]:
    df = _read(
        path,
        [
            "load_id",
            "origin_latitude",
            "origin_longitude",
            "destination_latitude",
            "destination_longitude",
            "pickup_earliest",
            "pickup_latest",
            "delivery_earliest",
            "delivery_latest",
            "weight",
            "equipment",
        ],
    )
    loads = []
    for _, row in df.iterrows():
        loads.append(
            Load(
                load_id=str(row["load_id"]),
                origin=GeoPoint(float(row["origin_latitude"]), float(row["origin_longitude"])),
                destination=GeoPoint(
                    float(row["destination_latitude"]), float(row["destination_longitude"])
                ),
                pickup_earliest=to_utc_datetime(row["pickup_earliest"]),
                pickup_latest=to_utc_datetime(row["pickup_latest"]),
                delivery_earliest=to_utc_datetime(row["delivery_earliest"]),
                delivery_latest=to_utc_datetime(row["delivery_latest"]),
                weight=float(row["weight"]),
                equipment=str(row["equipment"]),
                rate=float(_optional(row, "rate", 0.0)),
                status=LoadStatus(_optional(row, "status", LoadStatus.OPEN.value)),
            )
        )
    logger.debug(f"Loaded {len(loads)} loads from {path}")
    return loads


def load_hubs(path: str | Path) -> list[SmartHub]:
    df = _read(path, ["hub_id", "latitude", "longitude", "capacity", "suitability"])
    return [
        SmartHub(
            hub_id=str(row["hub_id"]),
            location=GeoPoint(float(row["latitude"]), float(row["longitude"])),
            capacity=int(row["capacity"]),
            suitability=float(row["suitability"]),
            active_from_hour=int(_optional(row, "active_from_hour", 0)),
            active_to_hour=int(_optional(row, "active_to_hour", 24)),
            name=str(_optional(row, "name", "")),
        )
        for _, row in df.iterrows()
    ]


def load_facilities(path: str | Path) -> list[Facility]:
    df = _read(path, ["facility_id", "latitude", "longitude", "capacity"])
    facilities = []
    for _, row in df.iterrows():
        amenities = str(_optional(row, "amenities", ""))
        facilities.append(
            Facility(
                facility_id=str(row["facility_id"]),
                location=GeoPoint(float(row["latitude"]), float(row["longitude"])),
                capacity=int(row["capacity"]),
                safety=float(_optional(row, "safety", 0.5)),
                amenities=tuple(a.strip().lower() for a in amenities.split(";") if a.strip()),
                name=str(_optional(row, "name", "")),
                active_from_hour=int(_optional(row, "active_from_hour", 0)),
                active_to_hour=int(_optional(row, "active_to_hour", 24)),
            )
        )
    return facilities


def load_crossovers(path: str | Path) -> list[GeoPoint]:
    df = _read(path, ["latitude", "longitude"])
    return [GeoPoint(float(lat), float(lon)) for lat, lon in zip(df["latitude"], df["longitude"])]


def load_history(path: str | Path) -> pd.DataFrame:
    df = _read(path, HISTORY_COLUMNS)
    df["bucket_start"] = pd.to_datetime(df["bucket_start"], utc=True)
    return df[HISTORY_COLUMNS]
