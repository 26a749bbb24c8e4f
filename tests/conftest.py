"""Shared fixtures: a small Chicago - Indianapolis network with one Smart Hub between them."""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from relaymatch.core_types import FleetSnapshot, GeoPoint, Load, SmartHub, VehicleSnapshot

T0 = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)  # a Monday


@pytest.fixture
def t0():
    return T0


@pytest.fixture
def points():
    return SimpleNamespace(
        A=GeoPoint(41.88, -87.63),  # Chicago
        B=GeoPoint(39.77, -86.16),  # Indianapolis
        C=GeoPoint(41.00, -88.50),  # off the A-B corridor
        H=GeoPoint(40.825, -86.895),  # halfway along A-B
        FAR=GeoPoint(44.98, -93.27),  # Minneapolis
    )


@pytest.fixture
def make_vehicle():
    def _make(
        vehicle_id,
        position,
        duty=8.0,
        timestamp=T0,
        capacity=20000.0,
        equipment="dry_van",
        home=None,
        available_at=None,
    ):
        return VehicleSnapshot(
            vehicle_id=vehicle_id,
            position=position,
            timestamp=timestamp,
            duty_hours_remaining=duty,
            capacity=capacity,
            equipment=equipment,
            home=home,
            available_at=available_at,
        )

    return _make


@pytest.fixture
def make_load(points):
    def _make(
        load_id="L1",
        origin=None,
        destination=None,
        pickup=(10, 11),
        delivery_latest=20,
        weight=10000.0,
        equipment="dry_van",
        rate=1500.0,
    ):
        return Load(
            load_id=load_id,
            origin=origin or points.A,
            destination=destination or points.B,
            pickup_earliest=T0.replace(hour=pickup[0]),
            pickup_latest=T0.replace(hour=pickup[1]),
            delivery_earliest=T0.replace(hour=pickup[0]),
            delivery_latest=T0 + timedelta(hours=delivery_latest - T0.hour),
            weight=weight,
            equipment=equipment,
            rate=rate,
        )

    return _make


@pytest.fixture
def make_hub():
    def _make(hub_id, location, capacity=5, suitability=0.8, active_from_hour=0, active_to_hour=24):
        return SmartHub(
            hub_id=hub_id,
            location=location,
            capacity=capacity,
            suitability=suitability,
            active_from_hour=active_from_hour,
            active_to_hour=active_to_hour,
        )

    return _make


@pytest.fixture
def make_snapshot():
    def _make(vehicles=(), loads=(), hubs=(), hub_usage=None, taken_at=T0):
        return FleetSnapshot(
            taken_at=taken_at,
            vehicles={v.vehicle_id: v for v in vehicles},
            loads={load.load_id: load for load in loads},
            hubs={h.hub_id: h for h in hubs},
            hub_usage=dict(hub_usage or {}),
        )

    return _make


@pytest.fixture
def example_snapshot(points, make_vehicle, make_load, make_hub, make_snapshot):
    """L1 from A to B; V1 at A with 8h duty, V2 at C with 6h duty, V3 parked at hub H (suitability 0.4)."""
    vehicles = [
        make_vehicle("V1", points.A, duty=8.0),
        make_vehicle("V2", points.C, duty=6.0),
        make_vehicle("V3", points.H, duty=8.0),
    ]
    hubs = [make_hub("HUB-H", points.H, suitability=0.4)]
    return make_snapshot(vehicles, [make_load()], hubs)
