"""
Core data structures shared across the matching engine.

Vehicle snapshots, loads and hubs are owned by external systems and arrive
through :mod:`relaymatch.ingestion`; candidates, matches and optimization runs
are created and garbage-collected inside the engine.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any


class LoadStatus(str, Enum):
    OPEN = "Open"
    CANDIDATE = "Candidate"
    RESERVED = "Reserved"
    ASSIGNED = "Assigned"
    IN_TRANSIT = "InTransit"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"
    EXPIRED = "Expired"


class MatchState(str, Enum):
    PROPOSED = "Proposed"
    HELD = "Held"
    ACCEPTED = "Accepted"
    REJECTED = "Rejected"
    EXPIRED = "Expired"


# States that lock a load / vehicle against further holds
ACTIVE_MATCH_STATES = frozenset({MatchState.HELD, MatchState.ACCEPTED})


class CandidateKind(str, Enum):
    DIRECT = "direct"
    RELAY = "relay"


class SolverStatus(str, Enum):
    OPTIMAL = "Optimal"
    FEASIBLE = "Feasible"
    INFEASIBLE = "Infeasible"
    TIMED_OUT = "TimedOut"


class RunState(str, Enum):
    COLLECTING = "Collecting"
    SOLVING = "Solving"
    COMPLETED = "Completed"
    ABORTED = "Aborted"


class HubStatus(str, Enum):
    ACTIVE = "Active"
    RETIRING = "Retiring"
    RETIRED = "Retired"


@dataclass(frozen=True)
class GeoPoint:
    latitude: float
    longitude: float

    def as_tuple(self) -> tuple[float, float]:
        return (self.latitude, self.longitude)

    def to_dict(self) -> dict[str, float]:
        return asdict(self)


@dataclass(frozen=True)
class VehicleSnapshot:
    """Latest known state of one vehicle as reported by the position feed."""

    vehicle_id: str
    position: GeoPoint
    timestamp: datetime
    duty_hours_remaining: float
    capacity: float
    equipment: str
    home_region: str = ""
    home: GeoPoint | None = None
    available_at: datetime | None = None

    @property
    def ready_at(self) -> datetime:
        """Time from which the vehicle can start a new leg."""
        if self.available_at is None or self.available_at < self.timestamp:
            return self.timestamp
        return self.available_at


@dataclass(frozen=True)
class Load:
    load_id: str
    origin: GeoPoint
    destination: GeoPoint
    pickup_earliest: datetime
    pickup_latest: datetime
    delivery_earliest: datetime
    delivery_latest: datetime
    weight: float
    equipment: str
    status: LoadStatus = LoadStatus.OPEN
    rate: float = 0.0
    updated_at: datetime | None = None

    def with_status(self, status: LoadStatus, updated_at: datetime | None = None) -> Load:
        return replace(self, status=status, updated_at=updated_at or self.updated_at)


@dataclass(frozen=True)
class SmartHub:
    """A candidate exchange point where relay legs hand a load over."""

    hub_id: str
    location: GeoPoint
    capacity: int
    suitability: float
    active_from_hour: int = 0
    active_to_hour: int = 24
    crossover_frequency: int = 0
    composite_score: float = 0.0
    name: str = ""
    amenities: tuple[str, ...] = ()
    status: HubStatus = HubStatus.ACTIVE

    def is_open_at(self, when: datetime) -> bool:
        """Whether ``when`` falls inside the hub's daily activity window."""
        hour = when.hour + when.minute / 60.0
        if self.active_from_hour <= self.active_to_hour:
            return self.active_from_hour <= hour < self.active_to_hour
        # Window wraps midnight, e.g. 20 -> 6
        return hour >= self.active_from_hour or hour < self.active_to_hour


@dataclass(frozen=True)
class Facility:
    """A physical site that could host a Smart Hub (truck stop, yard, terminal).

    ``safety`` is an externally supplied rating in [0, 1].
    """

    facility_id: str
    location: GeoPoint
    capacity: int
    safety: float = 0.5
    amenities: tuple[str, ...] = ()
    name: str = ""
    active_from_hour: int = 0
    active_to_hour: int = 24


@dataclass(frozen=True)
class RouteLeg:
    """One vehicle's portion of a haul.

    ``deadhead_km`` is the empty distance from the vehicle's snapshot position
    to ``start``; ``loaded_km`` is the distance driven with the load.
    ``vehicle_origin`` and ``vehicle_seen_at`` record the snapshot the leg was
    planned from so later stages can detect stale vehicle state.
    """

    vehicle_id: str
    start: GeoPoint
    end: GeoPoint
    deadhead_km: float
    loaded_km: float
    depart_at: datetime
    arrive_at: datetime
    drive_hours: float
    start_hub_id: str | None = None
    end_hub_id: str | None = None
    vehicle_origin: GeoPoint | None = None
    vehicle_seen_at: datetime | None = None
    slack_hours: float = 0.0


@dataclass(frozen=True)
class Candidate:
    """A feasible proposal for covering one load.

    Direct and relay hauls share this type and are told apart by ``kind``;
    a direct candidate always has exactly one leg.
    """

    candidate_id: str
    load_id: str
    kind: CandidateKind
    legs: tuple[RouteLeg, ...]
    generated_at: datetime
    expires_at: datetime
    pre_score: float = 0.0
    score: float = 0.0
    detour_km: float = 0.0
    empty_miles_delta: float = 0.0

    @property
    def vehicle_ids(self) -> tuple[str, ...]:
        return tuple(leg.vehicle_id for leg in self.legs)

    @property
    def hub_ids(self) -> tuple[str, ...]:
        return tuple(leg.end_hub_id for leg in self.legs[:-1] if leg.end_hub_id)

    @property
    def total_deadhead_km(self) -> float:
        return sum(leg.deadhead_km for leg in self.legs)

    @property
    def total_loaded_km(self) -> float:
        return sum(leg.loaded_km for leg in self.legs)

    @property
    def delivered_at(self) -> datetime:
        return self.legs[-1].arrive_at

    @property
    def picked_up_at(self) -> datetime:
        return self.legs[0].depart_at

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class RelayLeg:
    vehicle_id: str
    start: GeoPoint
    end: GeoPoint
    start_hub_id: str | None
    end_hub_id: str | None
    depart_at: datetime
    arrive_at: datetime
    handoff_ready_at: datetime | None = None


@dataclass(frozen=True)
class RelayPlan:
    plan_id: str
    load_id: str
    candidate_id: str
    legs: tuple[RelayLeg, ...]
    created_at: datetime

    @property
    def hub_ids(self) -> tuple[str, ...]:
        return tuple(leg.end_hub_id for leg in self.legs[:-1] if leg.end_hub_id)

    @property
    def vehicle_ids(self) -> tuple[str, ...]:
        return tuple(leg.vehicle_id for leg in self.legs)


@dataclass
class Match:
    match_id: str
    load_id: str
    vehicle_ids: tuple[str, ...]
    state: MatchState
    created_at: datetime
    updated_at: datetime
    held_until: datetime | None = None
    candidate_id: str | None = None
    score: float = 0.0
    source: str = "on_demand"

    @property
    def is_active(self) -> bool:
        return self.state in ACTIVE_MATCH_STATES

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["vehicle_ids"] = list(self.vehicle_ids)
        data["state"] = self.state.value
        return data


@dataclass(frozen=True)
class DemandForecast:
    cell_id: str
    bucket_start: datetime
    expected_loads: float
    expected_trucks: float
    loads_interval: tuple[float, float]
    trucks_interval: tuple[float, float]
    confidence: float
    cycles: int = 0

    @property
    def balance(self) -> float:
        """Positive when the cell is expected to be short of trucks."""
        return self.expected_loads - self.expected_trucks


@dataclass(frozen=True)
class FleetSnapshot:
    """Immutable view of the network handed to each matching pass."""

    taken_at: datetime
    vehicles: dict[str, VehicleSnapshot]
    loads: dict[str, Load]
    hubs: dict[str, SmartHub] = field(default_factory=dict)
    # Handoffs already committed per hub id, used for exchange capacity checks
    hub_usage: dict[str, int] = field(default_factory=dict)

    def open_loads(self) -> list[Load]:
        return sorted(
            (load for load in self.loads.values() if load.status in (LoadStatus.OPEN, LoadStatus.CANDIDATE)),
            key=lambda load: load.load_id,
        )

    def active_hubs(self) -> list[SmartHub]:
        return sorted(
            (hub for hub in self.hubs.values() if hub.status == HubStatus.ACTIVE),
            key=lambda hub: hub.hub_id,
        )

    def spare_hub_capacity(self) -> dict[str, int]:
        """Exchanges each hub can still take on top of those already committed."""
        return {
            hub_id: max(hub.capacity - self.hub_usage.get(hub_id, 0), 0) for hub_id, hub in self.hubs.items()
        }


@dataclass
class LoadFailure:
    load_id: str
    reason: str
    error: str = ""


@dataclass
class OptimizationRun:
    run_id: str
    snapshot_at: datetime
    state: RunState = RunState.COLLECTING
    solver_status: SolverStatus | None = None
    method: str = ""
    objective_value: float = 0.0
    selected: list[Candidate] = field(default_factory=list)
    matches: list[Match] = field(default_factory=list)
    failures: list[LoadFailure] = field(default_factory=list)
    discarded: list[str] = field(default_factory=list)
    candidate_count: int = 0
    load_count: int = 0
    runtime_sec: float = 0.0
    completed_at: datetime | None = None

    def summary(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "snapshot_at": self.snapshot_at.isoformat(),
            "state": self.state.value,
            "solver_status": self.solver_status.value if self.solver_status else None,
            "method": self.method,
            "objective_value": round(self.objective_value, 4),
            "loads": self.load_count,
            "candidates": self.candidate_count,
            "matched": len(self.matches),
            "discarded": len(self.discarded),
            "failures": len(self.failures),
            "runtime_sec": round(self.runtime_sec, 4),
        }
