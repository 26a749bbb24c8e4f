from __future__ import annotations

"""Parameter container dataclasses for the matching engine.

Each concern gets its own immutable dataclass so that a hot reload swaps the
whole object atomically; readers hold on to one consistent version for the
duration of an operation.  ``RuntimeParams`` is the small mutable bucket for
flags that are never serialised to YAML.
"""

from dataclasses import dataclass, field
from typing import Dict

__all__ = [
    "ScoreWeights",
    "ScoringParams",
    "CandidateParams",
    "HubParams",
    "ForecastParams",
    "OptimizerParams",
    "ReservationParams",
    "RuntimeParams",
    "RelayMatchParams",
]


DEFAULT_AMENITY_WEIGHTS: Dict[str, float] = {
    "parking": 0.2,
    "fuel": 0.2,
    "restrooms": 0.15,
    "food": 0.15,
    "maintenance": 0.1,
    "shower": 0.1,
    "lodging": 0.05,
    "security": 0.05,
}


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ScoreWeights:
    """Relative weight of each score component; normalised on use."""

    deadhead: float = 0.35
    tightness: float = 0.15
    earnings: float = 0.2
    network_balance: float = 0.2
    hub_utilization: float = 0.1

    def __post_init__(self):  # type: ignore[override]
        for name in ("deadhead", "tightness", "earnings", "network_balance", "hub_utilization"):
            if getattr(self, name) < 0:
                raise ValueError(f"ScoreWeights.{name} must be non-negative.")
        if self.total() <= 0:
            raise ValueError("ScoreWeights must not all be zero.")

    def total(self) -> float:
        return (
            self.deadhead
            + self.tightness
            + self.earnings
            + self.network_balance
            + self.hub_utilization
        )


@dataclass(frozen=True, slots=True)
class ScoringParams:
    weights: ScoreWeights = field(default_factory=ScoreWeights)
    operating_cost_per_km: float = 1.1
    # Net earnings (currency) that maps to a full earnings component
    earnings_reference: float = 2000.0
    # Slack (hours) at or above which a schedule counts as fully relaxed
    tightness_reference_hours: float = 4.0
    # Forecast imbalance (loads minus trucks) that maps to a full balance bonus
    balance_reference: float = 10.0

    def __post_init__(self):  # type: ignore[override]
        for name in ("earnings_reference", "tightness_reference_hours", "balance_reference"):
            if getattr(self, name) <= 0:
                raise ValueError(f"ScoringParams.{name} must be positive.")
        if self.operating_cost_per_km < 0:
            raise ValueError("ScoringParams.operating_cost_per_km must be non-negative.")


# ---------------------------------------------------------------------------
# Candidate generation
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CandidateParams:
    avg_speed_kmh: float = 88.0
    road_factor: float = 1.2
    top_k: int = 20
    max_deadhead_km: float = 800.0
    max_detour_km: float = 160.0
    max_relay_hubs: int = 1
    # Closest vehicles considered per relay leg, bounds the relay search
    relay_vehicles_per_leg: int = 5
    handoff_buffer_min: float = 30.0
    candidate_ttl_s: float = 300.0
    n_jobs: int = 1

    def __post_init__(self):  # type: ignore[override]
        if self.avg_speed_kmh <= 0:
            raise ValueError("CandidateParams.avg_speed_kmh must be positive.")
        if self.road_factor < 1.0:
            raise ValueError("CandidateParams.road_factor must be at least 1.0.")
        if self.top_k <= 0:
            raise ValueError("CandidateParams.top_k must be positive.")
        if self.max_relay_hubs < 0 or self.max_relay_hubs > 2:
            raise ValueError("CandidateParams.max_relay_hubs must be between 0 and 2.")
        for name in (
            "max_deadhead_km",
            "max_detour_km",
            "relay_vehicles_per_leg",
            "handoff_buffer_min",
            "candidate_ttl_s",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"CandidateParams.{name} must be non-negative.")


# ---------------------------------------------------------------------------
# Smart Hub selection
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class HubParams:
    cluster_method: str = "agglomerative"
    cluster_distance_km: float = 25.0
    min_crossovers: int = 5
    min_suitability: float = 0.3
    facility_radius_km: float = 10.0
    capacity_reference: int = 20
    max_hubs: int = 50
    amenity_weights: Dict[str, float] = field(
        default_factory=lambda: dict(DEFAULT_AMENITY_WEIGHTS)
    )

    def __post_init__(self):  # type: ignore[override]
        if self.cluster_distance_km <= 0:
            raise ValueError("HubParams.cluster_distance_km must be positive.")
        if not 0.0 <= self.min_suitability <= 1.0:
            raise ValueError("HubParams.min_suitability must be within [0, 1].")
        if self.min_crossovers < 1:
            raise ValueError("HubParams.min_crossovers must be at least 1.")
        if self.capacity_reference <= 0 or self.max_hubs <= 0:
            raise ValueError("HubParams.capacity_reference and max_hubs must be positive.")


# ---------------------------------------------------------------------------
# Demand forecasting
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ForecastParams:
    method: str = "historical"
    cell_size_deg: float = 1.0
    bucket_hours: int = 4
    z_score: float = 1.96
    max_confidence: float = 0.95
    # Upper bound reported when there is no usable history
    wide_upper: float = 50.0

    def __post_init__(self):  # type: ignore[override]
        if self.cell_size_deg <= 0:
            raise ValueError("ForecastParams.cell_size_deg must be positive.")
        if self.bucket_hours <= 0 or 24 % self.bucket_hours != 0:
            raise ValueError("ForecastParams.bucket_hours must divide 24.")
        if not 0.0 < self.max_confidence <= 1.0:
            raise ValueError("ForecastParams.max_confidence must be within (0, 1].")


# ---------------------------------------------------------------------------
# Network optimizer and reservations
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class OptimizerParams:
    cadence_s: float = 300.0
    solver_time_budget_s: float = 10.0
    exact_max_candidates: int = 2000
    run_deadline_s: float = 120.0
    feed_stale_after_s: float = 900.0

    def __post_init__(self):  # type: ignore[override]
        for name in (
            "cadence_s",
            "solver_time_budget_s",
            "run_deadline_s",
            "feed_stale_after_s",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"OptimizerParams.{name} must be positive.")
        if self.exact_max_candidates < 0:
            raise ValueError("OptimizerParams.exact_max_candidates must be non-negative.")


@dataclass(frozen=True, slots=True)
class ReservationParams:
    hold_ttl_s: float = 120.0
    retention_s: float = 3600.0

    def __post_init__(self):  # type: ignore[override]
        if self.hold_ttl_s <= 0:
            raise ValueError("ReservationParams.hold_ttl_s must be positive.")
        if self.retention_s < 0:
            raise ValueError("ReservationParams.retention_s must be non-negative.")


# ---------------------------------------------------------------------------
# Runtime parameters – toggles that are never serialized to yaml
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class RuntimeParams:
    verbose: bool = False
    debug: bool = False
    solver: str = "auto"
    gap_rel: float | None = None
    time_limit: float | None = None


# ---------------------------------------------------------------------------
# Aggregate container
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RelayMatchParams:
    scoring: ScoringParams = field(default_factory=ScoringParams)
    candidates: CandidateParams = field(default_factory=CandidateParams)
    hubs: HubParams = field(default_factory=HubParams)
    forecast: ForecastParams = field(default_factory=ForecastParams)
    optimizer: OptimizerParams = field(default_factory=OptimizerParams)
    reservations: ReservationParams = field(default_factory=ReservationParams)
    runtime: RuntimeParams = field(default_factory=RuntimeParams)
