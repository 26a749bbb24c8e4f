"""relaymatch: network matching and relay optimization for freight loads."""

__version__ = "0.1.0"

# Configuration
from .config import ParamsStore, RelayMatchParams, load_relaymatch_params

# Core types
from .core_types import (
    Candidate,
    CandidateKind,
    DemandForecast,
    Facility,
    FleetSnapshot,
    GeoPoint,
    Load,
    LoadStatus,
    Match,
    MatchState,
    OptimizationRun,
    RelayPlan,
    SmartHub,
    VehicleSnapshot,
)

# Components
from .engine import BatchScheduler, MatchingEngine
from .events import Event, EventBus, EventType, InMemoryEventSink
from .exceptions import (
    Conflict,
    ConfigurationError,
    Expired,
    FeedUnavailable,
    InfeasibleInstance,
    MatchNotFound,
    RelayMatchError,
    SolverTimeout,
    StaleState,
)
from .forecasting import HistoricalDemandForecaster, build_forecaster
from .hubs import HubSelector
from .ingestion import FeedIngestor, LoadEventKind
from .interfaces import DemandForecaster, HubClusterer, SolverAdapter
from .matching import CandidateGenerator, Scorer, generate_candidates
from .optimization import NetworkOptimizer, select_greedy
from .registry import (
    register_forecaster,
    register_hub_clusterer,
    register_solver_adapter,
)
from .relay import RelayPlanner
from .reservations import MatchCommitter, ReservationManager

__all__ = [
    # Version
    "__version__",
    # Configuration
    "ParamsStore",
    "RelayMatchParams",
    "load_relaymatch_params",
    # Types
    "Candidate",
    "CandidateKind",
    "DemandForecast",
    "Facility",
    "FleetSnapshot",
    "GeoPoint",
    "Load",
    "LoadStatus",
    "Match",
    "MatchState",
    "OptimizationRun",
    "RelayPlan",
    "SmartHub",
    "VehicleSnapshot",
    # Components
    "BatchScheduler",
    "CandidateGenerator",
    "FeedIngestor",
    "HistoricalDemandForecaster",
    "HubSelector",
    "LoadEventKind",
    "MatchCommitter",
    "MatchingEngine",
    "NetworkOptimizer",
    "RelayPlanner",
    "ReservationManager",
    "Scorer",
    "build_forecaster",
    "generate_candidates",
    "select_greedy",
    # Events
    "Event",
    "EventBus",
    "EventType",
    "InMemoryEventSink",
    # Errors
    "RelayMatchError",
    "InfeasibleInstance",
    "Conflict",
    "Expired",
    "StaleState",
    "SolverTimeout",
    "MatchNotFound",
    "FeedUnavailable",
    "ConfigurationError",
    # Extensions
    "register_forecaster",
    "register_hub_clusterer",
    "register_solver_adapter",
    "DemandForecaster",
    "HubClusterer",
    "SolverAdapter",
]
