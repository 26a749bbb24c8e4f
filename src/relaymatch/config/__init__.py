"""Configuration module for relaymatch parameters."""

# Structured parameter system
from .params import (
    CandidateParams,
    ForecastParams,
    HubParams,
    OptimizerParams,
    RelayMatchParams,
    ReservationParams,
    RuntimeParams,
    ScoreWeights,
    ScoringParams,
)
from .loader import default_config_path, params_from_dict
from .loader import load_yaml as load_relaymatch_params
from .store import ParamsStore

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
    "ParamsStore",
    "default_config_path",
    "params_from_dict",
    "load_relaymatch_params",
]
