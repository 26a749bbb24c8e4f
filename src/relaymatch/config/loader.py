from __future__ import annotations

"""Utilities for loading relaymatch configuration YAML files into the
parameter dataclass hierarchy.

Every section is optional and falls back to the dataclass defaults; unknown
sections or keys raise so that typos never silently change matching policy.
"""

from dataclasses import fields
from pathlib import Path
from typing import Any, Dict

import yaml

from relaymatch.exceptions import ConfigurationError
from relaymatch.utils.logging import RelayMatchLogger

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

logger = RelayMatchLogger.get_logger(__name__)

# ---------------------------------------------------------------------------
# Helper parsing routines
# ---------------------------------------------------------------------------


def _build(cls, section: str, raw: Dict[str, Any] | None):
    """Instantiate ``cls`` from a YAML mapping, rejecting unknown keys."""
    raw = dict(raw or {})
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ConfigurationError(
            f"Unknown keys in '{section}' section: {', '.join(unknown)}"
        )
    try:
        return cls(**raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid '{section}' section: {exc}") from exc


def _parse_scoring(raw: Dict[str, Any] | None) -> ScoringParams:
    raw = dict(raw or {})
    raw["weights"] = _build(ScoreWeights, "scoring.weights", raw.pop("weights", None))
    return _build(ScoringParams, "scoring", raw)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def params_from_dict(data: Dict[str, Any]) -> RelayMatchParams:
    """Build :class:`RelayMatchParams` from an already parsed mapping."""
    data = dict(data or {})

    scoring = _parse_scoring(data.pop("scoring", None))
    candidates = _build(CandidateParams, "candidates", data.pop("candidates", None))
    hubs = _build(HubParams, "hubs", data.pop("hubs", None))
    forecast = _build(ForecastParams, "forecast", data.pop("forecast", None))
    optimizer = _build(OptimizerParams, "optimizer", data.pop("optimizer", None))
    reservations = _build(
        ReservationParams, "reservations", data.pop("reservations", None)
    )
    runtime = _build(RuntimeParams, "runtime", data.pop("runtime", None))

    # Any remaining unknown keys will raise an error to avoid silent mistakes.
    if data:
        unknown_keys = ", ".join(sorted(data.keys()))
        raise ConfigurationError(
            f"Unknown top-level configuration keys in YAML: {unknown_keys}"
        )

    return RelayMatchParams(
        scoring=scoring,
        candidates=candidates,
        hubs=hubs,
        forecast=forecast,
        optimizer=optimizer,
        reservations=reservations,
        runtime=runtime,
    )


def load_yaml(path: str | Path) -> RelayMatchParams:
    """Load a YAML configuration file into :class:`RelayMatchParams`."""

    cfg_path = Path(path)
    if not cfg_path.exists():
        raise FileNotFoundError(cfg_path)

    try:
        with cfg_path.open() as f:
            data: Dict[str, Any] = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(
            f"Error parsing YAML configuration {cfg_path}: {exc}"
        ) from exc

    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Configuration {cfg_path} must contain a mapping at the top level"
        )

    params = params_from_dict(data)
    logger.debug("Loaded configuration from %s: %s", cfg_path, params)
    return params


def default_config_path() -> Path:
    return Path(__file__).parent / "default_config.yaml"
