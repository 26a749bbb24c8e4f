"""Protocol definitions for pluggable components in relaymatch."""

from datetime import datetime
from typing import Protocol

import numpy as np
import pulp

from relaymatch.config.params import RuntimeParams
from relaymatch.core_types import DemandForecast


class HubClusterer(Protocol):
    """Protocol for crossover-point clustering algorithms.

    fit() returns one integer label per input point, sklearn ``fit_predict``
    style; label ``-1`` marks noise points that belong to no cluster.
    """

    def fit(self, coords: np.ndarray, *, distance_km: float) -> list[int]:
        """Cluster ``(n, 2)`` lat/lon coordinates with a distance threshold in km."""
        ...


class DemandForecaster(Protocol):
    """Input/output contract for demand forecasting models."""

    def forecast(self, cell_id: str, bucket_start: datetime) -> DemandForecast:
        """Expected loads and available trucks for a cell and time bucket."""
        ...


class SolverAdapter(Protocol):
    """Thin wrapper around PuLP solvers to provide a consistent interface."""

    def get_pulp_solver(self, params: RuntimeParams) -> pulp.LpSolver:
        """Return the underlying PuLP solver instance configured and ready to use."""
        ...

    @property
    def name(self) -> str:
        """Solver name for logging."""
        ...

    @property
    def available(self) -> bool:
        """Check if this solver is available in the environment."""
        ...
