"""Solver utilities for relaymatch."""

import importlib.util
import os
from dataclasses import replace
from typing import Any

import pulp
import pulp.apis

from relaymatch.config.params import RuntimeParams
from relaymatch.registry import SOLVER_ADAPTER_REGISTRY, register_solver_adapter
from relaymatch.utils.logging import RelayMatchLogger

logger = RelayMatchLogger.get_logger(__name__)

SOLVER_ENV_VAR = "RELAYMATCH_SOLVER"


@register_solver_adapter("gurobi")
class GurobiAdapter:
    """Adapter for Gurobi solver."""

    def get_pulp_solver(
        self,
        params: RuntimeParams,
    ) -> pulp.LpSolver:
        """Return a configured Gurobi solver instance.

        Args:
            params: Runtime parameters containing verbose, gap_rel, and time_limit settings.
        """
        msg = 1 if params.verbose else 0
        kwargs: dict[str, Any] = {"msg": msg}
        # Only pass gapRel when an explicit tolerance is requested; omitting
        # it makes the solver prove optimality.
        if params.gap_rel is not None:
            kwargs["gapRel"] = params.gap_rel

        if params.time_limit is not None and params.time_limit > 0:
            kwargs["timeLimit"] = params.time_limit

        return pulp.GUROBI_CMD(**kwargs)

    @property
    def name(self) -> str:
        """Solver name for logging."""
        return "Gurobi"

    @property
    def available(self) -> bool:
        """Check if Gurobi is available."""
        return importlib.util.find_spec("gurobipy") is not None


@register_solver_adapter("cbc")
class CbcAdapter:
    """Adapter for CBC solver."""

    def get_pulp_solver(
        self,
        params: RuntimeParams,
    ) -> pulp.LpSolver:
        """Return a configured CBC solver instance.

        Args:
            params: Runtime parameters containing verbose, gap_rel, and time_limit settings.
        """
        msg = 1 if params.verbose else 0
        kwargs: dict[str, Any] = {"msg": msg}
        if params.gap_rel is not None:
            kwargs["gapRel"] = params.gap_rel

        # CBC uses timeLimit (seconds) for the wall-clock budget
        if params.time_limit is not None and params.time_limit > 0:
            kwargs["timeLimit"] = params.time_limit

        return pulp.PULP_CBC_CMD(**kwargs)

    @property
    def name(self) -> str:
        """Solver name for logging."""
        return "CBC"

    @property
    def available(self) -> bool:
        """Check if CBC is available."""
        # CBC is bundled with PuLP
        return True


def pick_solver(params: RuntimeParams, time_budget_s: float | None = None):
    """
    Return a PuLP solver instance based on RuntimeParams.

    Priority:
    1. RELAYMATCH_SOLVER env-var: 'gurobi' | 'cbc' | 'auto' (overrides params.solver)
    2. params.solver: 'gurobi' | 'cbc' | 'auto'
    3. If 'auto': try GUROBI_CMD, fall back to PULP_CBC_CMD.

    ``time_budget_s`` is the optimizer's wall-clock budget; an explicit
    ``params.time_limit`` takes precedence over it.
    """
    if params.time_limit is None and time_budget_s is not None:
        params = replace(params, time_limit=time_budget_s)

    env_choice = os.getenv(SOLVER_ENV_VAR)
    choice = (env_choice or params.solver).lower()

    if choice in SOLVER_ADAPTER_REGISTRY and choice != "auto":
        adapter = SOLVER_ADAPTER_REGISTRY[choice]()
        logger.debug(f"Using {adapter.name} solver")
        return adapter.get_pulp_solver(params)
    if choice != "auto":
        raise ValueError(
            f"Unknown solver '{choice}'. Available: {sorted(SOLVER_ADAPTER_REGISTRY)}"
        )

    # auto: try Gurobi, fallback to CBC on instantiation errors
    gurobi_adapter = SOLVER_ADAPTER_REGISTRY["gurobi"]()
    if gurobi_adapter.available:
        try:
            return gurobi_adapter.get_pulp_solver(params)
        except (pulp.PulpError, OSError) as exc:
            logger.debug(f"Gurobi unavailable, falling back to CBC: {exc}")

    cbc_adapter = SOLVER_ADAPTER_REGISTRY["cbc"]()
    return cbc_adapter.get_pulp_solver(params)
