"""
Exact assignment model.

Mathematical formulation
------------------------
Objective: maximise  Σ_{c∈C} s_c · x_c

subject to
* Load uniqueness: Σ_{c∈C_l} x_c ≤ 1 for every load l
* Vehicle uniqueness: Σ_{c∈C_v} x_c ≤ 1 for every vehicle v
  (a relay candidate uses each of its leg vehicles)
* Hub exchange capacity: Σ_{c∈C_h} x_c ≤ k_h for every hub h, where k_h is
  the hub capacity left after exchanges already committed
* x_c binary

``C_l`` are the candidates for load *l*, ``C_v`` the candidates that use
vehicle *v* on any leg and ``C_h`` the relay candidates handing off at hub *h*.
"""

import time
from collections import defaultdict

import pulp

from relaymatch.config.params import RuntimeParams
from relaymatch.core_types import Candidate
from relaymatch.exceptions import SolverTimeout
from relaymatch.utils.logging import RelayMatchLogger
from relaymatch.utils.solver import pick_solver

logger = RelayMatchLogger.get_logger(__name__)


def build_model(
    candidates: list[Candidate],
    hub_capacity: dict[str, int] | None = None,
) -> tuple[pulp.LpProblem, dict[str, pulp.LpVariable]]:
    model = pulp.LpProblem("RelayMatch_Assignment", pulp.LpMaximize)

    x_vars = {
        c.candidate_id: pulp.LpVariable(f"x_{i}", cat=pulp.LpBinary)
        for i, c in enumerate(candidates)
    }

    by_load: dict[str, list[str]] = defaultdict(list)
    by_vehicle: dict[str, list[str]] = defaultdict(list)
    by_hub: dict[str, list[str]] = defaultdict(list)
    for c in candidates:
        by_load[c.load_id].append(c.candidate_id)
        for vehicle_id in set(c.vehicle_ids):
            by_vehicle[vehicle_id].append(c.candidate_id)
        for hub_id in set(c.hub_ids):
            by_hub[hub_id].append(c.candidate_id)

    model += (
        pulp.lpSum(c.score * x_vars[c.candidate_id] for c in candidates),
        "Total_Score",
    )

    for n, load_id in enumerate(sorted(by_load)):
        ids = by_load[load_id]
        if len(ids) > 1:
            model += pulp.lpSum(x_vars[i] for i in ids) <= 1, f"Load_{n}"
    for n, vehicle_id in enumerate(sorted(by_vehicle)):
        ids = by_vehicle[vehicle_id]
        if len(ids) > 1:
            model += pulp.lpSum(x_vars[i] for i in ids) <= 1, f"Vehicle_{n}"
    if hub_capacity is not None:
        for n, hub_id in enumerate(sorted(by_hub)):
            ids = by_hub[hub_id]
            spare = hub_capacity.get(hub_id, 0)
            if len(ids) > spare:
                model += pulp.lpSum(x_vars[i] for i in ids) <= spare, f"Hub_{n}"
    return model, x_vars


def solve_exact(
    candidates: list[Candidate],
    runtime: RuntimeParams,
    time_budget_s: float,
    solver=None,
    hub_capacity: dict[str, int] | None = None,
) -> tuple[list[Candidate], float]:
    """Optimal selection, or SolverTimeout when the budget ran out before optimality.

    ``hub_capacity`` maps hub ids to the exchanges they can still take; without
    it hub capacity is not constrained.
    """
    model, x_vars = build_model(candidates, hub_capacity)
    solver = solver or pick_solver(runtime, time_budget_s)
    logger.debug(f"Solving assignment model: {len(candidates)} candidates with {solver.name}")

    start = time.perf_counter()
    try:
        model.solve(solver)
    except pulp.PulpSolverError as exc:
        raise SolverTimeout(f"Solver failed: {exc}") from exc
    elapsed = time.perf_counter() - start

    if model.status != pulp.LpStatusOptimal or model.sol_status != pulp.LpSolutionOptimal:
        raise SolverTimeout(
            f"Solver stopped with status {pulp.LpStatus[model.status]} after {elapsed:.2f}s"
        )
    if elapsed > time_budget_s:
        raise SolverTimeout(f"Solver exceeded its {time_budget_s:.1f}s budget ({elapsed:.2f}s)")

    selected = [
        c for c in candidates if (x_vars[c.candidate_id].varValue or 0) > 0.5
    ]
    objective = float(pulp.value(model.objective) or 0.0)
    return selected, objective

