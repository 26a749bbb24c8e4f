"""
Deterministic greedy selection.

Candidates are taken in order of score (descending), then load id, then
candidate id (both ascending); a candidate is skipped when its load or any of
its vehicles was already taken, or when one of its hubs has no exchange
capacity left.  The same input always yields the same selection, independent
of input order.
"""

from relaymatch.core_types import Candidate


def greedy_order(candidates: list[Candidate]) -> list[Candidate]:
    return sorted(candidates, key=lambda c: (-c.score, c.load_id, c.candidate_id))


def select_greedy(candidates: list[Candidate], hub_capacity: dict[str, int] | None = None) -> list[Candidate]:
    used_loads: set[str] = set()
    used_vehicles: set[str] = set()
    spare = dict(hub_capacity) if hub_capacity is not None else None
    selected = []
    for candidate in greedy_order(candidates):
        if candidate.load_id in used_loads:
            continue
        if any(v in used_vehicles for v in candidate.vehicle_ids):
            continue
        hubs = set(candidate.hub_ids)
        if spare is not None and any(spare.get(h, 0) <= 0 for h in hubs):
            continue
        selected.append(candidate)
        used_loads.add(candidate.load_id)
        used_vehicles.update(candidate.vehicle_ids)
        if spare is not None:
            for h in hubs:
                spare[h] -= 1
    return selected
