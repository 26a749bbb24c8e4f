"""
Relay planning.

Turns a relay :class:`Candidate` into a :class:`RelayPlan` with hub arrival
and handoff times, re-validating against the current snapshot.  Validation
failures raise :class:`StaleState`; the candidate is discarded and the load
goes back for regeneration.  Plans are never mutated once built.
"""

import uuid
from collections.abc import Callable
from datetime import datetime, timedelta

from relaymatch.config.params import CandidateParams
from relaymatch.core_types import (
    Candidate,
    CandidateKind,
    FleetSnapshot,
    GeoPoint,
    HubStatus,
    RelayLeg,
    RelayPlan,
)
from relaymatch.exceptions import StaleState
from relaymatch.utils.geo import haversine_km, travel_delta
from relaymatch.utils.logging import RelayMatchLogger

logger = RelayMatchLogger.get_logger(__name__)


def check_chaining(plan: RelayPlan, destination: GeoPoint, first_position: GeoPoint) -> bool:
    """Leg i ends at the hub leg i+1 starts from, and the chain spans position to destination."""
    if not plan.legs:
        return False
    for current, following in zip(plan.legs, plan.legs[1:]):
        if current.end_hub_id is None or current.end_hub_id != following.start_hub_id:
            return False
    return plan.legs[-1].end == destination and plan.legs[0].start == first_position


class RelayPlanner:
    def __init__(self, params: CandidateParams | Callable[[], CandidateParams] | None = None):
        self._params = params or CandidateParams()

    @property
    def params(self) -> CandidateParams:
        if callable(self._params):
            return self._params()
        return self._params

    def plan(self, candidate: Candidate, snapshot: FleetSnapshot, now: datetime | None = None) -> RelayPlan:
        if candidate.kind != CandidateKind.RELAY:
            raise ValueError(f"Candidate {candidate.candidate_id} is not a relay")
        now = now or snapshot.taken_at
        if candidate.is_expired(now):
            raise StaleState(candidate.candidate_id, "candidate expired")

        self._check_vehicles(candidate, snapshot)
        self._check_hubs(candidate, snapshot)

        p = self.params
        buffer = timedelta(minutes=p.handoff_buffer_min)
        legs: list[RelayLeg] = []
        for i, leg in enumerate(candidate.legs):
            handoff_ready_at = None
            if i + 1 < len(candidate.legs):
                following = candidate.legs[i + 1]
                vehicle = snapshot.vehicles[following.vehicle_id]
                available_at = vehicle.ready_at + travel_delta(
                    haversine_km(vehicle.position, following.start), p.avg_speed_kmh, p.road_factor
                )
                if available_at > leg.arrive_at + buffer:
                    raise StaleState(
                        candidate.candidate_id,
                        f"vehicle {vehicle.vehicle_id} cannot reach hub {leg.end_hub_id} "
                        f"before {(leg.arrive_at + buffer).isoformat()}",
                    )
                handoff_ready_at = max(leg.arrive_at, available_at)
            legs.append(
                RelayLeg(
                    vehicle_id=leg.vehicle_id,
                    # The first leg starts where its vehicle was when the candidate was generated
                    start=snapshot.vehicles[leg.vehicle_id].position if i == 0 else leg.start,
                    end=leg.end,
                    start_hub_id=leg.start_hub_id,
                    end_hub_id=leg.end_hub_id,
                    depart_at=leg.depart_at,
                    arrive_at=leg.arrive_at,
                    handoff_ready_at=handoff_ready_at,
                )
            )

        plan = RelayPlan(
            plan_id=f"plan-{uuid.uuid4().hex[:12]}",
            load_id=candidate.load_id,
            candidate_id=candidate.candidate_id,
            legs=tuple(legs),
            created_at=now,
        )
        load = snapshot.loads.get(candidate.load_id)
        destination = load.destination if load else candidate.legs[-1].end
        first_position = snapshot.vehicles[candidate.legs[0].vehicle_id].position
        if not check_chaining(plan, destination, first_position):
            raise StaleState(candidate.candidate_id, "relay legs do not chain through hubs")
        logger.debug(f"Relay plan {plan.plan_id} for {candidate.load_id} via {', '.join(plan.hub_ids)}")
        return plan

    def _check_vehicles(self, candidate: Candidate, snapshot: FleetSnapshot) -> None:
        for leg in candidate.legs:
            vehicle = snapshot.vehicles.get(leg.vehicle_id)
            if vehicle is None:
                raise StaleState(candidate.candidate_id, f"vehicle {leg.vehicle_id} left the snapshot")
            if leg.vehicle_seen_at is not None and vehicle.timestamp != leg.vehicle_seen_at:
                raise StaleState(candidate.candidate_id, f"vehicle {leg.vehicle_id} reported a new position")
            if leg.vehicle_origin is not None and vehicle.position != leg.vehicle_origin:
                raise StaleState(candidate.candidate_id, f"vehicle {leg.vehicle_id} moved")

    def _check_hubs(self, candidate: Candidate, snapshot: FleetSnapshot) -> None:
        for hub_id in candidate.hub_ids:
            hub = snapshot.hubs.get(hub_id)
            if hub is None or hub.status != HubStatus.ACTIVE:
                raise StaleState(candidate.candidate_id, f"hub {hub_id} is no longer active")
