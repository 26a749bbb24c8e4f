"""
Candidate generation.

For one load and an immutable :class:`FleetSnapshot`, enumerate feasible ways
to cover the load:

* **direct**: one vehicle drives empty to the origin and hauls the load to the
  destination;
* **relay**: two or three vehicles chain the haul through one or two Smart
  Hubs that lie within the detour bound, in order of progress along the route.

Filters run cheap to expensive: equipment and capacity, then pickup and
delivery windows, then each leg vehicle's remaining duty hours.  Generation is
pure, so a batch of loads can be fanned out with joblib.
"""

from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from joblib import Parallel, delayed

from relaymatch.config.params import CandidateParams
from relaymatch.core_types import (
    Candidate,
    CandidateKind,
    FleetSnapshot,
    GeoPoint,
    Load,
    LoadFailure,
    RouteLeg,
    SmartHub,
    VehicleSnapshot,
)
from relaymatch.exceptions import InfeasibleInstance
from relaymatch.utils.geo import detour_km, haversine_km, km_to_miles, route_progress, travel_delta, travel_hours
from relaymatch.utils.logging import RelayMatchLogger

logger = RelayMatchLogger.get_logger(__name__)


def _hours(delta: timedelta) -> float:
    return delta.total_seconds() / 3600.0


def is_compatible(vehicle: VehicleSnapshot, load: Load) -> bool:
    """Equipment class and weight capacity check."""
    if load.equipment and vehicle.equipment.lower() != load.equipment.lower():
        return False
    return vehicle.capacity >= load.weight


def direct_candidate_id(load_id: str, vehicle_id: str) -> str:
    return f"{load_id}:D:{vehicle_id}"


def relay_candidate_id(load_id: str, vehicle_ids: tuple[str, ...], hub_ids: tuple[str, ...]) -> str:
    chain = [vehicle_ids[0]]
    for hub_id, vehicle_id in zip(hub_ids, vehicle_ids[1:]):
        chain.extend([hub_id, vehicle_id])
    return f"{load_id}:R:{'>'.join(chain)}"


@dataclass
class _Rejections:
    """Counts why vehicles were filtered, for the infeasibility reason."""

    equipment: int = 0
    deadhead: int = 0
    window: int = 0
    duty: int = 0

    def reason(self) -> str:
        if not any((self.equipment, self.deadhead, self.window, self.duty)):
            return "no vehicles available"
        return (
            f"no feasible candidate (equipment/capacity={self.equipment}, "
            f"deadhead={self.deadhead}, time windows={self.window}, duty hours={self.duty})"
        )


class CandidateGenerator:
    """Builds top-K direct and relay candidates for loads against one snapshot."""

    def __init__(self, snapshot: FleetSnapshot, params: CandidateParams | None = None, exclude_vehicles=()):
        self.snapshot = snapshot
        self.params = params or CandidateParams()
        excluded = set(exclude_vehicles)
        self._vehicles = [
            v for vid, v in sorted(snapshot.vehicles.items()) if vid not in excluded
        ]
        self._hubs = snapshot.active_hubs()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def generate(self, load: Load) -> list[Candidate]:
        """Top-K candidates for ``load``; raises InfeasibleInstance when there are none."""
        rejections = _Rejections()
        compatible = []
        for vehicle in self._vehicles:
            if is_compatible(vehicle, load):
                compatible.append(vehicle)
            else:
                rejections.equipment += 1

        candidates: list[Candidate] = []
        for vehicle in compatible:
            candidate = self._direct(load, vehicle, rejections)
            if candidate is not None:
                candidates.append(candidate)

        if self.params.max_relay_hubs > 0 and compatible:
            candidates.extend(self._relays(load, compatible))

        if not candidates:
            raise InfeasibleInstance(load.load_id, rejections.reason())

        candidates.sort(key=lambda c: (-c.pre_score, c.detour_km, c.candidate_id))
        return candidates[: self.params.top_k]

    # ------------------------------------------------------------------
    # Direct hauls
    # ------------------------------------------------------------------

    def _direct(self, load: Load, vehicle: VehicleSnapshot, rejections: _Rejections) -> Candidate | None:
        leg = self._first_leg(load, vehicle, load.destination, None, rejections)
        if leg is None:
            return None
        delivery_slack = _hours(load.delivery_latest - leg.arrive_at)
        if delivery_slack < 0:
            rejections.window += 1
            return None
        leg = _with_slack(leg, min(leg.slack_hours, delivery_slack))
        return self._candidate(
            load,
            CandidateKind.DIRECT,
            (leg,),
            direct_candidate_id(load.load_id, vehicle.vehicle_id),
            detour=0.0,
        )

    def _first_leg(
        self,
        load: Load,
        vehicle: VehicleSnapshot,
        end: GeoPoint,
        end_hub: SmartHub | None,
        rejections: _Rejections | None = None,
    ) -> RouteLeg | None:
        """Leg from the vehicle's position through pickup to ``end``."""
        p = self.params
        deadhead = haversine_km(vehicle.position, load.origin)
        if deadhead > p.max_deadhead_km:
            if rejections is not None:
                rejections.deadhead += 1
            return None
        arrival = vehicle.ready_at + travel_delta(deadhead, p.avg_speed_kmh, p.road_factor)
        if arrival > load.pickup_latest:
            if rejections is not None:
                rejections.window += 1
            return None
        # Early arrival waits for the pickup window to open
        depart = max(arrival, load.pickup_earliest)
        loaded = haversine_km(load.origin, end)
        arrive = depart + travel_delta(loaded, p.avg_speed_kmh, p.road_factor)
        drive = travel_hours(deadhead + loaded, p.avg_speed_kmh, p.road_factor)
        if drive > vehicle.duty_hours_remaining:
            if rejections is not None:
                rejections.duty += 1
            return None
        return RouteLeg(
            vehicle_id=vehicle.vehicle_id,
            start=load.origin,
            end=end,
            deadhead_km=deadhead,
            loaded_km=loaded,
            depart_at=depart,
            arrive_at=arrive,
            drive_hours=drive,
            end_hub_id=end_hub.hub_id if end_hub else None,
            vehicle_origin=vehicle.position,
            vehicle_seen_at=vehicle.timestamp,
            slack_hours=_hours(load.pickup_latest - arrival),
        )

    def _handoff_leg(
        self,
        vehicle: VehicleSnapshot,
        hub: SmartHub,
        handoff_at: datetime,
        end: GeoPoint,
        end_hub: SmartHub | None,
    ) -> RouteLeg | None:
        """Leg that picks the load up at ``hub`` from the previous vehicle."""
        p = self.params
        deadhead = haversine_km(vehicle.position, hub.location)
        if deadhead > p.max_deadhead_km:
            return None
        ready = vehicle.ready_at + travel_delta(deadhead, p.avg_speed_kmh, p.road_factor)
        latest = handoff_at + timedelta(minutes=p.handoff_buffer_min)
        if ready > latest:
            return None
        depart = max(ready, handoff_at)
        loaded = haversine_km(hub.location, end)
        arrive = depart + travel_delta(loaded, p.avg_speed_kmh, p.road_factor)
        drive = travel_hours(deadhead + loaded, p.avg_speed_kmh, p.road_factor)
        if drive > vehicle.duty_hours_remaining:
            return None
        return RouteLeg(
            vehicle_id=vehicle.vehicle_id,
            start=hub.location,
            end=end,
            deadhead_km=deadhead,
            loaded_km=loaded,
            depart_at=depart,
            arrive_at=arrive,
            drive_hours=drive,
            start_hub_id=hub.hub_id,
            end_hub_id=end_hub.hub_id if end_hub else None,
            vehicle_origin=vehicle.position,
            vehicle_seen_at=vehicle.timestamp,
            slack_hours=_hours(latest - ready),
        )

    # ------------------------------------------------------------------
    # Relay hauls
    # ------------------------------------------------------------------

    def eligible_hubs(self, load: Load) -> list[SmartHub]:
        """Hubs within the detour bound, ordered by progress along the route."""
        eligible = [
            hub
            for hub in self._hubs
            if detour_km(load.origin, hub.location, load.destination) <= self.params.max_detour_km
        ]
        return sorted(
            eligible,
            key=lambda h: (route_progress(load.origin, load.destination, h.location), h.hub_id),
        )

    def _hub_has_capacity(self, hub: SmartHub, when: datetime) -> bool:
        if not hub.is_open_at(when):
            return False
        return hub.capacity - self.snapshot.hub_usage.get(hub.hub_id, 0) > 0

    def _hub_chains(self, load: Load) -> list[tuple[SmartHub, ...]]:
        hubs = self.eligible_hubs(load)
        chains: list[tuple[SmartHub, ...]] = [(hub,) for hub in hubs]
        if self.params.max_relay_hubs >= 2:
            for i, first in enumerate(hubs):
                for second in hubs[i + 1 :]:
                    total = (
                        haversine_km(load.origin, first.location)
                        + haversine_km(first.location, second.location)
                        + haversine_km(second.location, load.destination)
                        - haversine_km(load.origin, load.destination)
                    )
                    if total <= self.params.max_detour_km:
                        chains.append((first, second))
        return chains

    def _nearest(self, vehicles: list[VehicleSnapshot], point: GeoPoint) -> list[VehicleSnapshot]:
        ranked = sorted(vehicles, key=lambda v: (haversine_km(v.position, point), v.vehicle_id))
        return ranked[: self.params.relay_vehicles_per_leg]

    def _relays(self, load: Load, compatible: list[VehicleSnapshot]) -> list[Candidate]:
        candidates = []
        for chain in self._hub_chains(load):
            stops = [load.origin] + [hub.location for hub in chain]
            pools = [self._nearest(compatible, stop) for stop in stops]
            for vehicles in _distinct_combinations(pools):
                candidate = self._relay(load, chain, vehicles)
                if candidate is not None:
                    candidates.append(candidate)
        return candidates

    def _relay(
        self, load: Load, chain: tuple[SmartHub, ...], vehicles: tuple[VehicleSnapshot, ...]
    ) -> Candidate | None:
        legs: list[RouteLeg] = []
        ends = [hub.location for hub in chain] + [load.destination]
        end_hubs: list[SmartHub | None] = list(chain) + [None]

        leg = self._first_leg(load, vehicles[0], ends[0], end_hubs[0])
        if leg is None or not self._hub_has_capacity(chain[0], leg.arrive_at):
            return None
        legs.append(leg)
        for i, hub in enumerate(chain):
            leg = self._handoff_leg(vehicles[i + 1], hub, legs[-1].arrive_at, ends[i + 1], end_hubs[i + 1])
            if leg is None:
                return None
            next_hub = end_hubs[i + 1]
            if next_hub is not None and not self._hub_has_capacity(next_hub, leg.arrive_at):
                return None
            legs.append(leg)

        delivery_slack = _hours(load.delivery_latest - legs[-1].arrive_at)
        if delivery_slack < 0:
            return None
        legs[-1] = _with_slack(legs[-1], min(legs[-1].slack_hours, delivery_slack))

        hub_ids = tuple(hub.hub_id for hub in chain)
        detour = sum(leg.loaded_km for leg in legs) - haversine_km(load.origin, load.destination)
        return self._candidate(
            load,
            CandidateKind.RELAY,
            tuple(legs),
            relay_candidate_id(load.load_id, tuple(v.vehicle_id for v in vehicles), hub_ids),
            detour=max(detour, 0.0),
        )

    # ------------------------------------------------------------------
    # Shared
    # ------------------------------------------------------------------

    def _candidate(
        self,
        load: Load,
        kind: CandidateKind,
        legs: tuple[RouteLeg, ...],
        candidate_id: str,
        detour: float,
    ) -> Candidate:
        generated_at = self.snapshot.taken_at
        return Candidate(
            candidate_id=candidate_id,
            load_id=load.load_id,
            kind=kind,
            legs=legs,
            generated_at=generated_at,
            expires_at=generated_at + timedelta(seconds=self.params.candidate_ttl_s),
            pre_score=pre_score(load, legs, detour),
            detour_km=detour,
            empty_miles_delta=self.empty_miles_delta(legs),
        )

    def empty_miles_delta(self, legs: tuple[RouteLeg, ...]) -> float:
        """Empty miles driven with this haul minus empty miles of returning home directly.

        Negative values are empty miles avoided.  A vehicle without a known
        home only contributes its deadhead.
        """
        delta_km = 0.0
        for leg in legs:
            vehicle = self.snapshot.vehicles[leg.vehicle_id]
            delta_km += leg.deadhead_km
            if vehicle.home is not None:
                delta_km += haversine_km(leg.end, vehicle.home) - haversine_km(vehicle.position, vehicle.home)
        return km_to_miles(delta_km)


def pre_score(load: Load, legs: tuple[RouteLeg, ...], detour: float) -> float:
    """Cheap ranking key: share of driven distance that moves the load forward."""
    haul = haversine_km(load.origin, load.destination)
    driven = haul + detour + sum(leg.deadhead_km for leg in legs)
    if driven <= 0:
        return 1.0
    return haul / driven


def _with_slack(leg: RouteLeg, slack: float) -> RouteLeg:
    return replace(leg, slack_hours=slack)


def _distinct_combinations(pools: list[list[VehicleSnapshot]]):
    """Every choice of one vehicle per pool with no vehicle used twice."""

    def walk(index: int, chosen: tuple[VehicleSnapshot, ...]):
        if index == len(pools):
            yield chosen
            return
        used = {v.vehicle_id for v in chosen}
        for vehicle in pools[index]:
            if vehicle.vehicle_id not in used:
                yield from walk(index + 1, chosen + (vehicle,))

    yield from walk(0, ())


# ---------------------------------------------------------------------------
# Batch generation
# ---------------------------------------------------------------------------


def generate_candidates(
    load: Load,
    snapshot: FleetSnapshot,
    params: CandidateParams | None = None,
    exclude_vehicles=(),
) -> list[Candidate]:
    """Top-K candidates for a single load."""
    return CandidateGenerator(snapshot, params, exclude_vehicles).generate(load)


def _generate_one(
    load: Load, snapshot: FleetSnapshot, params: CandidateParams, exclude_vehicles
) -> tuple[str, list[Candidate], LoadFailure | None]:
    try:
        return load.load_id, generate_candidates(load, snapshot, params, exclude_vehicles), None
    except InfeasibleInstance as exc:
        return load.load_id, [], LoadFailure(load.load_id, "infeasible", exc.reason)
    except (ValueError, KeyError) as exc:
        logger.warning(f"Candidate generation failed for load {load.load_id}: {exc}")
        return load.load_id, [], LoadFailure(load.load_id, "error", str(exc))


def generate_batch(
    loads: list[Load],
    snapshot: FleetSnapshot,
    params: CandidateParams | None = None,
    exclude_vehicles=(),
) -> tuple[dict[str, list[Candidate]], list[LoadFailure]]:
    """Candidates for many loads; per-load failures are collected, not raised."""
    params = params or CandidateParams()
    exclude_vehicles = frozenset(exclude_vehicles)
    if params.n_jobs == 1 or len(loads) < 2:
        results = [_generate_one(load, snapshot, params, exclude_vehicles) for load in loads]
    else:
        results = Parallel(n_jobs=params.n_jobs, backend="loky")(
            delayed(_generate_one)(load, snapshot, params, exclude_vehicles) for load in loads
        )

    by_load: dict[str, list[Candidate]] = {}
    failures: list[LoadFailure] = []
    for load_id, candidates, failure in results:
        if failure is not None:
            failures.append(failure)
        else:
            by_load[load_id] = candidates
    logger.debug(
        f"Generated {sum(len(c) for c in by_load.values())} candidates for "
        f"{len(by_load)} loads ({len(failures)} infeasible)"
    )
    return by_load, failures
