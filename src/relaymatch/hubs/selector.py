"""
Smart Hub selection.

A pass clusters historical crossover points, keeps clusters that were crossed
often enough and that have a suitable facility nearby, and ranks the
survivors by ``normalized frequency x normalized suitability``.  The selector
then reconciles the ranking with the hubs it already published: new hubs are
created, hubs that dropped out are retired, except that a hub still referenced
by an active relay plan only moves to ``Retiring`` until its last plan is
released.

Selection works from observed crossovers and facility data alone; demand
forecasts reach matching through the scorer's network-balance term, not here.
"""

import threading
from dataclasses import dataclass, replace

import numpy as np

from relaymatch.config.params import HubParams
from relaymatch.core_types import Facility, GeoPoint, HubStatus, RelayPlan, SmartHub
from relaymatch.events import EventBus, EventType
from relaymatch.utils.geo import centroid, haversine_km
from relaymatch.utils.logging import RelayMatchLogger

from .clustering import cluster_crossovers

logger = RelayMatchLogger.get_logger(__name__)


@dataclass(frozen=True)
class CrossoverCluster:
    label: int
    center: GeoPoint
    frequency: int


def amenity_share(amenities: tuple[str, ...], weights: dict[str, float]) -> float:
    """Weighted fraction of the configured amenities a facility offers."""
    total = sum(weights.values())
    if total <= 0:
        return 0.0
    present = {a.lower() for a in amenities}
    return sum(w for name, w in weights.items() if name in present) / total


def facility_suitability(facility: Facility, params: HubParams) -> float:
    capacity_term = min(facility.capacity / params.capacity_reference, 1.0)
    safety_term = min(max(facility.safety, 0.0), 1.0)
    return (
        0.4 * capacity_term
        + 0.3 * safety_term
        + 0.3 * amenity_share(facility.amenities, params.amenity_weights)
    )


def hub_id_for(facility: Facility) -> str:
    return f"HUB-{facility.location.latitude:.3f}_{facility.location.longitude:.3f}"


def summarize_clusters(points: list[GeoPoint], labels: list[int]) -> list[CrossoverCluster]:
    members: dict[int, list[GeoPoint]] = {}
    for point, label in zip(points, labels):
        if label < 0:
            continue
        members.setdefault(label, []).append(point)
    return [
        CrossoverCluster(label=label, center=centroid(pts), frequency=len(pts))
        for label, pts in sorted(members.items())
    ]


def rank_hubs(
    clusters: list[CrossoverCluster],
    facilities: list[Facility],
    params: HubParams,
) -> list[SmartHub]:
    """Filter clusters and turn the survivors into ranked hubs.

    Each cluster is represented by the most suitable facility within
    ``facility_radius_km`` of its centre.  Ties in composite score go to the
    higher suitability, then the lower hub id.
    """
    scored: dict[str, tuple[SmartHub, float]] = {}
    for cluster in clusters:
        if cluster.frequency < params.min_crossovers:
            continue
        nearby = [
            f
            for f in facilities
            if haversine_km(cluster.center, f.location) <= params.facility_radius_km
        ]
        if not nearby:
            continue
        best = max(
            nearby,
            key=lambda f: (facility_suitability(f, params), -haversine_km(cluster.center, f.location)),
        )
        suitability = facility_suitability(best, params)
        if suitability < params.min_suitability:
            continue
        hub = SmartHub(
            hub_id=hub_id_for(best),
            location=best.location,
            capacity=best.capacity,
            suitability=suitability,
            active_from_hour=best.active_from_hour,
            active_to_hour=best.active_to_hour,
            crossover_frequency=cluster.frequency,
            name=best.name or best.facility_id,
            amenities=tuple(sorted(a.lower() for a in best.amenities)),
        )
        # Two clusters served by the same facility merge their crossovers
        if hub.hub_id in scored:
            previous = scored[hub.hub_id][0]
            hub = replace(hub, crossover_frequency=previous.crossover_frequency + cluster.frequency)
        scored[hub.hub_id] = (hub, suitability)

    if not scored:
        return []

    max_freq = max(h.crossover_frequency for h, _ in scored.values())
    max_suit = max(s for _, s in scored.values()) or 1.0
    ranked = [
        replace(
            hub,
            composite_score=(hub.crossover_frequency / max_freq) * (suitability / max_suit),
        )
        for hub, suitability in scored.values()
    ]
    ranked.sort(key=lambda h: (-h.composite_score, -h.suitability, h.hub_id))
    return ranked[: params.max_hubs]


class HubSelector:
    """Owns the published Smart Hub set and the relay plans that pin it."""

    def __init__(self, events: EventBus | None = None):
        self._lock = threading.Lock()
        self._hubs: dict[str, SmartHub] = {}
        self._plan_hubs: dict[str, tuple[str, ...]] = {}
        self._events = events or EventBus()

    # ------------------------------------------------------------------
    # Selection pass
    # ------------------------------------------------------------------

    def select(
        self,
        crossovers: list[GeoPoint],
        facilities: list[Facility],
        params: HubParams | None = None,
    ) -> list[SmartHub]:
        """Cluster and rank without touching the published hub set."""
        params = params or HubParams()
        if not crossovers:
            return []
        coords = np.array([p.as_tuple() for p in crossovers], dtype=np.float64)
        labels = cluster_crossovers(coords, params.cluster_method, params.cluster_distance_km)
        clusters = summarize_clusters(crossovers, labels)
        return rank_hubs(clusters, facilities, params)

    def refresh(
        self,
        crossovers: list[GeoPoint],
        facilities: list[Facility],
        params: HubParams | None = None,
    ) -> list[SmartHub]:
        """Run a selection pass and publish the result; returns the active hubs."""
        ranked = self.select(crossovers, facilities, params)
        selected = {hub.hub_id: hub for hub in ranked}
        created: list[SmartHub] = []
        retired: list[str] = []

        with self._lock:
            for hub_id, hub in selected.items():
                if hub_id not in self._hubs:
                    created.append(hub)
                # A Retiring hub that is selected again becomes Active
                self._hubs[hub_id] = hub

            for hub_id in sorted(set(self._hubs) - set(selected)):
                if self._is_referenced(hub_id):
                    self._hubs[hub_id] = replace(self._hubs[hub_id], status=HubStatus.RETIRING)
                else:
                    del self._hubs[hub_id]
                    retired.append(hub_id)
            active = sorted(
                (h for h in self._hubs.values() if h.status == HubStatus.ACTIVE),
                key=lambda h: h.hub_id,
            )

        for hub in created:
            self._events.emit(
                EventType.HUB_CREATED,
                hub_id=hub.hub_id,
                latitude=hub.location.latitude,
                longitude=hub.location.longitude,
                composite_score=hub.composite_score,
            )
        for hub_id in retired:
            self._events.emit(EventType.HUB_RETIRED, hub_id=hub_id)
        logger.info(
            f"Hub pass: {len(active)} active, {len(created)} created, {len(retired)} retired"
        )
        return active

    # ------------------------------------------------------------------
    # Relay plan references
    # ------------------------------------------------------------------

    def register_plan(self, plan: RelayPlan) -> None:
        with self._lock:
            self._plan_hubs[plan.plan_id] = plan.hub_ids

    def release_plan(self, plan_id: str) -> list[str]:
        """Drop a plan's references and retire any Retiring hub left unreferenced."""
        retired: list[str] = []
        with self._lock:
            hub_ids = self._plan_hubs.pop(plan_id, ())
            for hub_id in hub_ids:
                hub = self._hubs.get(hub_id)
                if hub is not None and hub.status == HubStatus.RETIRING and not self._is_referenced(hub_id):
                    del self._hubs[hub_id]
                    retired.append(hub_id)
        for hub_id in retired:
            self._events.emit(EventType.HUB_RETIRED, hub_id=hub_id)
        return retired

    def _is_referenced(self, hub_id: str) -> bool:
        return any(hub_id in hubs for hubs in self._plan_hubs.values())

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def hubs(self) -> dict[str, SmartHub]:
        """Published hubs, Active and Retiring."""
        with self._lock:
            return dict(self._hubs)

    def get(self, hub_id: str) -> SmartHub | None:
        with self._lock:
            return self._hubs.get(hub_id)

    def active_hubs(self) -> list[SmartHub]:
        with self._lock:
            return sorted(
                (h for h in self._hubs.values() if h.status == HubStatus.ACTIVE),
                key=lambda h: h.hub_id,
            )

    def publish(self, hubs: list[SmartHub]) -> None:
        """Install an externally computed hub set, e.g. loaded from CSV."""
        with self._lock:
            for hub in hubs:
                self._hubs[hub.hub_id] = hub

    def hubs_near(self, point: GeoPoint, radius_km: float) -> list[SmartHub]:
        """Active hubs within ``radius_km`` of ``point``, nearest first."""
        found = [
            (haversine_km(point, hub.location), hub.hub_id, hub)
            for hub in self.active_hubs()
            if haversine_km(point, hub.location) <= radius_km
        ]
        return [hub for _, _, hub in sorted(found, key=lambda item: (item[0], item[1]))]
