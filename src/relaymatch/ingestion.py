"""
Inbound position and load feed.

Updates are applied idempotently: an update is keyed by ``(id, timestamp)``,
and anything not newer than the latest applied state for that id is ignored,
so replays and out-of-order delivery are harmless.  :meth:`FeedIngestor.snapshot`
hands out immutable :class:`FleetSnapshot` objects for matching passes.
"""

import threading
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from enum import Enum

from relaymatch.core_types import FleetSnapshot, Load, LoadStatus, SmartHub, VehicleSnapshot
from relaymatch.exceptions import FeedUnavailable
from relaymatch.utils.logging import RelayMatchLogger

logger = RelayMatchLogger.get_logger(__name__)


class LoadEventKind(str, Enum):
    CREATED = "created"
    CANCELLED = "cancelled"
    STATUS_CHANGED = "status_changed"


class FeedIngestor:
    def __init__(
        self,
        stale_after_s: float | Callable[[], float] = 900.0,
        clock: Callable[[], datetime] | None = None,
    ):
        self._stale_after_s = stale_after_s
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()
        self._vehicles: dict[str, VehicleSnapshot] = {}
        self._loads: dict[str, Load] = {}
        self._load_stamps: dict[str, datetime] = {}
        self._hub_provider: Callable[[], dict[str, SmartHub]] | None = None
        self._hub_usage_provider: Callable[[], dict[str, int]] | None = None
        self._last_vehicle_update: datetime | None = None

    @property
    def stale_after_s(self) -> float:
        if callable(self._stale_after_s):
            return self._stale_after_s()
        return self._stale_after_s

    def attach_hubs(
        self,
        hubs: Callable[[], dict[str, SmartHub]],
        usage: Callable[[], dict[str, int]] | None = None,
    ) -> None:
        """Hubs and committed handoffs are read from these callables at snapshot time."""
        self._hub_provider = hubs
        self._hub_usage_provider = usage

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def ingest_vehicle_update(self, vehicle: VehicleSnapshot) -> bool:
        """Apply a position/availability report; returns False when it was ignored."""
        with self._lock:
            current = self._vehicles.get(vehicle.vehicle_id)
            if current is not None and vehicle.timestamp <= current.timestamp:
                return False
            self._vehicles[vehicle.vehicle_id] = vehicle
            self._last_vehicle_update = self._clock()
        return True

    def ingest_load_event(
        self,
        kind: LoadEventKind | str,
        load: Load | None = None,
        *,
        load_id: str | None = None,
        status: LoadStatus | str | None = None,
        timestamp: datetime | None = None,
    ) -> bool:
        """Apply a load lifecycle event; returns False for duplicates and stale events.

        ``created`` carries the full :class:`Load`; ``cancelled`` and
        ``status_changed`` may carry just ``load_id`` (and ``status``).
        """
        kind = LoadEventKind(kind)
        load_id = load.load_id if load is not None else load_id
        if load_id is None:
            raise ValueError("load event without a load id")
        stamp = timestamp or (load.updated_at if load is not None else None) or self._clock()

        with self._lock:
            previous = self._load_stamps.get(load_id)
            if previous is not None and stamp <= previous:
                return False
            if kind == LoadEventKind.CREATED:
                if load is None:
                    raise ValueError("created event requires the load")
                self._loads[load_id] = load.with_status(load.status, stamp)
            else:
                existing = self._loads.get(load_id)
                if existing is None:
                    logger.debug(f"Ignoring {kind.value} for unknown load {load_id}")
                    return False
                if kind == LoadEventKind.CANCELLED:
                    new_status = LoadStatus.CANCELLED
                else:
                    if status is None:
                        raise ValueError("status_changed event requires a status")
                    new_status = LoadStatus(status)
                self._loads[load_id] = existing.with_status(new_status, stamp)
            self._load_stamps[load_id] = stamp
        return True

    def set_load_status(self, load_id: str, status: LoadStatus, expected: LoadStatus | None = None) -> bool:
        """Status change made by the engine itself (Candidate, Reserved, ...).

        With ``expected`` the change only applies while the load still has that
        status, so a decision taken on an older snapshot cannot overwrite a
        newer one.  Returns whether the status changed.
        """
        with self._lock:
            existing = self._loads.get(load_id)
            if existing is None or existing.status == status:
                return False
            if expected is not None and existing.status != expected:
                return False
            self._loads[load_id] = existing.with_status(status)
            return True

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def is_stale(self) -> bool:
        if self._last_vehicle_update is None:
            return True
        return self._clock() - self._last_vehicle_update > timedelta(seconds=self.stale_after_s)

    def snapshot(self, require_fresh: bool = True) -> FleetSnapshot:
        """Immutable copy of the current state; raises FeedUnavailable when the feed is lost."""
        if require_fresh and self.is_stale():
            raise FeedUnavailable(
                "No vehicle updates received"
                if self._last_vehicle_update is None
                else f"No vehicle updates since {self._last_vehicle_update.isoformat()}"
            )
        hubs = dict(self._hub_provider()) if self._hub_provider else {}
        usage = dict(self._hub_usage_provider()) if self._hub_usage_provider else {}
        with self._lock:
            return FleetSnapshot(
                taken_at=self._clock(),
                vehicles=dict(self._vehicles),
                loads=dict(self._loads),
                hubs=hubs,
                hub_usage=usage,
            )

    def get_load(self, load_id: str) -> Load | None:
        with self._lock:
            return self._loads.get(load_id)

    def get_vehicle(self, vehicle_id: str) -> VehicleSnapshot | None:
        with self._lock:
            return self._vehicles.get(vehicle_id)
