"""Hot-reloadable holder for the active :class:`RelayMatchParams`."""

import threading
from pathlib import Path

from relaymatch.utils.logging import RelayMatchLogger, log_warning

from .loader import load_yaml
from .params import RelayMatchParams

logger = RelayMatchLogger.get_logger(__name__)


class ParamsStore:
    """Thread-safe reference to the current parameters.

    Readers call :meth:`current` once per operation and keep that object for
    the whole operation, so a reload never changes policy half-way through a
    pass.  A failed reload keeps the previous parameters.
    """

    def __init__(self, params: RelayMatchParams | None = None, path: str | Path | None = None):
        self._lock = threading.Lock()
        self._path = Path(path) if path is not None else None
        self._mtime: float | None = None
        if params is None:
            params = load_yaml(self._path) if self._path is not None else RelayMatchParams()
            if self._path is not None:
                self._mtime = self._path.stat().st_mtime
        self._params = params
        self.version = 1

    @property
    def path(self) -> Path | None:
        return self._path

    def current(self) -> RelayMatchParams:
        with self._lock:
            return self._params

    def update(self, params: RelayMatchParams) -> None:
        with self._lock:
            self._params = params
            self.version += 1
        logger.info(f"Configuration updated (version {self.version})")

    def reload(self) -> bool:
        """Re-read the backing file; returns True when new parameters were applied."""
        if self._path is None:
            return False
        try:
            params = load_yaml(self._path)
            mtime = self._path.stat().st_mtime
        except (OSError, ValueError) as exc:
            log_warning(f"Configuration reload failed, keeping previous values: {exc}")
            return False
        with self._lock:
            self._params = params
            self._mtime = mtime
            self.version += 1
        logger.info(f"Configuration reloaded from {self._path} (version {self.version})")
        return True

    def maybe_reload(self) -> bool:
        """Reload only when the backing file changed since the last load."""
        if self._path is None:
            return False
        try:
            mtime = self._path.stat().st_mtime
        except OSError as exc:
            log_warning(f"Configuration file unavailable: {exc}")
            return False
        if self._mtime is not None and mtime == self._mtime:
            return False
        return self.reload()
