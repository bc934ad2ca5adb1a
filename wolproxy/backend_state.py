"""Per-backend liveness cache shared by all in-flight requests."""

import asyncio
import logging
import time
from typing import Callable, Dict, Iterable, Optional


logger = logging.getLogger(__name__)


class UnknownBackendError(KeyError):
    """Raised when a backend name has no liveness record."""


class BackendRecord:
    """Last time a backend was confirmed online, guarded by its own lock."""

    def __init__(self):
        self.last_online: Optional[float] = None
        self.lock = asyncio.Lock()


class BackendStateStore:
    """Holds one liveness record per configured backend.

    Records are created once, from the configured backend names, and are never
    removed. Each record has its own lock so checks against different backends
    never contend with each other.
    """

    def __init__(self, names: Iterable[str], clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._records: Dict[str, BackendRecord] = {name: BackendRecord() for name in names}
        logger.debug(f"Backend state store created for {len(self._records)} backends")

    def _record(self, name: str) -> BackendRecord:
        try:
            return self._records[name]
        except KeyError:
            raise UnknownBackendError(name) from None

    async def is_recently_online(self, name: str, window: float) -> bool:
        """Return True if ``name`` was confirmed online less than ``window`` seconds ago."""
        record = self._record(name)
        async with record.lock:
            if record.last_online is None:
                return False
            return self._clock() - record.last_online < window

    async def mark_online(self, name: str) -> None:
        """Record that ``name`` has just been confirmed online."""
        record = self._record(name)
        async with record.lock:
            now = self._clock()
            if record.last_online is None or now > record.last_online:
                record.last_online = now

    def snapshot(self) -> Dict[str, Optional[float]]:
        """Seconds since each backend was last confirmed online (None if never)."""
        now = self._clock()
        return {
            name: None if record.last_online is None else now - record.last_online
            for name, record in self._records.items()
        }

    def __contains__(self, name: str) -> bool:
        return name in self._records

    def __len__(self) -> int:
        return len(self._records)
