"""
Services cache — short-lived store of discovered services with profiling.

One ``ServicesCache`` is created at API startup and shared by every
request through ``app.state``.  Reads far outnumber writes, so access is
guarded by a reader/writer lock; values are deep-copied on the way in and
on the way out so callers never share list objects with the cache.
"""
import threading
import time
from contextlib import contextmanager
from typing import Callable, List, Optional

from pydantic import BaseModel, Field


class ServiceInfo(BaseModel):
    """A service seen emitting profiles."""
    name: str
    environments: List[str] = Field(default_factory=list)
    last_seen: Optional[str] = None


class ReadWriteLock:
    """Many concurrent readers or one writer; waiting writers block new readers."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self):
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self):
        with self._cond:
            self._writers_waiting += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


def _copy(services: List[ServiceInfo]) -> List[ServiceInfo]:
    return [s.model_copy(deep=True) for s in services]


class ServicesCache:
    """
    TTL cache of ``ServiceInfo`` records.

    Parameters
    ----------
    ttl_seconds : float
        Entries older than this are treated as absent.
    clock : callable, optional
        Returns the current time in seconds.  Injected so tests can move
        time without sleeping.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.time) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = ReadWriteLock()
        self._services: List[ServiceInfo] = []
        self._fetched_at: Optional[float] = None

    def _expired_locked(self) -> bool:
        if not self._services or self._fetched_at is None:
            return True
        return self._clock() - self._fetched_at > self._ttl

    def get(self) -> Optional[List[ServiceInfo]]:
        """Cached services, or None when empty or expired."""
        with self._lock.read():
            if self._expired_locked():
                return None
            return _copy(self._services)

    def set(self, services: List[ServiceInfo]) -> None:
        with self._lock.write():
            self._services = _copy(services)
            self._fetched_at = self._clock()

    def filter_by_env_prefix(self, prefix: str) -> List[ServiceInfo]:
        """
        Services with at least one environment starting with *prefix*
        (case-insensitive), each trimmed to its matching environments.
        An empty prefix returns everything.
        """
        with self._lock.read():
            if not prefix:
                return _copy(self._services)

            prefix = prefix.lower()
            filtered: List[ServiceInfo] = []
            for svc in self._services:
                envs = [e for e in svc.environments if e.lower().startswith(prefix)]
                if envs:
                    filtered.append(ServiceInfo(
                        name=svc.name, environments=envs, last_seen=svc.last_seen,
                    ))
            return filtered

    def clear(self) -> None:
        with self._lock.write():
            self._services = []
            self._fetched_at = None

    def is_expired(self) -> bool:
        with self._lock.read():
            return self._expired_locked()

    def fetched_at(self) -> Optional[float]:
        """Time of the last ``set`` (clock seconds), or None."""
        with self._lock.read():
            return self._fetched_at
