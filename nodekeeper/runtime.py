from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from threading import Event, Lock, Thread
from typing import Any, Callable, Protocol

from . import db
from .components import app_identifier, main_workload_name
from .docker_ops import ContainerNotFound, RuntimeUnavailable
from .settings import settings
from .stats import StatsCollector


LAST_HOUR_MS = 60 * 60 * 1000
RETENTION_MS = 7 * 24 * 60 * 60 * 1000
# Every Nth tick also goes to the long-term store (with a full inspect).
LONG_TERM_EVERY = 3


class RepeatingTask:
    """Calls fn every interval_s on a daemon thread until cancelled.

    fn returning False cancels the task from inside. Cancellation takes effect at
    the next tick boundary; a running call is never interrupted.
    """

    def __init__(self, interval_s: float, fn: Callable[[], bool | None], name: str = "") -> None:
        self.interval_s = max(0.01, float(interval_s))
        self.fn = fn
        self.name = name
        self._stop = Event()
        self._thr: Thread | None = None

    def start(self) -> None:
        if self._thr and self._thr.is_alive():
            return
        self._thr = Thread(target=self._loop, name=f"monitor:{self.name}", daemon=True)
        self._thr.start()

    def cancel(self) -> None:
        self._stop.set()

    @property
    def active(self) -> bool:
        return not self._stop.is_set()

    def _loop(self) -> None:
        while not self._stop.wait(self.interval_s):
            if self.fn() is False:
                self._stop.set()


TaskFactory = Callable[[float, Callable[[], "bool | None"], str], RepeatingTask]


class RegistryGateway(Protocol):
    def get_container_only(self, identity: str) -> dict[str, Any] | None: ...

    def restart(self, identity: str) -> str: ...


@dataclass
class MonitoredEntry:
    stats_store: list[dict[str, Any]] = field(default_factory=list)
    last_hour_store: list[dict[str, Any]] = field(default_factory=list)
    run_count: int = 0
    task: RepeatingTask | None = None
    lock: Lock = field(default_factory=Lock, repr=False)


class MonitoringRegistry:
    """Owns the set of containers under observation.

    The entry map is injected so the registry and the API facade share one map
    and tests can build isolated registries. Ticks run on per-identity threads,
    so each entry carries its own lock; the map lock only guards insert/remove.
    """

    def __init__(
        self,
        gateway: RegistryGateway,
        collector: StatsCollector,
        entries: dict[str, MonitoredEntry] | None = None,
        interval_s: float | None = None,
        clock: Callable[[], float] = time.time,
        task_factory: TaskFactory = RepeatingTask,
    ) -> None:
        self.gateway = gateway
        self.collector = collector
        self.entries: dict[str, MonitoredEntry] = entries if entries is not None else {}
        self.interval_s = settings.sample_interval_s if interval_s is None else interval_s
        self.clock = clock
        self.task_factory = task_factory
        self.lock = Lock()

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    def start_monitoring(self, identity: str) -> None:
        if not identity:
            raise ValueError("No App specified")
        db.log_event("INFO", "Initialize Monitoring...", workload=main_workload_name(identity), component=identity)
        with self.lock:
            entry = self.entries.get(identity)
            if entry is None:
                entry = MonitoredEntry()
                self.entries[identity] = entry
            with entry.lock:
                if entry.task is not None:
                    entry.task.cancel()
                entry.run_count = 0
                entry.task = self.task_factory(self.interval_s, lambda: self.tick(identity), identity)
                entry.task.start()

    def stop_monitoring(self, identity: str, delete_data: bool = False) -> None:
        with self.lock:
            entry = self.entries.get(identity)
            if entry is not None:
                with entry.lock:
                    if entry.task is not None:
                        entry.task.cancel()
                        entry.task = None
            if delete_data:
                self.entries.pop(identity, None)

    def tick(self, identity: str) -> bool:
        """One sampling pass. Returns False when monitoring of identity should end."""
        entry = self.entries.get(identity)
        if entry is None:
            db.log_event("ERROR", f"Monitoring of {identity} already stopped", component=identity)
            return False
        try:
            try:
                container = self.gateway.get_container_only(identity)
            except RuntimeUnavailable as e:
                # Daemon may be restarting; try again next tick.
                db.log_event("ERROR", f"Monitoring of {identity} skipped: {e}", component=identity)
                return True
            if not container:
                db.log_event(
                    "ERROR",
                    f"Monitoring of {identity} not possible. App does not exist. Forcing stopping of monitoring",
                    component=identity,
                )
                self.stop_monitoring(identity, delete_data=True)
                return False

            with entry.lock:
                entry.run_count += 1
                long_term = entry.run_count % LONG_TERM_EVERY == 0
            try:
                data = self.collector.sample(identity, include_inspect=long_term)
            except ContainerNotFound as e:
                db.log_event("ERROR", f"Monitoring of {identity} stopped, container vanished: {e}", component=identity)
                self.stop_monitoring(identity, delete_data=True)
                return False
            except RuntimeUnavailable as e:
                db.log_event("ERROR", f"Sampling of {identity} skipped: {e}", component=identity)
                return True

            now = self._now_ms()
            sample = {"timestamp": now, "data": data}
            with entry.lock:
                if long_term:
                    entry.stats_store.append(sample)
                    entry.stats_store = [s for s in entry.stats_store if now - s["timestamp"] <= RETENTION_MS]
                    size_mb = len(json.dumps(entry.stats_store, default=str).encode()) / (1024 * 1024)
                    db.log_event("INFO", f"Size of stats for {identity}: {size_mb:.2f} MB", component=identity)
                entry.last_hour_store.append(sample)
                entry.last_hour_store = [s for s in entry.last_hour_store if now - s["timestamp"] <= LAST_HOUR_MS]
        except Exception as e:
            db.log_event("ERROR", f"Monitoring tick for {identity} failed: {type(e).__name__}: {e}", component=identity)
        return True

    def restart(self, identity: str) -> str:
        """Restart a container, pausing its monitoring around the restart.

        Accepts either an identity ("web_app1") or a runtime name ("fluxweb_app1").
        Runtime failures propagate to the caller.
        """
        key = self._key_for(identity)
        entry = self.entries.get(key) if key else None
        was_monitored = bool(entry and entry.task and entry.task.active)
        if was_monitored:
            self.stop_monitoring(key, delete_data=False)
        try:
            return self.gateway.restart(identity)
        finally:
            if was_monitored:
                self.start_monitoring(key)

    def _key_for(self, identity: str) -> str | None:
        if identity in self.entries:
            return identity
        for key in list(self.entries):
            if app_identifier(key) == identity:
                return key
        return None

    def snapshot(self, identity: str) -> dict[str, list[dict[str, Any]]] | None:
        entry = self.entries.get(identity)
        if entry is None:
            return None
        now = self._now_ms()
        with entry.lock:
            entry.stats_store = [s for s in entry.stats_store if now - s["timestamp"] <= RETENTION_MS]
            entry.last_hour_store = [s for s in entry.last_hour_store if now - s["timestamp"] <= LAST_HOUR_MS]
            return {"stats_store": list(entry.stats_store), "last_hour_store": list(entry.last_hour_store)}

    def monitored(self) -> list[str]:
        with self.lock:
            return sorted(self.entries)

    def active_tasks(self, identity: str) -> int:
        entry = self.entries.get(identity)
        if entry is None or entry.task is None:
            return 0
        return 1 if entry.task.active else 0

    def shutdown(self) -> None:
        for identity in self.monitored():
            self.stop_monitoring(identity, delete_data=False)
