from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from threading import Lock
from typing import Any, Callable, Protocol

import psutil

from . import db
from .alerts import recovery_alert
from .mounts import MountRecoveryDetector
from .runtime import MonitoringRegistry
from .settings import settings


@dataclass
class RestartResult:
    restarted: list[str] = field(default_factory=list)
    failed: list[dict[str, str]] = field(default_factory=list)


@dataclass
class OsRestartRecovery:
    os_restart_detected: bool = False
    containers_found: int = 0
    restart_results: RestartResult | None = None


@dataclass
class MountDriftRecovery:
    containers_checked: int = 0
    containers_needing_restart: int = 0
    restart_results: RestartResult | None = None


@dataclass
class BootRecovery:
    os_restart: OsRestartRecovery
    mount_drift: MountDriftRecovery | None = None
    mount_drift_skipped: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ContainerTarget:
    id: str
    name: str


class ListingGateway(Protocol):
    def list_containers(self, all: bool = False) -> list[dict[str, Any]]: ...


def os_uptime_s() -> float:
    return time.time() - psutil.boot_time()


def process_uptime_s() -> float:
    return time.time() - psutil.Process().create_time()


class RestartRecoveryOrchestrator:
    """Boot-time and steady-state restart recovery.

    Both entry points share one sequential, rate-limited restart loop that goes
    through the monitoring registry. Neither entry point raises. Callers must not
    run the two concurrently against the same containers; run_boot_recovery
    serialises them for the boot path.
    """

    def __init__(
        self,
        registry: MonitoringRegistry,
        gateway: ListingGateway,
        detector: MountRecoveryDetector,
        restart_delay_s: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
        os_uptime: Callable[[], float] = os_uptime_s,
        process_uptime: Callable[[], float] = process_uptime_s,
    ) -> None:
        self.registry = registry
        self.gateway = gateway
        self.detector = detector
        self.restart_delay_s = settings.restart_delay_s if restart_delay_s is None else restart_delay_s
        self.sleep = sleep
        self.os_uptime = os_uptime
        self.process_uptime = process_uptime
        self._boot_lock = Lock()

    def is_os_recently_restarted(self, os_uptime: float | None = None, process_uptime: float | None = None) -> bool:
        """True when the OS and this process look like they came up in the same boot."""
        try:
            system = self.os_uptime() if os_uptime is None else os_uptime
            own = self.process_uptime() if process_uptime is None else process_uptime
            if system < settings.os_restart_window_s and abs(system - own) < settings.uptime_tolerance_s:
                db.log_event("INFO", f"OS restart detected. System uptime: {system:.0f}s, process uptime: {own:.0f}s")
                return True
            return False
        except Exception as e:
            db.log_event("ERROR", f"Error checking OS restart: {type(e).__name__}: {e}")
            return False

    def running_node_containers(self) -> list[ContainerTarget]:
        """Running containers whose name carries a node-managed prefix."""
        try:
            containers = self.gateway.list_containers(all=False) or []
        except Exception as e:
            db.log_event("ERROR", f"Error listing running containers: {type(e).__name__}: {e}")
            return []
        out: list[ContainerTarget] = []
        for c in containers:
            names = c.get("Names") or []
            name = names[0].lstrip("/") if names else ""
            if name and name.startswith(tuple(settings.container_prefixes)):
                out.append(ContainerTarget(id=c.get("Id", ""), name=name))
        db.log_event("INFO", f"Found {len(out)} running node containers")
        return out

    def restart_containers(self, targets: list[ContainerTarget]) -> RestartResult:
        """Restart targets one at a time, in order, pausing between restarts."""
        result = RestartResult()
        if not targets:
            db.log_event("INFO", "No containers to restart")
            return result

        db.log_event("INFO", f"Attempting to restart {len(targets)} containers with proper mounts")
        for i, target in enumerate(targets):
            if i > 0:
                self.sleep(self.restart_delay_s)
            try:
                self.registry.restart(target.name)
                result.restarted.append(target.name)
                db.log_event("INFO", f"Successfully restarted {target.name}", component=target.name)
            except Exception as e:
                db.log_event("ERROR", f"Failed to restart container {target.name}: {e}", component=target.name)
                result.failed.append({"name": target.name, "error": str(e)})
        return result

    def recover_from_os_restart(self) -> OsRestartRecovery:
        summary = OsRestartRecovery()
        try:
            db.log_event("INFO", "Starting post-restart recovery check")
            summary.os_restart_detected = self.is_os_recently_restarted()
            if not summary.os_restart_detected:
                db.log_event("INFO", "No OS restart detected, skipping recovery")
                return summary

            # No way to know which mounts raced the auto-start, so restart all of them once.
            targets = self.running_node_containers()
            summary.containers_found = len(targets)
            if not targets:
                db.log_event("INFO", "No running containers found, recovery complete")
                return summary

            summary.restart_results = self.restart_containers(targets)
            self._report("post-restart recovery", summary.restart_results)
        except Exception as e:
            db.log_event("ERROR", f"Critical error during post-restart recovery: {type(e).__name__}: {e}")
        return summary

    def recover_from_mount_drift(self) -> MountDriftRecovery:
        summary = MountDriftRecovery()
        try:
            db.log_event("INFO", "Starting mount timing recovery check")
            targets = self.running_node_containers()
            summary.containers_checked = len(targets)

            flagged: list[ContainerTarget] = []
            for target in targets:
                if self.detector.started_before_mounts(target.name):
                    db.log_event("INFO", f"Container {target.name} needs restart (started before mounts)", component=target.name)
                    flagged.append(target)
            summary.containers_needing_restart = len(flagged)
            if not flagged:
                db.log_event("INFO", "No containers need restart, recovery complete")
                return summary

            summary.restart_results = self.restart_containers(flagged)
            self._report("mount recovery", summary.restart_results)
        except Exception as e:
            db.log_event("ERROR", f"Critical error during mount recovery: {type(e).__name__}: {e}")
        return summary

    def run_boot_recovery(self) -> BootRecovery:
        """OS-restart recovery first; mount-drift recovery unless everything was just restarted."""
        with self._boot_lock:
            os_pass = self.recover_from_os_restart()
            results = os_pass.restart_results
            if os_pass.os_restart_detected and results is not None and not results.failed:
                db.log_event("INFO", "All node containers restarted after OS restart, skipping mount recovery")
                return BootRecovery(os_restart=os_pass, mount_drift_skipped=True)
            return BootRecovery(os_restart=os_pass, mount_drift=self.recover_from_mount_drift())

    def _report(self, pass_name: str, results: RestartResult) -> None:
        db.log_event("INFO", f"{pass_name} complete. Restarted: {len(results.restarted)}, Failed: {len(results.failed)}")
        recovery_alert(pass_name, results.restarted, results.failed)
