from __future__ import annotations

import time
from typing import Any, Callable, Protocol

from . import db
from .api_models import create_data_message, create_error_message, create_success_message, err_unauthorized_message
from .components import WorkloadSpec, main_workload_name, resolve
from .runtime import MonitoringRegistry
from .verification import ADMIN_OR_TEAM, OWNER_OR_ABOVE, Verifier


DAY_MS = 24 * 60 * 60 * 1000
# Beyond a day of history only every Nth long-term sample is returned.
DOWNSAMPLE_EVERY = 20

Respond = Callable[[dict[str, Any]], Any]


class InstalledSpecs(Protocol):
    def get_spec(self, name: str) -> WorkloadSpec | None: ...

    def list_specs(self) -> list[WorkloadSpec]: ...


class NotInstalled(LookupError):
    pass


def _reply(envelope: dict[str, Any], respond: Respond | None) -> Any:
    return respond(envelope) if respond else envelope


def _error(e: Exception) -> dict[str, Any]:
    return create_error_message(str(e) or None, type(e).__name__, getattr(e, "code", None))


class MonitoringOrchestrator:
    """Maps start/stop-monitoring requests onto the registry.

    Authorization is delegated to the injected verifier. Every *_api method
    returns a success/error envelope, handed to respond when one is given.
    """

    def __init__(self, registry: MonitoringRegistry, specs: InstalledSpecs, verifier: Verifier) -> None:
        self.registry = registry
        self.specs = specs
        self.verifier = verifier

    # ----- internal callers -----

    def start_monitoring_of_workloads(self, specs: list[WorkloadSpec] | None = None) -> list[str]:
        started: list[str] = []
        try:
            for spec in self.specs.list_specs() if specs is None else specs:
                for identity in resolve(spec):
                    self.registry.start_monitoring(identity)
                    started.append(identity)
        except Exception as e:
            db.log_event("ERROR", f"Starting monitoring failed: {type(e).__name__}: {e}")
        return started

    def stop_monitoring_of_workloads(self, specs: list[WorkloadSpec] | None = None, delete_data: bool = False) -> list[str]:
        stopped: list[str] = []
        try:
            for spec in self.specs.list_specs() if specs is None else specs:
                for identity in resolve(spec):
                    self.registry.stop_monitoring(identity, delete_data)
                    stopped.append(identity)
        except Exception as e:
            db.log_event("ERROR", f"Stopping monitoring failed: {type(e).__name__}: {e}")
        return stopped

    def get_monitoring_snapshot(self, identity: str) -> dict[str, list[dict[str, Any]]] | None:
        return self.registry.snapshot(identity)

    def _installed(self, name: str) -> WorkloadSpec:
        spec = self.specs.get_spec(name)
        if spec is None:
            raise NotInstalled(f"Application {name} is not installed")
        return spec

    # ----- API -----

    def start_monitoring_api(self, request: object, workload: str | None = None, respond: Respond | None = None) -> Any:
        try:
            if not workload:
                if not self.verifier.verify(ADMIN_OR_TEAM, request):
                    return _reply(err_unauthorized_message(), respond)
                self.stop_monitoring_of_workloads(None, False)
                self.start_monitoring_of_workloads(None)
                return _reply(create_success_message("Application monitoring started for all apps"), respond)

            main_name = main_workload_name(workload)
            if not self.verifier.verify(OWNER_OR_ABOVE, request, main_name):
                return _reply(err_unauthorized_message(), respond)
            spec = self._installed(main_name)
            if main_name == workload:
                # Whole workload: stop first so no stale tasks survive a spec change.
                self.stop_monitoring_of_workloads([spec], False)
                self.start_monitoring_of_workloads([spec])
            else:
                if workload not in resolve(spec):
                    raise NotInstalled(f"Component {workload} is not part of application {spec.name}")
                self.registry.stop_monitoring(workload, False)
                self.registry.start_monitoring(workload)
            return _reply(create_success_message(f"Application monitoring started for {spec.name}"), respond)
        except Exception as e:
            db.log_event("ERROR", f"Start monitoring request failed: {type(e).__name__}: {e}", workload=workload)
            return _reply(_error(e), respond)

    def stop_monitoring_api(
        self,
        request: object,
        workload: str | None = None,
        delete_data: bool = False,
        respond: Respond | None = None,
    ) -> Any:
        try:
            if not workload:
                if not self.verifier.verify(ADMIN_OR_TEAM, request):
                    return _reply(err_unauthorized_message(), respond)
                self.stop_monitoring_of_workloads(None, delete_data)
                if delete_data:
                    msg = "Application monitoring stopped for all apps. Monitoring data deleted for all apps."
                else:
                    msg = "Application monitoring stopped for all apps. Existing monitoring data maintained."
                return _reply(create_success_message(msg), respond)

            main_name = main_workload_name(workload)
            if not self.verifier.verify(OWNER_OR_ABOVE, request, main_name):
                return _reply(err_unauthorized_message(), respond)
            if main_name == workload:
                spec = self._installed(main_name)
                self.stop_monitoring_of_workloads([spec], delete_data)
            else:
                self.registry.stop_monitoring(workload, delete_data)
            if delete_data:
                msg = f"Application monitoring stopped and monitoring data deleted for {workload}."
            else:
                msg = f"Application monitoring stopped for {workload}. Existing monitoring data maintained."
            return _reply(create_success_message(msg), respond)
        except Exception as e:
            db.log_event("ERROR", f"Stop monitoring request failed: {type(e).__name__}: {e}", workload=workload)
            return _reply(_error(e), respond)

    def monitoring_snapshot_api(
        self,
        request: object,
        identity: str | None,
        range_ms: int | str | None = None,
        respond: Respond | None = None,
        now_ms: int | None = None,
    ) -> Any:
        """Stored samples for one identity, optionally limited to the last range_ms."""
        try:
            if not identity:
                raise ValueError("No App specified")
            if range_ms is not None:
                try:
                    range_ms = int(range_ms)
                except (TypeError, ValueError):
                    range_ms = 0
                if range_ms <= 0:
                    raise ValueError("Invalid range value. It must be a positive integer or null.")

            if not self.verifier.verify(OWNER_OR_ABOVE, request, main_workload_name(identity)):
                return _reply(err_unauthorized_message(), respond)

            snap = self.get_monitoring_snapshot(identity)
            if snap is None:
                raise LookupError("No data available")
            if range_ms:
                now = int(time.time() * 1000) if now_ms is None else now_ms
                cutoff = now - range_ms
                stats = [s for s in snap["stats_store"] if s["timestamp"] >= cutoff]
                if range_ms > DAY_MS:
                    stats = [s for i, s in enumerate(stats) if i % DOWNSAMPLE_EVERY == 0 or i == len(stats) - 1]
                snap = {
                    "stats_store": stats,
                    "last_hour_store": [s for s in snap["last_hour_store"] if s["timestamp"] >= cutoff],
                }
            return _reply(create_data_message(snap), respond)
        except Exception as e:
            db.log_event("ERROR", f"Monitoring snapshot request failed: {type(e).__name__}: {e}", component=identity)
            return _reply(_error(e), respond)
