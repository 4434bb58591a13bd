from __future__ import annotations

import threading
from dataclasses import asdict

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from nodekeeper import db
from nodekeeper.api_models import RegisterWorkloadRequest, create_data_message, create_success_message
from nodekeeper.components import Component, WorkloadSpec, resolve
from nodekeeper.docker_ops import DockerGateway
from nodekeeper.mounts import MountRecoveryDetector
from nodekeeper.orchestrator import MonitoringOrchestrator
from nodekeeper.recovery import RestartRecoveryOrchestrator
from nodekeeper.runtime import MonitoredEntry, MonitoringRegistry
from nodekeeper.stats import StatsCollector
from nodekeeper.verification import ADMIN_OR_TEAM, Caller, PrivilegeVerifier, authenticate

app = FastAPI(title="nodekeeper")
security = HTTPBasic(auto_error=False)

# --- WIRING ---
gateway = DockerGateway()
monitored: dict[str, MonitoredEntry] = {}
registry = MonitoringRegistry(gateway, StatsCollector(gateway), monitored)
workloads = db.WorkloadStore()
verifier = PrivilegeVerifier(workloads)
orchestrator = MonitoringOrchestrator(registry, workloads, verifier)
recovery = RestartRecoveryOrchestrator(registry, gateway, MountRecoveryDetector(gateway))


# --- AUTH ---
def get_caller(credentials: HTTPBasicCredentials | None = Depends(security)) -> Caller | None:
    if credentials is None:
        return None
    return authenticate(credentials.username, credentials.password)


def require_admin_or_team(caller: Caller | None = Depends(get_caller)) -> Caller:
    if not verifier.verify(ADMIN_OR_TEAM, caller):
        raise HTTPException(status_code=401, detail="Unauthorized. Access denied.", headers={"WWW-Authenticate": "Basic"})
    return caller


# --- BOOT ---
def boot_sequence() -> None:
    """Recovery first, then resume sampling for every installed workload."""
    result = recovery.run_boot_recovery()
    db.log_event("INFO", f"Boot recovery finished: {result.to_dict()}")
    started = orchestrator.start_monitoring_of_workloads()
    db.log_event("INFO", f"Monitoring started for {len(started)} containers")


@app.on_event("startup")
def startup() -> None:
    db.init_db()
    threading.Thread(target=boot_sequence, name="boot-recovery", daemon=True).start()


@app.on_event("shutdown")
def shutdown() -> None:
    registry.shutdown()


# --- MONITORING ---
@app.get("/apps/startmonitoring")
@app.get("/apps/startmonitoring/{appname}")
def start_monitoring(appname: str | None = None, caller: Caller | None = Depends(get_caller)):
    return orchestrator.start_monitoring_api(caller, appname)


@app.get("/apps/stopmonitoring")
@app.get("/apps/stopmonitoring/{appname}")
def stop_monitoring(appname: str | None = None, deletedata: bool = False, caller: Caller | None = Depends(get_caller)):
    return orchestrator.stop_monitoring_api(caller, appname, deletedata)


@app.get("/apps/monitor/{appname}")
def app_monitor(appname: str, range_ms: str | None = Query(None, alias="range"), caller: Caller | None = Depends(get_caller)):
    return orchestrator.monitoring_snapshot_api(caller, appname, range_ms)


# --- WORKLOADS ---
@app.get("/apps")
def list_apps(_: Caller = Depends(require_admin_or_team)):
    out = []
    for spec in workloads.list_specs():
        out.append(
            {
                "name": spec.name,
                "version": spec.version,
                "owner": spec.owner,
                "containers": resolve(spec),
                "monitored": [i for i in resolve(spec) if i in monitored],
            }
        )
    return create_data_message(out)


@app.post("/apps/register")
def register_app(req: RegisterWorkloadRequest, _: Caller = Depends(require_admin_or_team)):
    if req.version >= 4 and not req.components:
        raise HTTPException(status_code=422, detail="Version 4+ workloads need at least one component.")
    spec = WorkloadSpec(
        name=req.name,
        version=req.version,
        components=[Component(name=c) for c in req.components],
        owner=req.owner,
    )
    workloads.upsert_spec(spec)
    db.log_event("INFO", f"Registered workload v{spec.version}", workload=spec.name)
    return create_success_message(f"Application {spec.name} registered")


# --- RECOVERY ---
@app.post("/recovery/run")
def run_recovery(_: Caller = Depends(require_admin_or_team)):
    return create_data_message(recovery.run_boot_recovery().to_dict())


@app.post("/recovery/mounts")
def run_mount_recovery(_: Caller = Depends(require_admin_or_team)):
    return create_data_message(asdict(recovery.recover_from_mount_drift()))


# --- EVENTS ---
@app.get("/events")
def events(limit: int = 50, level: str | None = None, _: Caller = Depends(require_admin_or_team)):
    return create_data_message([asdict(e) for e in db.list_events(limit=limit, level=level)])
