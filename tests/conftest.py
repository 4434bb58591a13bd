import os
import sys
from datetime import datetime, timezone

import pytest

# Ensure project root is importable (so `import main` / `import cli` work without installing)
_project_root = os.path.dirname(os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from nodekeeper import db  # noqa: E402
from nodekeeper.components import app_identifier  # noqa: E402
from nodekeeper.docker_ops import ContainerNotFound, ContainerView, MountRef, RuntimeUnavailable  # noqa: E402
from nodekeeper.settings import Settings  # noqa: E402


@pytest.fixture(autouse=True)
def isolated_db(tmp_path, monkeypatch):
    """Every test gets its own sqlite file for the event journal and workload specs."""
    monkeypatch.setattr(db, "settings", Settings(db_path=str(tmp_path / "test.db")))
    db.init_db()
    return tmp_path / "test.db"


class FakeGateway:
    """In-memory stand-in for the container runtime.

    containers maps runtime names ("fluxweb_app1") to dicts with running/started_at/mounts.
    """

    def __init__(self):
        self.containers = {}
        self.fail_restart = set()
        self.restarted = []
        self.stats_calls = 0
        self.stats_error = None
        self.inspect_calls = []

    def add(self, identity, running=True, started_at=None, mounts=None, nano_cpus=0, size_root_fs=0):
        name = app_identifier(identity)
        self.containers[name] = {
            "Id": f"id-{name}",
            "running": running,
            "started_at": started_at or datetime(2024, 1, 1, tzinfo=timezone.utc),
            "mounts": [MountRef(source=s, type=t) for s, t in (mounts or [])],
            "nano_cpus": nano_cpus,
            "size_root_fs": size_root_fs,
        }
        return name

    def list_containers(self, all=False):
        out = []
        for name, c in self.containers.items():
            if all or c["running"]:
                out.append({"Id": c["Id"], "Names": [f"/{name}"]})
        return out

    def get_container_only(self, identity):
        name = app_identifier(identity)
        if name not in self.containers:
            return None
        return {"Id": self.containers[name]["Id"], "Names": [f"/{name}"]}

    def _get(self, identity):
        name = app_identifier(identity)
        if name not in self.containers:
            raise ContainerNotFound(f"Container {name} not found")
        return name, self.containers[name]

    def inspect(self, identity, size=False):
        self.inspect_calls.append((identity, size))
        name, c = self._get(identity)
        return ContainerView(
            id=c["Id"],
            name=name,
            running=c["running"],
            started_at=c["started_at"],
            mounts=list(c["mounts"]),
            nano_cpus=c["nano_cpus"],
            size_root_fs=c["size_root_fs"],
        )

    def stats(self, identity):
        self._get(identity)
        self.stats_calls += 1
        if self.stats_error is not None:
            raise self.stats_error
        return {"cpu_stats": {"cpu_usage": {"total_usage": 100}}, "memory_stats": {"usage": 2048}}

    def restart(self, identity):
        name, _ = self._get(identity)
        if name in self.fail_restart:
            raise RuntimeUnavailable(f"Restarting {name} failed: daemon error")
        self.restarted.append(name)
        return f"App {identity} successfully restarted."


class FakeTask:
    """RepeatingTask double that never starts a thread."""

    created = []

    def __init__(self, interval_s, fn, name=""):
        self.interval_s = interval_s
        self.fn = fn
        self.name = name
        self.started = False
        self.cancelled = False
        FakeTask.created.append(self)

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    @property
    def active(self):
        return self.started and not self.cancelled


class FakeClock:
    def __init__(self, start=1_700_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_tasks():
    FakeTask.created = []
    return FakeTask
