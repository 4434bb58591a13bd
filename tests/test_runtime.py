import threading

import pytest

from nodekeeper.components import WorkloadSpec, resolve
from nodekeeper.docker_ops import RuntimeUnavailable
from nodekeeper.runtime import LAST_HOUR_MS, RETENTION_MS, MonitoringRegistry, RepeatingTask
from nodekeeper.stats import StatsCollector


def _registry(gateway, clock, fake_tasks, entries=None):
    collector = StatsCollector(gateway, lambda path, mount_type: 0)
    return MonitoringRegistry(gateway, collector, entries if entries is not None else {}, interval_s=60, clock=clock, task_factory=fake_tasks)


def test_start_twice_leaves_one_active_task(gateway, clock, fake_tasks):
    gateway.add("web_app1")
    reg = _registry(gateway, clock, fake_tasks)

    reg.start_monitoring("web_app1")
    reg.start_monitoring("web_app1")

    assert len(fake_tasks.created) == 2
    assert fake_tasks.created[0].cancelled is True
    assert fake_tasks.created[1].active is True
    assert reg.active_tasks("web_app1") == 1
    assert fake_tasks.created[1].interval_s == 60


def test_start_requires_identity(gateway, clock, fake_tasks):
    reg = _registry(gateway, clock, fake_tasks)
    with pytest.raises(ValueError):
        reg.start_monitoring("")


def test_every_third_tick_goes_to_long_term_store(gateway, clock, fake_tasks):
    gateway.add("web_app1", nano_cpus=1_000_000_000)
    reg = _registry(gateway, clock, fake_tasks)
    reg.start_monitoring("web_app1")

    for _ in range(6):
        clock.advance(60)
        assert reg.tick("web_app1") is True

    snap = reg.snapshot("web_app1")
    assert len(snap["last_hour_store"]) == 6
    assert len(snap["stats_store"]) == 2
    assert all(s["data"]["nano_cpus"] == 1_000_000_000 for s in snap["stats_store"])
    assert "nano_cpus" not in snap["last_hour_store"][0]["data"]


def test_retention_bounds_hold(gateway, clock, fake_tasks):
    gateway.add("web_app1")
    reg = _registry(gateway, clock, fake_tasks)
    reg.start_monitoring("web_app1")

    # 8 days of ticks, one every 20 minutes
    for _ in range(8 * 24 * 3):
        clock.advance(20 * 60)
        reg.tick("web_app1")

    now = int(clock() * 1000)
    snap = reg.snapshot("web_app1")
    assert snap["stats_store"]
    assert all(now - s["timestamp"] <= RETENTION_MS for s in snap["stats_store"])
    assert all(now - s["timestamp"] <= LAST_HOUR_MS for s in snap["last_hour_store"])
    assert len(snap["last_hour_store"]) == 4
    timestamps = [s["timestamp"] for s in snap["stats_store"]]
    assert timestamps == sorted(timestamps)


def test_vanished_container_forces_stop_with_deletion(gateway, clock, fake_tasks):
    gateway.add("web_app1")
    reg = _registry(gateway, clock, fake_tasks)
    reg.start_monitoring("web_app1")
    reg.tick("web_app1")

    gateway.containers.clear()
    assert reg.tick("web_app1") is False
    assert "web_app1" not in reg.entries
    assert fake_tasks.created[0].cancelled is True


def test_tick_after_external_removal_self_cancels(gateway, clock, fake_tasks):
    gateway.add("web_app1")
    reg = _registry(gateway, clock, fake_tasks)
    reg.start_monitoring("web_app1")
    del reg.entries["web_app1"]
    assert reg.tick("web_app1") is False
    assert gateway.stats_calls == 0


def test_stop_keeps_or_deletes_history(gateway, clock, fake_tasks):
    gateway.add("web_app1")
    reg = _registry(gateway, clock, fake_tasks)
    reg.start_monitoring("web_app1")
    reg.tick("web_app1")

    reg.stop_monitoring("web_app1", delete_data=False)
    assert reg.active_tasks("web_app1") == 0
    assert len(reg.snapshot("web_app1")["last_hour_store"]) == 1

    # resuming keeps what was collected so far
    reg.start_monitoring("web_app1")
    assert len(reg.snapshot("web_app1")["last_hour_store"]) == 1
    assert reg.entries["web_app1"].run_count == 0

    reg.stop_monitoring("web_app1", delete_data=True)
    assert reg.snapshot("web_app1") is None


def test_restart_pauses_and_resumes_monitoring(gateway, clock, fake_tasks):
    gateway.add("web_app1")
    reg = _registry(gateway, clock, fake_tasks)
    reg.start_monitoring("web_app1")

    msg = reg.restart("fluxweb_app1")

    assert gateway.restarted == ["fluxweb_app1"]
    assert "restarted" in msg
    assert fake_tasks.created[0].cancelled is True
    assert reg.active_tasks("web_app1") == 1


def test_restart_failure_propagates_and_monitoring_resumes(gateway, clock, fake_tasks):
    name = gateway.add("web_app1")
    gateway.fail_restart.add(name)
    reg = _registry(gateway, clock, fake_tasks)
    reg.start_monitoring("web_app1")

    with pytest.raises(RuntimeError):
        reg.restart("web_app1")
    assert reg.active_tasks("web_app1") == 1


def test_restart_of_unmonitored_container_does_not_start_monitoring(gateway, clock, fake_tasks):
    gateway.add("web_app1")
    reg = _registry(gateway, clock, fake_tasks)
    reg.restart("fluxweb_app1")
    assert reg.monitored() == []


def test_end_to_end_single_container_workload(gateway, clock, fake_tasks):
    spec = WorkloadSpec(name="polkadot", version=2)
    identities = resolve(spec)
    assert identities == ["polkadot"]
    gateway.add("polkadot")
    entries = {}
    reg = _registry(gateway, clock, fake_tasks, entries)

    reg.start_monitoring("polkadot")
    assert list(entries) == ["polkadot"]

    clock.advance(60)
    reg.tick("polkadot")
    assert len(entries["polkadot"].last_hour_store) == 1

    reg.stop_monitoring("polkadot", True)
    assert entries == {}


def test_repeating_task_runs_until_cancelled():
    calls = []
    fired = threading.Event()

    def fn():
        calls.append(1)
        if len(calls) >= 2:
            fired.set()

    task = RepeatingTask(0.01, fn, "t")
    task.start()
    assert fired.wait(2.0)
    task.cancel()
    assert task.active is False


def test_repeating_task_stops_when_fn_returns_false():
    done = threading.Event()

    def fn():
        done.set()
        return False

    task = RepeatingTask(0.01, fn, "t")
    task.start()
    assert done.wait(2.0)
    task._thr.join(2.0)
    assert task.active is False


def test_kept_history_ages_out_after_stop(gateway, clock, fake_tasks):
    gateway.add("web_app1")
    reg = _registry(gateway, clock, fake_tasks)
    reg.start_monitoring("web_app1")
    for _ in range(3):
        clock.advance(60)
        reg.tick("web_app1")
    reg.stop_monitoring("web_app1", delete_data=False)

    clock.advance(30 * 60)
    snap = reg.snapshot("web_app1")
    assert len(snap["last_hour_store"]) == 3
    assert len(snap["stats_store"]) == 1

    clock.advance(8 * 24 * 3600)
    snap = reg.snapshot("web_app1")
    assert snap == {"stats_store": [], "last_hour_store": []}
    assert "web_app1" in reg.monitored()


def test_daemon_error_while_sampling_keeps_history(gateway, clock, fake_tasks):
    gateway.add("web_app1")
    reg = _registry(gateway, clock, fake_tasks)
    reg.start_monitoring("web_app1")
    clock.advance(60)
    reg.tick("web_app1")

    gateway.stats_error = RuntimeUnavailable("Stats for fluxweb_app1 failed: 500 Server Error")
    clock.advance(60)
    assert reg.tick("web_app1") is True
    assert reg.active_tasks("web_app1") == 1
    assert len(reg.snapshot("web_app1")["last_hour_store"]) == 1

    gateway.stats_error = None
    clock.advance(60)
    reg.tick("web_app1")
    assert len(reg.snapshot("web_app1")["last_hour_store"]) == 2
