from __future__ import annotations

from typing import Any, Callable, Protocol

from . import db
from .commands import measure_usage as du_measure_usage
from .docker_ops import ContainerView
from .settings import settings


class StatsGateway(Protocol):
    def stats(self, identity: str) -> dict[str, Any]: ...

    def inspect(self, identity: str, size: bool = False) -> ContainerView: ...


MeasureUsage = Callable[[str, str], int]


class StatsCollector:
    """Samples one container's runtime usage and storage footprint."""

    def __init__(self, gateway: StatsGateway, measure_usage: MeasureUsage = du_measure_usage) -> None:
        self.gateway = gateway
        self.measure_usage = measure_usage

    def sample(self, identity: str, include_inspect: bool = False) -> dict[str, Any]:
        """Take one sample. Raises RuntimeUnavailable if the container is gone.

        The full inspect (configured CPU quota) is expensive, so callers only ask
        for it on some ticks.
        """
        data = dict(self.gateway.stats(identity))
        data["disk_stats"] = self.container_storage(identity)
        if include_inspect:
            data["nano_cpus"] = self.gateway.inspect(identity).nano_cpus
        return data

    def container_storage(self, identity: str) -> dict[str, Any]:
        """Bind/volume/rootfs usage in bytes. Never raises."""
        try:
            view = self.gateway.inspect(identity, size=True)
            bind_size = 0
            volume_size = 0
            for mount in view.mounts:
                if not mount.source:
                    continue
                if mount.type == "bind":
                    bind_size += self._measure(mount.source.replace(settings.appdata_marker, "", 1), "bind", identity)
                elif mount.type == "volume":
                    volume_size += self._measure(mount.source, "volume", identity)
                else:
                    db.log_event(
                        "WARN",
                        f"Unsupported mount type or source: Type: {mount.type}, Source: {mount.source}",
                        component=identity,
                    )
            rootfs = int(view.size_root_fs or 0)
            return {
                "bind": bind_size,
                "volume": volume_size,
                "rootfs": rootfs,
                "used": bind_size + volume_size + rootfs,
                "status": "success",
            }
        except Exception as e:
            db.log_event("ERROR", f"Error fetching container storage: {type(e).__name__}: {e}", component=identity)
            return {"bind": 0, "volume": 0, "rootfs": 0, "used": 0, "status": "error", "message": str(e)}

    def _measure(self, path: str, mount_type: str, identity: str) -> int:
        try:
            return max(0, int(self.measure_usage(path, mount_type) or 0))
        except Exception as e:
            db.log_event("WARN", f"Measuring {mount_type} mount {path} failed: {e}", component=identity)
            return 0
