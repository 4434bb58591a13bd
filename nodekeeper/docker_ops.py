from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

import docker
from docker.errors import DockerException, NotFound

from .components import app_docker_name, app_identifier


class RuntimeUnavailable(RuntimeError):
    """The container is gone or the runtime daemon cannot be reached."""


class ContainerNotFound(RuntimeUnavailable):
    """The runtime answered and the container does not exist."""


@dataclass(frozen=True)
class MountRef:
    source: str
    type: str


@dataclass(frozen=True)
class ContainerView:
    """Read-only view of one container as the runtime reports it."""

    id: str
    name: str
    running: bool
    started_at: datetime | None
    mounts: list[MountRef]
    nano_cpus: int = 0
    size_root_fs: int = 0


# Docker reports nanosecond precision; datetime keeps microseconds.
_TS_RE = re.compile(r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:\d{2})?$")


def parse_docker_time(raw: str | None) -> datetime | None:
    if not raw:
        return None
    m = _TS_RE.match(raw.strip())
    if not m:
        raise ValueError(f"Unrecognised timestamp {raw!r}")
    base, frac, tz = m.groups()
    text = base
    if frac:
        text += "." + frac[:6].ljust(6, "0")
    if not tz or tz == "Z":
        tz = "+00:00"
    fmt = "%Y-%m-%dT%H:%M:%S.%f%z" if frac else "%Y-%m-%dT%H:%M:%S%z"
    return datetime.strptime(text + tz, fmt).astimezone(timezone.utc)


def container_view(attrs: dict[str, Any]) -> ContainerView:
    state = attrs.get("State") or {}
    host_config = attrs.get("HostConfig") or {}
    mounts = [
        MountRef(source=m.get("Source") or "", type=m.get("Type") or "")
        for m in (attrs.get("Mounts") or [])
    ]
    return ContainerView(
        id=attrs.get("Id", ""),
        name=(attrs.get("Name") or "").lstrip("/"),
        running=bool(state.get("Running")),
        started_at=parse_docker_time(state.get("StartedAt")),
        mounts=mounts,
        nano_cpus=int(host_config.get("NanoCpus") or 0),
        size_root_fs=int(attrs.get("SizeRootFs") or 0),
    )


def _client() -> docker.DockerClient:
    return docker.from_env()


class DockerGateway:
    """Container runtime operations used by monitoring and recovery.

    Identities are workload/component names ("web_app1"); they are mapped to
    runtime names ("fluxweb_app1") here. Every runtime failure surfaces as
    RuntimeUnavailable.
    """

    def __init__(self, client_factory: Callable[[], docker.DockerClient] = _client) -> None:
        self._client_factory = client_factory
        self._client: docker.DockerClient | None = None

    @property
    def api(self) -> docker.APIClient:
        if self._client is None:
            try:
                self._client = self._client_factory()
            except DockerException as e:
                raise RuntimeUnavailable(f"Docker is not available: {e}") from e
        return self._client.api

    def available(self) -> bool:
        try:
            self.api.ping()
            return True
        except (DockerException, RuntimeUnavailable):
            return False

    def list_containers(self, all: bool = False) -> list[dict[str, Any]]:
        try:
            return self.api.containers(all=all)
        except DockerException as e:
            raise RuntimeUnavailable(f"Listing containers failed: {e}") from e

    def get_container_only(self, identity: str) -> dict[str, Any] | None:
        wanted = app_docker_name(identity)
        for c in self.list_containers(all=True):
            names = c.get("Names") or []
            if (names and names[0] == wanted) or c.get("Id") == identity:
                return c
        return None

    def inspect(self, identity: str, size: bool = False) -> ContainerView:
        return container_view(self.inspect_raw(identity, size=size))

    def inspect_raw(self, identity: str, size: bool = False) -> dict[str, Any]:
        name = app_identifier(identity)
        try:
            attrs = self.api.inspect_container(name)
            if size:
                # Size is only exposed on the listing endpoint in docker-py.
                listed = self.api.containers(all=True, size=True, filters={"id": attrs["Id"]})
                if listed:
                    attrs["SizeRootFs"] = listed[0].get("SizeRootFs", 0)
            return attrs
        except NotFound as e:
            raise ContainerNotFound(f"Container {name} not found") from e
        except DockerException as e:
            raise RuntimeUnavailable(f"Inspecting {name} failed: {e}") from e

    def stats(self, identity: str) -> dict[str, Any]:
        name = app_identifier(identity)
        try:
            return self.api.stats(name, stream=False)
        except NotFound as e:
            raise ContainerNotFound(f"Container {name} not found") from e
        except DockerException as e:
            raise RuntimeUnavailable(f"Stats for {name} failed: {e}") from e

    def restart(self, identity: str) -> str:
        name = app_identifier(identity)
        try:
            self.api.restart(name)
        except NotFound as e:
            raise ContainerNotFound(f"Container {name} not found") from e
        except DockerException as e:
            raise RuntimeUnavailable(f"Restarting {name} failed: {e}") from e
        return f"App {identity} successfully restarted."
