from __future__ import annotations

from dataclasses import dataclass, field

from .settings import settings


# Workloads at or below this version run as a single container named after the workload.
SINGLE_CONTAINER_MAX_VERSION = 3

# Legacy workloads whose runtime names carry the "zel" prefix.
LEGACY_ZEL_NAMES = {"KadenaChainWebNode", "FoldingAtHomeB"}


@dataclass(frozen=True)
class Component:
    name: str


@dataclass(frozen=True)
class WorkloadSpec:
    name: str
    version: int
    components: list[Component] = field(default_factory=list)
    owner: str | None = None


def resolve(spec: WorkloadSpec) -> list[str]:
    """Expand a workload spec into the container identities it owns.

    v1-3: [name]; v4+: ["<component>_<name>", ...] in component order.
    """
    if spec.version <= SINGLE_CONTAINER_MAX_VERSION:
        return [spec.name]
    return [f"{c.name}_{spec.name}" for c in spec.components]


def main_workload_name(identity: str) -> str:
    """Workload name a container identity belongs to."""
    parts = identity.split("_")
    if len(parts) > 1 and parts[1]:
        return parts[1]
    return identity


def is_component_identity(identity: str) -> bool:
    return main_workload_name(identity) != identity


def app_identifier(name: str) -> str:
    """Runtime container name for an identity (without the leading slash)."""
    if name.startswith(tuple(settings.container_prefixes)):
        return name
    if name in LEGACY_ZEL_NAMES:
        return f"zel{name}"
    return f"flux{name}"


def app_docker_name(name: str) -> str:
    """Name as reported in the runtime's listing ("/fluxweb_app1")."""
    ident = app_identifier(name)
    if ident.startswith("/"):
        return ident
    return f"/{ident}"
