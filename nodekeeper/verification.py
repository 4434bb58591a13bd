from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Protocol

from .components import WorkloadSpec
from .settings import Settings, settings


ADMIN_OR_TEAM = "admin-or-team"
OWNER_OR_ABOVE = "owner-or-above"

ROLE_ADMIN = "admin"
ROLE_TEAM = "team"
ROLE_USER = "user"


class UnknownTier(ValueError):
    pass


@dataclass(frozen=True)
class Caller:
    username: str
    role: str = ROLE_USER


class Verifier(Protocol):
    def verify(self, tier: str, request: object, workload: str | None = None) -> bool: ...


class SpecLookup(Protocol):
    def get_spec(self, name: str) -> WorkloadSpec | None: ...


def _parse_users(entries: tuple[str, ...]) -> dict[str, tuple[str, str]]:
    users: dict[str, tuple[str, str]] = {}
    for raw in entries:
        parts = raw.split(":")
        if len(parts) < 2 or not parts[0]:
            continue
        role = parts[2] if len(parts) > 2 and parts[2] in {ROLE_TEAM, ROLE_USER} else ROLE_USER
        users[parts[0]] = (parts[1], role)
    return users


def authenticate(username: str, password: str, cfg: Settings = settings) -> Caller | None:
    """Check HTTP Basic credentials against the configured admin and API users."""
    if cfg.admin_user and cfg.admin_password:
        if secrets.compare_digest(username, cfg.admin_user) and secrets.compare_digest(password, cfg.admin_password):
            return Caller(username=username, role=ROLE_ADMIN)
    known = _parse_users(cfg.api_users).get(username)
    if known and secrets.compare_digest(password, known[0]):
        return Caller(username=username, role=known[1])
    return None


class PrivilegeVerifier:
    """admin-or-team: node admin or team member.
    owner-or-above: the workload's owner, or anyone passing admin-or-team.
    """

    def __init__(self, specs: SpecLookup) -> None:
        self.specs = specs

    def verify(self, tier: str, request: object, workload: str | None = None) -> bool:
        caller = request if isinstance(request, Caller) else getattr(request, "caller", None)
        if not isinstance(caller, Caller):
            return False
        above = caller.role in {ROLE_ADMIN, ROLE_TEAM}
        if tier == ADMIN_OR_TEAM:
            return above
        if tier == OWNER_OR_ABOVE:
            if above:
                return True
            if not workload:
                return False
            spec = self.specs.get_spec(workload)
            return bool(spec and spec.owner and secrets.compare_digest(spec.owner, caller.username))
        raise UnknownTier(f"Unknown privilege tier {tier!r}")
