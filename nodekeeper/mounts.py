from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Callable, Protocol

from . import db
from .commands import CommandError, run_command
from .docker_ops import ContainerView


class InspectGateway(Protocol):
    def inspect(self, identity: str, size: bool = False) -> ContainerView: ...


def birth_time(path: str) -> float | None:
    """Creation time of path from `stat -c %W`, or None when the filesystem does not record it."""
    try:
        res = run_command("stat", ["-c", "%W", path], lock_key=f"stat:{path}", timeout_s=10)
    except CommandError as e:
        db.log_event("WARN", f"Could not read creation time of {path}: {e}")
        return None
    out = res.stdout.strip()
    if not res.ok or out in ("", "0", "-"):
        return None
    try:
        return float(out)
    except ValueError:
        return None


def ready_since(st: os.stat_result, birth: float | None = None) -> datetime:
    """Creation time where known, else modification time."""
    ts = birth or getattr(st, "st_birthtime", None) or st.st_mtime
    return datetime.fromtimestamp(ts, tz=timezone.utc)


class MountRecoveryDetector:
    """Decides whether a container was started before one of its mounts existed.

    This is the post-reboot race: the runtime auto-starts containers before the
    node has prepared their host directories.
    """

    def __init__(
        self,
        gateway: InspectGateway,
        stat: Callable[[str], os.stat_result] = os.stat,
        birth: Callable[[str], float | None] = birth_time,
    ) -> None:
        self.gateway = gateway
        self.stat = stat
        self.birth = birth

    def started_before_mounts(self, identity: str) -> bool:
        """Never raises. Inspection errors give False; an unstattable mount gives True."""
        try:
            view = self.gateway.inspect(identity)
            if not view.running or not view.mounts:
                return False
            if view.started_at is None:
                return False

            for mount in view.mounts:
                if not mount.source:
                    continue
                try:
                    st = self.stat(mount.source)
                except OSError as e:
                    # A running container whose mount path is gone is just as broken.
                    db.log_event("WARN", f"Could not check mount {mount.source} for {identity}: {e}", component=identity)
                    return True

                # Directory mtime moves on every write, so it is only a last resort.
                created = ready_since(st, getattr(st, "st_birthtime", None) or self.birth(mount.source))
                if view.started_at < created:
                    db.log_event(
                        "INFO",
                        f"Container {identity} started at {view.started_at.isoformat()} "
                        f"before mount {mount.source} was created at {created.isoformat()}",
                        component=identity,
                    )
                    return True
            return False
        except Exception as e:
            db.log_event("ERROR", f"Error checking container {identity}: {type(e).__name__}: {e}", component=identity)
            return False
