from __future__ import annotations

import subprocess
from dataclasses import dataclass
from threading import Lock

from . import db


class CommandError(Exception):
    pass


@dataclass(frozen=True)
class CommandResult:
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class NamedLocks:
    """One lock per key; callers sharing a key never run concurrently."""

    def __init__(self) -> None:
        self._guard = Lock()
        self._locks: dict[str, Lock] = {}

    def get(self, key: str) -> Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = Lock()
                self._locks[key] = lock
            return lock

    def locked(self, key: str) -> bool:
        with self._guard:
            lock = self._locks.get(key)
        return bool(lock and lock.locked())


command_locks = NamedLocks()


def run_command(
    cmd: str,
    params: list[str] | None = None,
    run_as_root: bool = False,
    lock_key: str | None = None,
    timeout_s: float | None = None,
) -> CommandResult:
    """Run a binary (no shell) and capture its output.

    Commands sharing a lock_key (default: the binary name) are serialised.
    """
    if not cmd:
        raise CommandError("Command must be present")
    params = list(params or [])
    if not all(isinstance(p, str) for p in params):
        raise CommandError("Invalid params for command, must be a list of strings")

    argv = ["sudo", cmd, *params] if run_as_root else [cmd, *params]
    with command_locks.get(lock_key or cmd):
        try:
            proc = subprocess.run(argv, capture_output=True, text=True, timeout=timeout_s, check=False)
        except FileNotFoundError as e:
            raise CommandError(f"Command not found: {argv[0]}") from e
        except subprocess.TimeoutExpired as e:
            raise CommandError(f"Command timed out after {timeout_s}s: {' '.join(argv)}") from e
    return CommandResult(proc.returncode, proc.stdout, proc.stderr)


def measure_usage(path: str, mount_type: str = "bind") -> int:
    """Bytes used under path, via `du -sb`. Returns 0 when it cannot be measured."""
    try:
        res = run_command("du", ["-sb", path], run_as_root=True, lock_key=f"du:{path}", timeout_s=120)
    except CommandError as e:
        db.log_event("WARN", f"Could not measure {mount_type} mount {path}: {e}")
        return 0
    if not res.ok or not res.stdout:
        db.log_event("WARN", f"No usage info returned for {mount_type} mount {path}: {res.stderr.strip()}")
        return 0
    try:
        return int(res.stdout.split("\t")[0].strip())
    except ValueError:
        db.log_event("WARN", f"Unparseable du output for {path}: {res.stdout[:80]!r}")
        return 0
