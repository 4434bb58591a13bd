from __future__ import annotations

import json
import os
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone

from .components import Component, WorkloadSpec
from .settings import settings


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _resolve_db_path() -> str:
    """Return a file path usable by sqlite.

    If the configured path is a directory (Docker creates one for a missing
    bind-mounted file), the DB file is placed inside it.
    """

    p = os.path.abspath(settings.db_path)

    if os.path.isdir(p):
        p = os.path.join(p, "nodekeeper.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


def connect() -> sqlite3.Connection:
    conn = sqlite3.connect(_resolve_db_path(), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def init_db() -> None:
    """Create tables if they do not exist."""
    with connect() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS workloads (
              name TEXT PRIMARY KEY,
              version INTEGER NOT NULL,
              owner TEXT,
              components TEXT NOT NULL, -- json list of component names
              created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              level TEXT NOT NULL,
              workload TEXT,
              component TEXT,
              message TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            """
        )


def log_event(level: str, message: str, workload: str | None = None, component: str | None = None) -> None:
    with connect() as conn:
        conn.execute(
            "INSERT INTO events (ts, level, workload, component, message) VALUES (?, ?, ?, ?, ?)",
            (utc_now(), level.upper(), workload, component, message),
        )


@dataclass(frozen=True)
class EventRow:
    id: int
    ts: str
    level: str
    workload: str | None
    component: str | None
    message: str


def list_events(limit: int = 50, level: str | None = None) -> list[EventRow]:
    with connect() as conn:
        if level:
            rows = conn.execute(
                "SELECT * FROM events WHERE level=? ORDER BY id DESC LIMIT ?", (level.upper(), int(limit))
            ).fetchall()
        else:
            rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (int(limit),)).fetchall()
        return [EventRow(**dict(r)) for r in rows]


def _row_to_spec(row: sqlite3.Row) -> WorkloadSpec:
    names = json.loads(row["components"])
    return WorkloadSpec(
        name=row["name"],
        version=int(row["version"]),
        components=[Component(name=n) for n in names],
        owner=row["owner"],
    )


class WorkloadStore:
    """Installed workload specs, the node's record of what SHOULD be running."""

    def get_spec(self, name: str) -> WorkloadSpec | None:
        with connect() as conn:
            row = conn.execute("SELECT * FROM workloads WHERE name=?", (name,)).fetchone()
            return _row_to_spec(row) if row else None

    def list_specs(self) -> list[WorkloadSpec]:
        with connect() as conn:
            rows = conn.execute("SELECT * FROM workloads ORDER BY name").fetchall()
            return [_row_to_spec(r) for r in rows]

    def upsert_spec(self, spec: WorkloadSpec) -> WorkloadSpec:
        with connect() as conn:
            conn.execute(
                """
                INSERT INTO workloads (name, version, owner, components, created_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(name) DO UPDATE SET
                  version=excluded.version,
                  owner=excluded.owner,
                  components=excluded.components
                """,
                (
                    spec.name,
                    int(spec.version),
                    spec.owner,
                    json.dumps([c.name for c in spec.components]),
                    utc_now(),
                ),
            )
        return spec

    def delete_spec(self, name: str) -> None:
        with connect() as conn:
            conn.execute("DELETE FROM workloads WHERE name=?", (name,))
