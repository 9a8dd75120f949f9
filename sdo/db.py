from __future__ import annotations

import copy
import json
import os
import sqlite3
import threading
from typing import Any, TextIO

from .runtime import DeploymentRun, utc_now


def _resolve_db_path(db_path: str) -> str:
    """Return a file path usable by sqlite.

    If the configured path is a directory (e.g. a bind mount Docker created
    as a directory), the database file is placed inside it.
    """
    p = os.path.abspath(db_path)
    if os.path.isdir(p):
        p = os.path.join(p, "sdo.db")
    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)
    return p


SCHEMA = """
CREATE TABLE IF NOT EXISTS events (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  ts TEXT NOT NULL,
  level TEXT NOT NULL,
  unit TEXT,
  service TEXT,
  message TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS runs (
  id TEXT PRIMARY KEY,
  unit TEXT NOT NULL,
  result TEXT NOT NULL,
  dry_run INTEGER NOT NULL,
  started_at TEXT NOT NULL,
  finished_at TEXT,
  elapsed_s REAL,
  summary TEXT NOT NULL -- json, statuses and reasons only
);

CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
CREATE INDEX IF NOT EXISTS idx_runs_unit ON runs(unit);
"""


class EventLog:
    """Operational event log backed by SQLite.

    ``db_path=None`` keeps events off disk; ``echo`` mirrors each event as a
    line of text (CLI progress). Callers must never pass resolved secret
    values in ``message``.
    """

    def __init__(self, db_path: str | None = None, echo: TextIO | None = None, unit: str | None = None):
        self.db_path = _resolve_db_path(db_path) if db_path else None
        self.echo = echo
        self.unit = unit
        self._lock = threading.Lock()
        if self.db_path:
            self.init_db()

    def connect(self) -> sqlite3.Connection:
        if not self.db_path:
            raise RuntimeError("event database is disabled")
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        with self.connect() as conn:
            conn.executescript(SCHEMA)

    def bind(self, unit: str) -> "EventLog":
        """Same database, echo stream and lock, tagged with a deployment unit."""
        out = copy.copy(self)
        out.unit = unit
        return out

    def log(self, level: str, message: str, service: str | None = None) -> None:
        level = level.upper()
        ts = utc_now()
        with self._lock:
            if self.echo is not None:
                who = f" [{service}]" if service else ""
                self.echo.write(f"{ts} {level:<5}{who} {message}\n")
                self.echo.flush()
            if self.db_path:
                with self.connect() as conn:
                    conn.execute(
                        "INSERT INTO events (ts, level, unit, service, message) VALUES (?, ?, ?, ?, ?)",
                        (ts, level, self.unit, service, message),
                    )

    def info(self, message: str, service: str | None = None) -> None:
        self.log("INFO", message, service)

    def warn(self, message: str, service: str | None = None) -> None:
        self.log("WARN", message, service)

    def error(self, message: str, service: str | None = None) -> None:
        self.log("ERROR", message, service)

    def record_run(self, run: DeploymentRun) -> None:
        if not self.db_path:
            return
        with self._lock, self.connect() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO runs (id, unit, result, dry_run, started_at, finished_at, elapsed_s, summary)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    run.id,
                    run.unit,
                    run.result.value,
                    int(run.dry_run),
                    run.started_at,
                    run.finished_at,
                    run.elapsed_s,
                    json.dumps(run.to_dict(), sort_keys=True),
                ),
            )

    def latest_events(self, limit: int = 100) -> list[dict[str, Any]]:
        if not self.db_path:
            return []
        with self.connect() as conn:
            rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
            return [dict(r) for r in rows]

    def latest_runs(self, unit: str | None = None, limit: int = 20) -> list[dict[str, Any]]:
        if not self.db_path:
            return []
        with self.connect() as conn:
            if unit:
                rows = conn.execute(
                    "SELECT * FROM runs WHERE unit=? ORDER BY started_at DESC LIMIT ?", (unit, limit)
                ).fetchall()
            else:
                rows = conn.execute("SELECT * FROM runs ORDER BY started_at DESC LIMIT ?", (limit,)).fetchall()
            return [dict(r) for r in rows]
