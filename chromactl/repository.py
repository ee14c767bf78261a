import json
import sqlite3
from typing import Dict, Iterable, List, Tuple

from .config import DEFAULT_CONFIG, clamp_config_value
from .events import Event
from .models import FailedItem, Job, OptionSet, Result, Settings, Source, default_options


# ---------- Config ----------
def get_config(conn) -> Dict[str, str]:
    cfg = dict(DEFAULT_CONFIG)
    cur = conn.execute("SELECT key, value FROM config")
    cfg.update({r["key"]: r["value"] for r in cur.fetchall()})
    return cfg


def set_config(conn, key: str, value) -> int:
    """Store a setting, clamped into its bounds. Returns the stored value."""
    clamped = clamp_config_value(key, value)
    with conn:
        conn.execute(
            "INSERT INTO config(key,value) VALUES(?,?) "
            "ON CONFLICT(key) DO UPDATE SET value=excluded.value",
            (key, str(clamped)),
        )
    return clamped


def load_settings(conn) -> Settings:
    return Settings.from_config(get_config(conn))


# ---------- Options ----------
def load_options(conn) -> OptionSet:
    """The live option selection, carrying the current settings."""
    row = conn.execute("SELECT payload FROM options WHERE id=1").fetchone()
    opts = OptionSet.from_dict(json.loads(row["payload"])) if row else default_options()
    return opts.with_settings(load_settings(conn))


def save_options(conn, options: OptionSet):
    with conn:
        conn.execute(
            "INSERT INTO options(id, payload) VALUES(1, ?) "
            "ON CONFLICT(id) DO UPDATE SET payload=excluded.payload",
            (json.dumps(options.to_dict()),),
        )


# ---------- Snapshots ----------
def _replace_table(conn, table: str, rows: Iterable[Tuple[str, dict]]):
    conn.execute(f"DELETE FROM {table}")
    conn.executemany(
        f"INSERT INTO {table}(id, position, payload) VALUES (?, ?, ?)",
        [(rid, pos, json.dumps(payload)) for pos, (rid, payload) in enumerate(rows)],
    )


def _read_table(conn, table: str) -> List[dict]:
    cur = conn.execute(f"SELECT payload FROM {table} ORDER BY position ASC")
    return [json.loads(r["payload"]) for r in cur.fetchall()]


def save_snapshot(conn, jobs: Iterable[Job], sources: Dict[str, Source],
                  failed: Iterable[FailedItem], results: Iterable[Result],
                  events: Iterable[Event] = ()):
    """Replace the queue, sources, failures, results and event log in one transaction."""
    try:
        with conn:
            _replace_table(conn, "jobs", ((j.id, j.to_dict()) for j in jobs))
            _replace_table(conn, "sources", ((s.id, s.to_dict()) for s in sources.values()))
            _replace_table(conn, "failed", ((f.id, f.to_dict()) for f in failed))
            _replace_table(conn, "results", ((r.id, r.to_dict()) for r in results))
            _replace_table(conn, "events", ((e.id, e.to_dict()) for e in events))
    except sqlite3.Error as e:
        raise RuntimeError(f"DB error while saving workspace: {e}")


def load_state(conn) -> Tuple[List[Job], Dict[str, Source]]:
    jobs = [Job.from_dict(d) for d in _read_table(conn, "jobs")]
    sources = {}
    for d in _read_table(conn, "sources"):
        src = Source.from_dict(d)
        sources[src.id] = src
    return jobs, sources


def load_failed(conn) -> List[FailedItem]:
    return [FailedItem.from_dict(d) for d in _read_table(conn, "failed")]


def load_results(conn) -> List[Result]:
    return [Result.from_dict(d) for d in _read_table(conn, "results")]


def load_events(conn) -> List[Event]:
    return [Event.from_dict(d) for d in _read_table(conn, "events")]
