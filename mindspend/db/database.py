"""SQLite database connection management and schema initialization.

Provides a single-file database at ~/.mindspend/mindspend.db.
Every public function that needs a connection should call get_connection(),
use it, and close it in a finally block.

The same file hosts both persistence backends: the account-keyed tables
(accounts, user_profiles, purchases) and the per-device key-value table
(device_storage) used by guest sessions.
"""

import os
import sqlite3
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path

_db_path_override: ContextVar["Path | None"] = ContextVar("_db_path_override", default=None)


@contextmanager
def override_db_path(path: "Path"):
    """Context manager to override the DB path for the current task/thread.

    Example:
        with override_db_path(tmp_path / "scratch.db"):
            init_db()
            store.create(record)
    """
    token = _db_path_override.set(path)
    try:
        yield
    finally:
        _db_path_override.reset(token)


def get_db_path() -> Path:
    """Return the active DB path.

    Priority order:
    1. ContextVar override
    2. DB_PATH environment variable (used by Docker / local dev / tests)
    3. Default ~/.mindspend/mindspend.db
    """
    override = _db_path_override.get()
    if override is not None:
        return override
    env_url = os.environ.get("DB_PATH")
    if env_url:
        p = Path(env_url)
        p.parent.mkdir(parents=True, exist_ok=True)
        return p
    db_dir = Path.home() / ".mindspend"
    db_dir.mkdir(exist_ok=True)
    return db_dir / "mindspend.db"


def get_connection(db_path: Path = None) -> sqlite3.Connection:
    """Return a new SQLite connection with Row factory and foreign keys enabled.

    Callers are responsible for closing the connection when done.
    """
    if db_path is None:
        db_path = get_db_path()
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_db(db_path: Path = None) -> None:
    """Create all tables if they don't already exist.

    Called once at application startup from main.py.
    Tables: accounts, user_profiles, purchases, device_storage.
    """
    conn = get_connection(db_path)
    try:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS accounts (
                id             INTEGER PRIMARY KEY AUTOINCREMENT,
                email          TEXT NOT NULL UNIQUE,
                display_name   TEXT,
                photo_url      TEXT,
                password_hash  TEXT NOT NULL,
                email_verified INTEGER DEFAULT 0,
                provider       TEXT DEFAULT 'password',
                created_at     TEXT DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS user_profiles (
                account_id   INTEGER PRIMARY KEY REFERENCES accounts(id) ON DELETE CASCADE,
                email        TEXT,
                display_name TEXT,
                photo_url    TEXT,
                profile      TEXT,
                updated_at   TEXT
            );

            CREATE TABLE IF NOT EXISTS purchases (
                id                TEXT PRIMARY KEY,
                account_id        INTEGER NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
                price             REAL NOT NULL,
                label             TEXT NOT NULL,
                category          TEXT DEFAULT 'other',
                timestamp         TEXT NOT NULL,
                profile           TEXT NOT NULL,
                calculations      TEXT NOT NULL,
                decision          TEXT DEFAULT 'undecided',
                time_of_day       INTEGER,
                regret            INTEGER,
                regret_checked_at TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_purchases_account_ts
                ON purchases (account_id, timestamp DESC);

            CREATE TABLE IF NOT EXISTS device_storage (
                device_id TEXT NOT NULL,
                key       TEXT NOT NULL,
                value     TEXT,
                PRIMARY KEY (device_id, key)
            );
        """)
        conn.commit()
    finally:
        conn.close()
