"""SQLite-backed key/value persistence for quota state and settings."""

import sqlite3
from typing import Optional

from screentime.core.errors import PersistenceError


class QuotaStore:
    """Read/write interface to the local SQLite database.

    Everything is a string value under a string key.  Per-day keys carry an
    ISO date suffix (``remaining_time_2025-01-15``); settings use static
    keys (``passcode``, ``limit_monday``).  Parsing and formatting of the
    values is the caller's job.

    Every ``sqlite3.Error`` is re-raised as :class:`PersistenceError` so the
    command processor can retry it.
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None

    # ------------------------------------------------------------------
    # Connection helpers
    # ------------------------------------------------------------------

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            try:
                self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            except sqlite3.Error as exc:
                raise PersistenceError(f"Cannot open {self.db_path}: {exc}") from exc
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # ------------------------------------------------------------------
    # Schema initialisation
    # ------------------------------------------------------------------

    def init_db(self) -> None:
        """Create the settings table if it doesn't already exist."""
        conn = self._get_conn()
        try:
            conn.executescript(
                """\
                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );
                """
            )
            conn.commit()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Cannot initialise schema: {exc}") from exc

    def seed_defaults(self, defaults: dict[str, str]) -> None:
        """Insert each default whose key is not present yet."""
        conn = self._get_conn()
        try:
            with conn:
                conn.executemany(
                    "INSERT OR IGNORE INTO settings (key, value) VALUES (?, ?)",
                    list(defaults.items()),
                )
        except sqlite3.Error as exc:
            raise PersistenceError(f"Cannot seed defaults: {exc}") from exc

    # ------------------------------------------------------------------
    # Key/value operations
    # ------------------------------------------------------------------

    def get(self, key: str) -> Optional[str]:
        """Return the value stored under *key*, or ``None``."""
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT value FROM settings WHERE key = ?", (key,)
            ).fetchone()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Cannot read {key}: {exc}") from exc
        if row is None:
            return None
        return row["value"]

    def set(self, key: str, value: str) -> None:
        self.set_many({key: value})

    def set_many(self, items: dict[str, str]) -> None:
        """Write all *items* in one transaction; nothing is written on failure."""
        if not items:
            return
        conn = self._get_conn()
        try:
            with conn:
                conn.executemany(
                    "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)",
                    list(items.items()),
                )
        except sqlite3.Error as exc:
            raise PersistenceError(f"Cannot write {len(items)} key(s): {exc}") from exc

    def get_many(self, keys: list[str]) -> dict[str, str]:
        """Return the stored subset of *keys*."""
        result: dict[str, str] = {}
        for key in keys:
            value = self.get(key)
            if value is not None:
                result[key] = value
        return result

    def keys_with_prefix(self, prefix: str) -> list[str]:
        """Return all keys starting with *prefix*, sorted."""
        conn = self._get_conn()
        escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        try:
            rows = conn.execute(
                "SELECT key FROM settings WHERE key LIKE ? ESCAPE '\\' ORDER BY key",
                (escaped + "%",),
            ).fetchall()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Cannot list keys for {prefix}: {exc}") from exc
        return [r["key"] for r in rows]

    def delete_keys(self, keys: list[str]) -> None:
        if not keys:
            return
        conn = self._get_conn()
        try:
            with conn:
                conn.executemany("DELETE FROM settings WHERE key = ?", [(k,) for k in keys])
        except sqlite3.Error as exc:
            raise PersistenceError(f"Cannot delete {len(keys)} key(s): {exc}") from exc
