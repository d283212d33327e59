"""
Credential persistence — one SQLite row per owner.

The row holds the full credential record as canonical JSON, so a stored
credential is reusable after a restart without a new signature.

Invariants:
    - Keyed by lower-cased owner address; at most one record per owner.
    - ``save`` replaces any previous record for the owner.
    - ``load`` raises ValueError for a record that does not parse; the
      caller decides whether to discard it.
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

from confidential_bridge.addresses import normalize_address
from confidential_bridge.canonical_json import canonical_json
from confidential_bridge.credential.model import DecryptionCredential

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS decryption_credentials (
    owner TEXT PRIMARY KEY,
    record TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


def _now_utc() -> str:
    return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


class CredentialStore:
    """SQLite storage for decryption credentials.

    Args:
        db_path: Path to SQLite database file, or ":memory:" for in-memory.

    Example:
        store = CredentialStore("credentials.db")
        store.save(credential)
        credential = store.load("0xabc...")
    """

    def __init__(self, db_path: str | Path = ":memory:") -> None:
        self._db_path = str(db_path)
        self._is_memory = self._db_path == ":memory:"

        if self._is_memory:
            self._persistent_conn = sqlite3.connect(":memory:", check_same_thread=False)
            self._persistent_conn.row_factory = sqlite3.Row
        else:
            self._persistent_conn = None

        self._init_schema()

    def _get_conn(self) -> sqlite3.Connection:
        if self._persistent_conn is not None:
            return self._persistent_conn

        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode = WAL")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._get_conn()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            if self._persistent_conn is None:
                conn.close()

    def _init_schema(self) -> None:
        with self._transaction() as conn:
            conn.executescript(_SCHEMA)

    # -----------------------------------------------------------------
    # Record operations
    # -----------------------------------------------------------------

    def save(self, credential: DecryptionCredential, *, updated_at: str | None = None) -> None:
        """Store ``credential`` as the owner's only record."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO decryption_credentials (owner, record, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(owner) DO UPDATE SET
                    record = excluded.record,
                    updated_at = excluded.updated_at
                """,
                (
                    credential.owner,
                    canonical_json(credential.to_dict()),
                    updated_at or _now_utc(),
                ),
            )

    def load_raw(self, owner: str) -> str | None:
        """The stored JSON text for ``owner``, or None."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT record FROM decryption_credentials WHERE owner = ?",
                (normalize_address(owner),),
            ).fetchone()
        return None if row is None else row["record"]

    def load(self, owner: str) -> DecryptionCredential | None:
        """Parse the stored record for ``owner``.

        Returns None if not found.

        Raises:
            ValueError: The record exists but is corrupt or belongs to
                another owner.
        """
        raw = self.load_raw(owner)
        if raw is None:
            return None
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValueError(f"credential record is not JSON: {exc.msg}") from exc
        credential = DecryptionCredential.from_dict(data)
        if credential.owner != normalize_address(owner):
            raise ValueError("credential record belongs to a different owner")
        return credential

    def put_raw(self, owner: str, record: str) -> None:
        """Store arbitrary record text (migrations and tests)."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO decryption_credentials (owner, record, updated_at)
                VALUES (?, ?, ?)
                """,
                (normalize_address(owner), record, _now_utc()),
            )

    def delete(self, owner: str) -> bool:
        """Remove the owner's record. Returns True if one existed."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM decryption_credentials WHERE owner = ?",
                (normalize_address(owner),),
            )
        return cursor.rowcount > 0

    def owners(self) -> list[str]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT owner FROM decryption_credentials ORDER BY owner"
            ).fetchall()
        return [row["owner"] for row in rows]
