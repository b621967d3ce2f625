"""SQLite inbox for replies received from the utility short code."""

from __future__ import annotations

import re
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from aurora.errors import StoreError
from aurora.models import InboundReply

SCHEMA_VERSION = 1

_BALANCE_HINT = re.compile(r"balance|bal|amount|bill", re.IGNORECASE)
_TOKEN_HINT = re.compile(r"token|units|ksh|purchase", re.IGNORECASE)


class InboxStore(ABC):
    """Read side of the inbox consumed by the response correlator."""

    @abstractmethod
    def query_latest(
        self, recipient_address: str, after: datetime, category: str | None = None
    ) -> InboundReply | None:
        """Return the newest reply for the recipient received strictly after ``after``.

        ``category`` narrows the match to replies classified as
        ``balance``, ``token`` or ``general``.
        """


class Database(InboxStore):
    """Small SQLite wrapper with explicit schema management."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self._path)
        except sqlite3.Error as exc:
            raise StoreError(f"Cannot open inbox database {self._path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            raise StoreError(f"Inbox query failed: {exc}") from exc
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create or migrate schema."""

        with self._connect() as conn:
            conn.execute("CREATE TABLE IF NOT EXISTS schema_version (version INTEGER NOT NULL)")
            row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
            if row is None:
                self._create_schema(conn)
                conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
            elif row["version"] != SCHEMA_VERSION:
                raise StoreError(
                    f"Unsupported schema version {row['version']} (expected {SCHEMA_VERSION})"
                )

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS sms_responses (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                recipient_address TEXT NOT NULL,
                sender_address TEXT NOT NULL,
                message TEXT NOT NULL,
                category TEXT NOT NULL CHECK (category IN ('balance', 'token', 'general')),
                received_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_sms_responses_recipient
                ON sms_responses(recipient_address, received_at DESC);
            """
        )

    def record_reply(self, reply: InboundReply) -> int:
        """Append a reply to the inbox. Used by the webhook side."""

        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO sms_responses(recipient_address, sender_address, message, category, received_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    reply.recipient_address,
                    reply.sender_address,
                    reply.raw_text,
                    classify_reply(reply.raw_text),
                    _to_utc_iso(reply.received_at),
                ),
            )
            return int(cur.lastrowid)

    def query_latest(
        self, recipient_address: str, after: datetime, category: str | None = None
    ) -> InboundReply | None:
        query = """
            SELECT recipient_address, sender_address, message, received_at
            FROM sms_responses
            WHERE recipient_address = ? AND received_at > ?
        """
        params: list[str] = [recipient_address, _to_utc_iso(after)]
        if category is not None:
            query += " AND category = ?"
            params.append(category)
        query += " ORDER BY received_at DESC, id DESC LIMIT 1"
        with self._connect() as conn:
            row = conn.execute(query, params).fetchone()
        if row is None:
            return None
        return InboundReply(
            sender_address=row["sender_address"],
            recipient_address=row["recipient_address"],
            raw_text=row["message"],
            received_at=datetime.fromisoformat(row["received_at"]),
        )

    def list_replies(self, recipient_address: str, limit: int = 20) -> list[dict[str, str]]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT id, sender_address, message, category, received_at
                FROM sms_responses
                WHERE recipient_address = ?
                ORDER BY received_at DESC, id DESC
                LIMIT ?
                """,
                (recipient_address, limit),
            ).fetchall()
        return [dict(row) for row in rows]

    def purge_older_than(self, cutoff: datetime) -> int:
        """Delete replies received before ``cutoff``. Returns the number removed."""

        with self._connect() as conn:
            cur = conn.execute(
                "DELETE FROM sms_responses WHERE received_at < ?", (_to_utc_iso(cutoff),)
            )
            return int(cur.rowcount)


def classify_reply(text: str) -> str:
    """Coarse keyword category stored with each reply and usable as a query_latest filter."""

    if _BALANCE_HINT.search(text):
        return "balance"
    if _TOKEN_HINT.search(text):
        return "token"
    return "general"


def _to_utc_iso(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    # Fixed-width microseconds keep lexical order equal to time order.
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")
