# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""SQLite-backed persistence layer for the SMTP mail service.

This module provides the Persistence class that handles all database
operations of the service:

- SMTP server profiles (``smtp_configs``), including the single default
- Mail templates (``email_templates``)
- Delivery history (``email_histories``), one row per send attempt

The persistence layer uses aiosqlite and opens one connection per
operation, making it safe for concurrent use from request handlers.
Rows are returned as plain dicts; list columns are stored as JSON text.

Example:
    Basic usage of the persistence layer::

        persistence = Persistence("./data/smtp-mail.db")
        await persistence.init_db()

        profile_id = await persistence.add_profile({
            "name": "Primary",
            "host": "smtp.example.com",
            "port": 587,
            "from_email": "noreply@example.com",
            "encryption": "starttls",
            "is_default": True,
        })
"""

from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

import aiosqlite

PROFILE_COLUMNS = (
    "name",
    "host",
    "port",
    "username",
    "password",
    "from_email",
    "from_name",
    "encryption",
    "is_default",
)
TEMPLATE_COLUMNS = ("name", "subject", "body")
HISTORY_JSON_COLUMNS = ("cc_email", "bcc_email", "attachments")


def utc_timestamp() -> str:
    """Current time as an ISO-8601 UTC string with a ``Z`` suffix."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _rows_to_dicts(rows: Sequence[Tuple[Any, ...]], description: Sequence[Tuple[Any, ...]]) -> List[Dict[str, Any]]:
    cols = [c[0] for c in description]
    return [dict(zip(cols, row)) for row in rows]


def _decode_profile(row: Dict[str, Any]) -> Dict[str, Any]:
    row["is_default"] = bool(row.get("is_default"))
    return row


def _decode_history(row: Dict[str, Any]) -> Dict[str, Any]:
    for field in HISTORY_JSON_COLUMNS:
        raw = row.get(field)
        row[field] = json.loads(raw) if raw else []
    return row


class Persistence:
    """Async SQLite persistence for profiles, templates and delivery history.

    Attributes:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str = "./data/smtp-mail.db"):
        if not db_path or db_path == ":memory:":
            raise ValueError(f"A database file path is required, got {db_path!r}")
        self.db_path = db_path

    async def init_db(self) -> None:
        """Create the schema if missing. Idempotent.

        The parent directory of the database is created on demand.
        """
        parent = os.path.dirname(os.path.abspath(self.db_path))
        os.makedirs(parent, exist_ok=True)

        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS smtp_configs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    host TEXT NOT NULL,
                    port INTEGER NOT NULL,
                    username TEXT,
                    password TEXT,
                    from_email TEXT NOT NULL,
                    from_name TEXT,
                    encryption TEXT NOT NULL DEFAULT 'none',
                    is_default INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT,
                    updated_at TEXT
                )
                """
            )
            # At most one default profile, enforced by the database as well.
            await db.execute(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS idx_smtp_configs_default
                ON smtp_configs(is_default) WHERE is_default = 1
                """
            )

            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS email_templates (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL UNIQUE,
                    subject TEXT NOT NULL,
                    body TEXT NOT NULL,
                    created_at TEXT,
                    updated_at TEXT
                )
                """
            )

            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS email_histories (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    smtp_config_id INTEGER NOT NULL,
                    to_email TEXT NOT NULL,
                    cc_email TEXT,
                    bcc_email TEXT,
                    subject TEXT,
                    body TEXT,
                    attachments TEXT,
                    status TEXT NOT NULL,
                    error_message TEXT,
                    sent_at TEXT,
                    created_at TEXT
                )
                """
            )
            await db.execute(
                "CREATE INDEX IF NOT EXISTS idx_email_histories_status ON email_histories(status)"
            )
            await db.execute(
                "CREATE INDEX IF NOT EXISTS idx_email_histories_created ON email_histories(created_at)"
            )
            await db.commit()

    # Profiles -----------------------------------------------------------------
    async def add_profile(self, profile: Dict[str, Any]) -> int:
        """Insert a profile and return its id.

        When ``is_default`` is set, every other default is cleared in the
        same transaction.
        """
        now = utc_timestamp()
        is_default = bool(profile.get("is_default"))
        async with aiosqlite.connect(self.db_path) as db:
            if is_default:
                await db.execute("UPDATE smtp_configs SET is_default = 0 WHERE is_default = 1")
            cursor = await db.execute(
                """
                INSERT INTO smtp_configs
                (name, host, port, username, password, from_email, from_name, encryption, is_default, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    profile["name"],
                    profile["host"],
                    int(profile["port"]),
                    profile.get("username"),
                    profile.get("password") or "",
                    profile["from_email"],
                    profile.get("from_name"),
                    profile.get("encryption") or "none",
                    1 if is_default else 0,
                    now,
                    now,
                ),
            )
            await db.commit()
            return int(cursor.lastrowid)

    async def update_profile(self, profile_id: int, updates: Dict[str, Any]) -> bool:
        """Update the given columns of a profile.

        Unknown keys are ignored. Setting ``is_default`` to true clears the
        other defaults in the same transaction.

        Returns:
            True if the profile exists, False otherwise.
        """
        set_parts = []
        values: List[Any] = []
        for key, value in updates.items():
            if key not in PROFILE_COLUMNS:
                continue
            if key == "is_default":
                value = 1 if value else 0
            set_parts.append(f"{key} = ?")
            values.append(value)
        set_parts.append("updated_at = ?")
        values.append(utc_timestamp())
        values.append(profile_id)

        async with aiosqlite.connect(self.db_path) as db:
            if updates.get("is_default"):
                await db.execute(
                    "UPDATE smtp_configs SET is_default = 0 WHERE is_default = 1 AND id != ?",
                    (profile_id,),
                )
            cursor = await db.execute(
                f"UPDATE smtp_configs SET {', '.join(set_parts)} WHERE id = ?",
                tuple(values),
            )
            if cursor.rowcount == 0:
                await db.rollback()
                return False
            await db.commit()
            return True

    async def delete_profile(self, profile_id: int) -> bool:
        """Remove a profile. History rows referencing it are kept."""
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("DELETE FROM smtp_configs WHERE id = ?", (profile_id,))
            await db.commit()
            return cursor.rowcount > 0

    async def get_profile(self, profile_id: int) -> Optional[Dict[str, Any]]:
        """Fetch a profile including its sealed password, or None."""
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute("SELECT * FROM smtp_configs WHERE id = ?", (profile_id,)) as cur:
                row = await cur.fetchone()
                if not row:
                    return None
                return _decode_profile(_rows_to_dicts([row], cur.description)[0])

    async def list_profiles(self) -> List[Dict[str, Any]]:
        """Return all profiles ordered by id."""
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute("SELECT * FROM smtp_configs ORDER BY id") as cur:
                rows = await cur.fetchall()
                return [_decode_profile(r) for r in _rows_to_dicts(rows, cur.description)]

    async def get_default_profile(self) -> Optional[Dict[str, Any]]:
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute("SELECT * FROM smtp_configs WHERE is_default = 1 LIMIT 1") as cur:
                row = await cur.fetchone()
                if not row:
                    return None
                return _decode_profile(_rows_to_dicts([row], cur.description)[0])

    async def set_default_profile(self, profile_id: int) -> bool:
        """Make ``profile_id`` the only default, clear-then-set in one transaction.

        Returns:
            True if the profile exists, False otherwise (nothing changes).
        """
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("UPDATE smtp_configs SET is_default = 0 WHERE is_default = 1")
            cursor = await db.execute(
                "UPDATE smtp_configs SET is_default = 1, updated_at = ? WHERE id = ?",
                (utc_timestamp(), profile_id),
            )
            if cursor.rowcount == 0:
                await db.rollback()
                return False
            await db.commit()
            return True

    # Templates ----------------------------------------------------------------
    async def add_template(self, template: Dict[str, Any]) -> int:
        """Insert a template and return its id.

        Raises:
            aiosqlite.IntegrityError: The name is already taken.
        """
        now = utc_timestamp()
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                """
                INSERT INTO email_templates (name, subject, body, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (template["name"], template["subject"], template["body"], now, now),
            )
            await db.commit()
            return int(cursor.lastrowid)

    async def update_template(self, template_id: int, updates: Dict[str, Any]) -> bool:
        set_parts = [f"{key} = ?" for key in updates if key in TEMPLATE_COLUMNS]
        values: List[Any] = [updates[key] for key in updates if key in TEMPLATE_COLUMNS]
        set_parts.append("updated_at = ?")
        values.extend([utc_timestamp(), template_id])
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                f"UPDATE email_templates SET {', '.join(set_parts)} WHERE id = ?",
                tuple(values),
            )
            await db.commit()
            return cursor.rowcount > 0

    async def delete_template(self, template_id: int) -> bool:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("DELETE FROM email_templates WHERE id = ?", (template_id,))
            await db.commit()
            return cursor.rowcount > 0

    async def get_template(self, template_id: int) -> Optional[Dict[str, Any]]:
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute("SELECT * FROM email_templates WHERE id = ?", (template_id,)) as cur:
                row = await cur.fetchone()
                if not row:
                    return None
                return _rows_to_dicts([row], cur.description)[0]

    async def get_template_by_name(self, name: str) -> Optional[Dict[str, Any]]:
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute("SELECT * FROM email_templates WHERE name = ?", (name,)) as cur:
                row = await cur.fetchone()
                if not row:
                    return None
                return _rows_to_dicts([row], cur.description)[0]

    async def list_templates(self) -> List[Dict[str, Any]]:
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute("SELECT * FROM email_templates ORDER BY id") as cur:
                rows = await cur.fetchall()
                return _rows_to_dicts(rows, cur.description)

    async def template_name_exists(self, name: str, exclude_id: Optional[int] = None) -> bool:
        """Check whether ``name`` is used by a template other than ``exclude_id``."""
        query = "SELECT COUNT(*) FROM email_templates WHERE name = ?"
        params: Tuple[Any, ...] = (name,)
        if exclude_id is not None:
            query += " AND id != ?"
            params += (exclude_id,)
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(query, params) as cur:
                (count,) = await cur.fetchone()
        return count > 0

    # History ------------------------------------------------------------------
    async def add_history(self, record: Dict[str, Any]) -> int:
        """Append one delivery record and return its id. Records are never updated."""
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                """
                INSERT INTO email_histories
                (smtp_config_id, to_email, cc_email, bcc_email, subject, body, attachments,
                 status, error_message, sent_at, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    int(record["smtp_config_id"]),
                    record["to_email"],
                    json.dumps(record.get("cc_email") or []),
                    json.dumps(record.get("bcc_email") or []),
                    record.get("subject", ""),
                    record.get("body", ""),
                    json.dumps(record.get("attachments") or []),
                    record["status"],
                    record.get("error_message", ""),
                    record.get("sent_at"),
                    record.get("created_at") or utc_timestamp(),
                ),
            )
            await db.commit()
            return int(cursor.lastrowid)

    async def list_history(
        self, *, limit: int, offset: int, status: Optional[str] = None
    ) -> Tuple[List[Dict[str, Any]], int]:
        """Return one page of records, newest first, and the filtered total."""
        where = ""
        params: Tuple[Any, ...] = ()
        if status:
            where = " WHERE status = ?"
            params = (status,)
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(f"SELECT COUNT(*) FROM email_histories{where}", params) as cur:
                (total,) = await cur.fetchone()
            async with db.execute(
                f"SELECT * FROM email_histories{where} ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
                params + (limit, offset),
            ) as cur:
                rows = await cur.fetchall()
                items = [_decode_history(r) for r in _rows_to_dicts(rows, cur.description)]
        return items, int(total)

    async def get_history(self, history_id: int) -> Optional[Dict[str, Any]]:
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute("SELECT * FROM email_histories WHERE id = ?", (history_id,)) as cur:
                row = await cur.fetchone()
                if not row:
                    return None
                return _decode_history(_rows_to_dicts([row], cur.description)[0])

    async def delete_history(self, history_id: int) -> bool:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("DELETE FROM email_histories WHERE id = ?", (history_id,))
            await db.commit()
            return cursor.rowcount > 0

    async def count_history_by_status(self) -> Dict[str, int]:
        """Return ``{status: count}`` over all records."""
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(
                "SELECT status, COUNT(*) FROM email_histories GROUP BY status"
            ) as cur:
                rows = await cur.fetchall()
        return {status: int(count) for status, count in rows}


__all__ = ["Persistence", "utc_timestamp"]
