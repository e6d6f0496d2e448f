"""Description store: durable record of every capture."""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any, Dict, List, Optional

from persongroup.errors import CaptureNotFoundError
from persongroup.io_utils import normalize_timestamp, utc_now
from persongroup.store.database import Database
from persongroup.types import Capture, Schema

LOGGER = logging.getLogger("persongroup.store.captures")

CAPTURE_COLUMNS = (
    "id, created_at, captured_at, role, image_ref, description_json, natural_summary, "
    "group_id, grouping_probability, grouping_explanation"
)
MAX_ROLE_LENGTH = 32


def parse_json_column(value: Any) -> Optional[Schema]:
    if not value:
        return None
    if isinstance(value, dict):
        return value
    try:
        parsed = json.loads(value)
    except (TypeError, ValueError) as exc:
        LOGGER.warning("Failed to parse JSON column value: %s", exc)
        return None
    return parsed if isinstance(parsed, dict) else None


def row_to_capture(row: sqlite3.Row) -> Capture:
    return Capture(
        id=int(row["id"]),
        image_ref=row["image_ref"],
        description_schema=parse_json_column(row["description_json"]),
        natural_summary=row["natural_summary"],
        captured_at=row["captured_at"],
        created_at=row["created_at"],
        group_id=int(row["group_id"]) if row["group_id"] is not None else None,
        role=row["role"] or "single",
        grouping_probability=row["grouping_probability"],
        grouping_explanation=row["grouping_explanation"],
    )


def _normalize_role(role: Optional[str]) -> str:
    text = (role or "").strip().lower()[:MAX_ROLE_LENGTH]
    return text or "single"


class CaptureStore:
    """Reads and writes captures. Only the resolver changes ``group_id``."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def insert(
        self,
        image_ref: Optional[str],
        captured_at: Any = None,
        role: Optional[str] = None,
        description_schema: Optional[Schema] = None,
        natural_summary: Optional[str] = None,
    ) -> Capture:
        with self.db.connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO captures (created_at, captured_at, role, image_ref, description_json, natural_summary)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    utc_now(),
                    normalize_timestamp(captured_at),
                    _normalize_role(role),
                    image_ref,
                    json.dumps(description_schema) if description_schema else None,
                    natural_summary,
                ),
            )
            capture_id = int(cursor.lastrowid)
            capture = self.get(capture_id, conn=conn)
        LOGGER.info("Stored capture %d (role=%s)", capture_id, capture.role)
        return capture

    def get(self, capture_id: int, conn: Optional[sqlite3.Connection] = None) -> Optional[Capture]:
        if conn is None:
            with self.db.connection() as own:
                return self.get(capture_id, conn=own)
        row = conn.execute(f"SELECT {CAPTURE_COLUMNS} FROM captures WHERE id = ?", (capture_id,)).fetchone()
        return row_to_capture(row) if row is not None else None

    def require(self, capture_id: int, conn: Optional[sqlite3.Connection] = None) -> Capture:
        capture = self.get(capture_id, conn=conn)
        if capture is None:
            raise CaptureNotFoundError(capture_id)
        return capture

    def update_description(self, capture_id: int, schema: Schema, natural_summary: str) -> Capture:
        with self.db.connection() as conn:
            cursor = conn.execute(
                "UPDATE captures SET description_json = ?, natural_summary = ? WHERE id = ?",
                (json.dumps(schema), natural_summary, capture_id),
            )
            if cursor.rowcount == 0:
                raise CaptureNotFoundError(capture_id)
            return self.require(capture_id, conn=conn)

    def assign_group(
        self,
        conn: sqlite3.Connection,
        capture_id: int,
        group_id: int,
        expected_group_id: Optional[int],
        probability: Optional[int] = None,
        explanation: Optional[str] = None,
    ) -> bool:
        """Conditionally set ``group_id``; returns False if the row changed meanwhile.

        Must be called inside a write transaction.
        """
        cursor = conn.execute(
            """
            UPDATE captures
            SET group_id = ?, grouping_probability = ?, grouping_explanation = ?
            WHERE id = ? AND group_id IS ?
            """,
            (group_id, probability, explanation, capture_id, expected_group_id),
        )
        return cursor.rowcount == 1

    def list_missing_descriptions(self, limit: int = 50) -> List[Capture]:
        with self.db.connection() as conn:
            rows = conn.execute(
                f"""
                SELECT {CAPTURE_COLUMNS} FROM captures
                WHERE image_ref IS NOT NULL
                  AND (description_json IS NULL OR natural_summary IS NULL)
                ORDER BY created_at DESC, id DESC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [row_to_capture(row) for row in rows]

    def list_ungrouped(self, limit: Optional[int] = None) -> List[Capture]:
        query = f"""
            SELECT {CAPTURE_COLUMNS} FROM captures
            WHERE group_id IS NULL AND description_json IS NOT NULL
            ORDER BY id ASC
        """
        params: tuple = ()
        if limit is not None:
            query += " LIMIT ?"
            params = (limit,)
        with self.db.connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [row_to_capture(row) for row in rows]

    def list_all(self) -> List[Capture]:
        with self.db.connection() as conn:
            rows = conn.execute(f"SELECT {CAPTURE_COLUMNS} FROM captures ORDER BY id ASC").fetchall()
        return [row_to_capture(row) for row in rows]

    def counts(self) -> Dict[str, int]:
        with self.db.connection() as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) AS total,
                       SUM(CASE WHEN group_id IS NOT NULL THEN 1 ELSE 0 END) AS grouped,
                       SUM(CASE WHEN description_json IS NOT NULL THEN 1 ELSE 0 END) AS described
                FROM captures
                """
            ).fetchone()
        return {
            "captures": int(row["total"] or 0),
            "grouped": int(row["grouped"] or 0),
            "described": int(row["described"] or 0),
        }
