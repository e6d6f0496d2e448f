"""Group registry: canonical person-groups and their representatives."""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import Dict, List, Optional

from persongroup.errors import StorageError
from persongroup.io_utils import utc_now
from persongroup.store.captures import CAPTURE_COLUMNS, row_to_capture
from persongroup.store.database import Database
from persongroup.types import Capture, Group

LOGGER = logging.getLogger("persongroup.store.groups")

GROUP_COLUMNS = "id, representative_capture_id, member_count, created_at, updated_at"


@dataclass
class GroupWithRepresentative:
    group: Group
    representative: Optional[Capture]


def row_to_group(row: sqlite3.Row) -> Group:
    return Group(
        id=int(row["id"]),
        representative_capture_id=int(row["representative_capture_id"]),
        member_count=int(row["member_count"] or 0),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class GroupRegistry:
    """Reads and writes person groups. Writers must hold a transaction."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def get(self, group_id: int, conn: Optional[sqlite3.Connection] = None) -> Optional[Group]:
        if conn is None:
            with self.db.connection() as own:
                return self.get(group_id, conn=own)
        row = conn.execute(f"SELECT {GROUP_COLUMNS} FROM person_groups WHERE id = ?", (group_id,)).fetchone()
        return row_to_group(row) if row is not None else None

    def list_with_representatives(self) -> List[GroupWithRepresentative]:
        """Every group joined with its representative capture (None if the row is gone)."""
        with self.db.connection() as conn:
            groups = [
                row_to_group(row)
                for row in conn.execute(f"SELECT {GROUP_COLUMNS} FROM person_groups ORDER BY id ASC").fetchall()
            ]
            rep_ids = [g.representative_capture_id for g in groups]
            reps: Dict[int, Capture] = {}
            if rep_ids:
                placeholders = ",".join("?" for _ in rep_ids)
                for row in conn.execute(
                    f"SELECT {CAPTURE_COLUMNS} FROM captures WHERE id IN ({placeholders})", rep_ids
                ).fetchall():
                    capture = row_to_capture(row)
                    reps[capture.id] = capture
        return [GroupWithRepresentative(group=g, representative=reps.get(g.representative_capture_id)) for g in groups]

    def find_by_representative(self, capture_id: int, conn: Optional[sqlite3.Connection] = None) -> Optional[Group]:
        if conn is None:
            with self.db.connection() as own:
                return self.find_by_representative(capture_id, conn=own)
        row = conn.execute(
            f"SELECT {GROUP_COLUMNS} FROM person_groups WHERE representative_capture_id = ?",
            (capture_id,),
        ).fetchone()
        return row_to_group(row) if row is not None else None

    def insert(self, conn: sqlite3.Connection, group_id: int, representative_capture_id: int) -> Group:
        """Insert a new group with its representative as the only member."""
        now = utc_now()
        conn.execute(
            """
            INSERT INTO person_groups (id, representative_capture_id, member_count, created_at, updated_at)
            VALUES (?, ?, 1, ?, ?)
            """,
            (group_id, representative_capture_id, now, now),
        )
        LOGGER.debug("Inserted group %d (representative=%d)", group_id, representative_capture_id)
        return self.get(group_id, conn=conn)

    def adjust_member_count(self, conn: sqlite3.Connection, group_id: int, delta: int) -> None:
        cursor = conn.execute(
            "UPDATE person_groups SET member_count = member_count + ?, updated_at = ? WHERE id = ?",
            (delta, utc_now(), group_id),
        )
        if cursor.rowcount != 1:
            raise StorageError(f"Group {group_id} not found while adjusting member count")

    def count(self) -> int:
        with self.db.connection() as conn:
            row = conn.execute("SELECT COUNT(*) AS total FROM person_groups").fetchone()
        return int(row["total"] or 0)

    def integrity_report(self) -> Dict[str, List[int]]:
        """Ids violating the registry invariants (all lists empty when consistent)."""
        with self.db.connection() as conn:
            orphan_captures = [
                int(row["id"])
                for row in conn.execute(
                    """
                    SELECT c.id FROM captures c
                    LEFT JOIN person_groups g ON g.id = c.group_id
                    WHERE c.group_id IS NOT NULL AND g.id IS NULL
                    """
                ).fetchall()
            ]
            bad_representatives = [
                int(row["id"])
                for row in conn.execute(
                    """
                    SELECT g.id FROM person_groups g
                    LEFT JOIN captures c ON c.id = g.representative_capture_id
                    WHERE c.id IS NULL OR c.group_id IS NOT g.id
                    """
                ).fetchall()
            ]
            stale_counts = [
                int(row["id"])
                for row in conn.execute(
                    """
                    SELECT g.id FROM person_groups g
                    WHERE g.member_count != (SELECT COUNT(*) FROM captures c WHERE c.group_id = g.id)
                    """
                ).fetchall()
            ]
        return {
            "orphan_captures": orphan_captures,
            "bad_representatives": bad_representatives,
            "stale_member_counts": stale_counts,
        }
