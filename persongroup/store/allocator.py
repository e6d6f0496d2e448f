"""Group id allocation backed by a durable counter."""

from __future__ import annotations

import logging

from persongroup.store.database import Database

LOGGER = logging.getLogger("persongroup.store.allocator")

GROUP_SEQUENCE = "person_group_id"


class IdentifierAllocator:
    """Hands out strictly increasing group ids.

    Each allocation commits on its own connection, independent of any
    transaction the caller holds, so an id is never handed out twice even if
    the caller later rolls back. Callers must not hold a write transaction on
    the same database while allocating.
    """

    def __init__(self, db: Database, sequence: str = GROUP_SEQUENCE) -> None:
        self.db = db
        self.sequence = sequence

    def allocate(self) -> int:
        with self.db.transaction() as conn:
            row = conn.execute("SELECT value FROM sequences WHERE name = ?", (self.sequence,)).fetchone()
            current = int(row["value"]) if row is not None else 0
            # Rows inserted before the counter existed must never be collided with.
            max_row = conn.execute("SELECT COALESCE(MAX(id), 0) AS max_id FROM person_groups").fetchone()
            floor = max(current, int(max_row["max_id"] or 0))
            next_id = floor + 1
            conn.execute(
                """
                INSERT INTO sequences (name, value) VALUES (?, ?)
                ON CONFLICT(name) DO UPDATE SET value = excluded.value
                """,
                (self.sequence, next_id),
            )
        LOGGER.debug("Allocated %s=%d", self.sequence, next_id)
        return next_id

    def current(self) -> int:
        """Last allocated value (0 if nothing allocated yet)."""
        with self.db.connection() as conn:
            row = conn.execute("SELECT value FROM sequences WHERE name = ?", (self.sequence,)).fetchone()
        return int(row["value"]) if row is not None else 0
