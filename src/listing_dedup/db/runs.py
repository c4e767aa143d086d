"""Run repository: detection run records and full-scan batch checkpoints."""

from __future__ import annotations

from collections.abc import Callable, Coroutine
from datetime import UTC, datetime
from typing import Any

import aiosqlite

from listing_dedup.logging import get_logger
from listing_dedup.models import DetectionResult

logger = get_logger(__name__)


class RunRepository:
    """Database operations for detection runs and scan batches."""

    def __init__(
        self, get_connection: Callable[[], Coroutine[Any, Any, aiosqlite.Connection]]
    ) -> None:
        self._get_connection = get_connection

    # ------------------------------------------------------------------
    # Detection runs
    # ------------------------------------------------------------------

    async def record_detection_run(self, result: DetectionResult, *, run_at: datetime) -> int:
        """Store the outcome of one detection run.

        Args:
            result: The completed detection result.
            run_at: When the run started.

        Returns:
            The ID of the new run record.
        """
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            INSERT INTO detection_runs
                (listing_id, detection_method, total_matches, highest_match_score,
                 candidates_considered, candidates_skipped, forced, run_at, completed_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                result.listing_id,
                result.method.value,
                result.total_matches,
                result.highest_match_score if result.matches else None,
                result.candidates_considered,
                len(result.candidates_skipped),
                int(result.forced),
                run_at.isoformat(),
                result.completed_at.isoformat(),
            ),
        )
        await conn.commit()
        return cursor.lastrowid  # type: ignore[return-value]

    async def get_detection_runs(self, listing_id: str) -> list[dict[str, Any]]:
        """Detection runs for a listing, newest first."""
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT * FROM detection_runs WHERE listing_id = ? ORDER BY id DESC",
            (listing_id,),
        )
        rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    # ------------------------------------------------------------------
    # Full-scan batches
    # ------------------------------------------------------------------

    async def create_scan_batch(self, total_listings: int) -> int:
        """Create a new full-scan batch record.

        Returns:
            The ID of the new batch.
        """
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            INSERT INTO scan_batches (started_at, status, total_listings)
            VALUES (?, 'running', ?)
            """,
            (datetime.now(UTC).isoformat(), total_listings),
        )
        await conn.commit()
        return cursor.lastrowid  # type: ignore[return-value]

    async def reopen_scan_batch(self, batch_id: int, total_listings: int) -> None:
        """Mark an interrupted batch as running again before resuming it."""
        conn = await self._get_connection()
        await conn.execute(
            """
            UPDATE scan_batches
            SET status = 'running', completed_at = NULL, error_message = NULL,
                total_listings = ?
            WHERE id = ?
            """,
            (total_listings, batch_id),
        )
        await conn.commit()

    async def update_scan_batch(self, batch_id: int, **counts: int) -> None:
        """Update count columns on a scan batch.

        Args:
            batch_id: The batch ID.
            **counts: Column name/value pairs to update (e.g. scanned_count=42).
        """
        if not counts:
            return
        conn = await self._get_connection()
        set_clauses = ", ".join(f"{k} = ?" for k in counts)
        values: list[Any] = list(counts.values())
        values.append(batch_id)
        await conn.execute(
            f"UPDATE scan_batches SET {set_clauses} WHERE id = ?",
            values,
        )
        await conn.commit()

    async def complete_scan_batch(
        self,
        batch_id: int,
        status: str,
        *,
        error_message: str | None = None,
    ) -> None:
        """Mark a scan batch as completed, stopped or failed.

        Args:
            batch_id: The batch ID.
            status: Final status ('completed', 'stopped' or 'failed').
            error_message: Error message if status is 'failed'.
        """
        conn = await self._get_connection()
        now = datetime.now(UTC).isoformat()
        cursor = await conn.execute("SELECT started_at FROM scan_batches WHERE id = ?", (batch_id,))
        row = await cursor.fetchone()
        duration = None
        if row:
            started = datetime.fromisoformat(row["started_at"])
            duration = (datetime.fromisoformat(now) - started).total_seconds()

        await conn.execute(
            """
            UPDATE scan_batches
            SET completed_at = ?, status = ?, error_message = ?, duration_seconds = ?
            WHERE id = ?
            """,
            (now, status, error_message, duration, batch_id),
        )
        await conn.commit()

    async def get_scan_batch(self, batch_id: int) -> dict[str, Any] | None:
        """Get a scan batch record, or None if it does not exist."""
        conn = await self._get_connection()
        cursor = await conn.execute("SELECT * FROM scan_batches WHERE id = ?", (batch_id,))
        row = await cursor.fetchone()
        return dict(row) if row else None

    async def mark_listing_scanned(
        self,
        batch_id: int,
        listing_id: str,
        *,
        status: str = "completed",
        error_message: str | None = None,
    ) -> None:
        """Checkpoint one listing of a batch. Re-marking overwrites the previous outcome."""
        conn = await self._get_connection()
        await conn.execute(
            """
            INSERT INTO scan_progress (batch_id, listing_id, status, error_message, completed_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(batch_id, listing_id) DO UPDATE SET
                status = excluded.status,
                error_message = excluded.error_message,
                completed_at = excluded.completed_at
            """,
            (batch_id, listing_id, status, error_message, datetime.now(UTC).isoformat()),
        )
        await conn.commit()

    async def get_completed_listing_ids(self, batch_id: int) -> set[str]:
        """Listings already scanned successfully in a batch."""
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT listing_id FROM scan_progress WHERE batch_id = ? AND status = 'completed'",
            (batch_id,),
        )
        rows = await cursor.fetchall()
        return {row["listing_id"] for row in rows}
