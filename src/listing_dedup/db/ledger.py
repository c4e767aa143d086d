"""Duplicate ledger: persisted moderation decisions keyed by canonical pair.

One row per unordered pair of listings. The table enforces
``UNIQUE(canonical_id, duplicate_id)`` and ``canonical_id < duplicate_id``,
so concurrent writers racing on the same pair resolve as "first write wins"
without application-level locking.

Status transitions::

    pending -> confirmed
    pending -> dismissed

Resolved rows (confirmed or dismissed) only leave that state by being
deleted (:meth:`DuplicateLedger.remove`), after which the pair can surface
again on the next scan.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Coroutine
from datetime import UTC, datetime
from typing import Any

import aiosqlite

from listing_dedup.db.row_mappers import row_to_ledger_entry
from listing_dedup.logging import get_logger
from listing_dedup.models import (
    Decision,
    DetectionMethod,
    DuplicateLedgerEntry,
    LedgerStatus,
    PairKey,
    SignalScoreBreakdown,
)

logger = get_logger(__name__)

_RESOLVED = (LedgerStatus.CONFIRMED.value, LedgerStatus.DISMISSED.value)


class LedgerError(Exception):
    """The ledger could not be read or written at the storage layer."""


class LedgerReadError(LedgerError):
    """A ledger read failed at the storage layer."""


class LedgerWriteError(LedgerError):
    """A ledger write failed at the storage layer. Nothing from it was committed."""


class LedgerTransitionError(Exception):
    """A decision would move a resolved pair to a different resolved status."""

    def __init__(self, pair: PairKey, current: LedgerStatus, requested: Decision) -> None:
        super().__init__(
            f"Pair {pair} is already {current.value}; remove the entry before marking it "
            f"{requested.value}"
        )
        self.pair = pair
        self.current = current
        self.requested = requested


class DuplicateLedger:
    """Database operations for duplicate-pair moderation records."""

    def __init__(
        self, get_connection: Callable[[], Coroutine[Any, Any, aiosqlite.Connection]]
    ) -> None:
        self._get_connection = get_connection

    async def _fetch(
        self, conn: aiosqlite.Connection, pair: PairKey
    ) -> DuplicateLedgerEntry | None:
        cursor = await conn.execute(
            "SELECT * FROM duplicate_ledger WHERE canonical_id = ? AND duplicate_id = ?",
            (pair.canonical_id, pair.duplicate_id),
        )
        row = await cursor.fetchone()
        return row_to_ledger_entry(row) if row else None

    async def _log_event(
        self,
        conn: aiosqlite.Connection,
        pair: PairKey,
        event: str,
        *,
        actor_id: str | None = None,
        **metadata: Any,
    ) -> None:
        await conn.execute(
            """
            INSERT INTO ledger_events
                (canonical_id, duplicate_id, event, actor_id, metadata_json, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                pair.canonical_id,
                pair.duplicate_id,
                event,
                actor_id,
                json.dumps(metadata, default=str),
                datetime.now(UTC).isoformat(),
            ),
        )

    async def _rollback(self, conn: aiosqlite.Connection | None, pair: PairKey) -> None:
        """Discard a partial write so no later commit on the shared connection persists it."""
        if conn is None:
            return
        try:
            await conn.rollback()
        except aiosqlite.Error as e:
            logger.error("ledger_rollback_failed", pair=str(pair), error=str(e))

    async def get(self, pair: PairKey) -> DuplicateLedgerEntry | None:
        """Get the ledger entry for a pair, if any.

        Raises:
            LedgerReadError: If the database read fails.
        """
        try:
            conn = await self._get_connection()
            return await self._fetch(conn, pair)
        except aiosqlite.Error as e:
            logger.error("ledger_read_failed", pair=str(pair), error=str(e))
            raise LedgerReadError(f"Failed to read ledger entry for {pair}: {e}") from e

    async def upsert_decision(
        self,
        pair: PairKey,
        decision: Decision,
        *,
        score: float,
        method: DetectionMethod = DetectionMethod.MANUAL,
        reviewer_id: str | None = None,
        breakdown: SignalScoreBreakdown | None = None,
    ) -> DuplicateLedgerEntry:
        """Record a moderator decision. Idempotent.

        - No entry: insert a resolved entry with ``method``.
        - Pending entry: resolve it, keeping its original detection method.
        - Entry already carrying ``decision``: no-op, returns it unchanged.
        - Entry carrying the other decision: :class:`LedgerTransitionError`.

        Args:
            pair: Canonical pair key.
            decision: Confirmed or dismissed.
            score: Match score at time of decision.
            method: Detection method for a pair with no prior entry.
            reviewer_id: Moderator identifier.
            breakdown: Optional per-signal scores at time of decision.

        Returns:
            The ledger entry after the write.

        Raises:
            LedgerTransitionError: For a confirmed <-> dismissed change.
            LedgerWriteError: If the database write fails.
        """
        now = datetime.now(UTC).isoformat()
        breakdown_json = breakdown.model_dump_json() if breakdown else None
        conn: aiosqlite.Connection | None = None
        try:
            conn = await self._get_connection()
            cursor = await conn.execute(
                """
                INSERT INTO duplicate_ledger
                    (canonical_id, duplicate_id, score, breakdown_json, detection_method,
                     status, reviewer_id, created_at, resolved_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(canonical_id, duplicate_id) DO NOTHING
                """,
                (
                    pair.canonical_id,
                    pair.duplicate_id,
                    score,
                    breakdown_json,
                    method.value,
                    decision.value,
                    reviewer_id,
                    now,
                    now,
                ),
            )
            created = cursor.rowcount == 1
            if created:
                await self._log_event(
                    conn,
                    pair,
                    "decision_recorded",
                    actor_id=reviewer_id,
                    decision=decision.value,
                    score=score,
                    method=method.value,
                )
            else:
                cursor = await conn.execute(
                    """
                    UPDATE duplicate_ledger
                    SET status = ?, score = ?, reviewer_id = ?, resolved_at = ?,
                        breakdown_json = COALESCE(?, breakdown_json)
                    WHERE canonical_id = ? AND duplicate_id = ? AND status = 'pending'
                    """,
                    (
                        decision.value,
                        score,
                        reviewer_id,
                        now,
                        breakdown_json,
                        pair.canonical_id,
                        pair.duplicate_id,
                    ),
                )
                if cursor.rowcount == 1:
                    await self._log_event(
                        conn,
                        pair,
                        "decision_recorded",
                        actor_id=reviewer_id,
                        decision=decision.value,
                        score=score,
                        previous=LedgerStatus.PENDING.value,
                    )
            await conn.commit()
            entry = await self._fetch(conn, pair)
        except aiosqlite.Error as e:
            await self._rollback(conn, pair)
            logger.error("ledger_write_failed", pair=str(pair), error=str(e))
            raise LedgerWriteError(f"Failed to record decision for {pair}: {e}") from e

        if entry is None:
            # Deleted between the insert attempt and the read
            raise LedgerWriteError(f"Ledger entry for {pair} vanished during upsert")
        if entry.status is not decision.status:
            raise LedgerTransitionError(pair, entry.status, decision)

        logger.info(
            "ledger_decision_recorded",
            pair=str(pair),
            decision=decision.value,
            reviewer=reviewer_id,
            created=created,
        )
        return entry

    async def record_pending(
        self,
        pair: PairKey,
        *,
        score: float,
        method: DetectionMethod,
        breakdown: SignalScoreBreakdown | None = None,
    ) -> bool:
        """Record a detected pair for review. First write wins.

        Never touches an existing entry, so re-detection cannot reopen a
        resolved pair or overwrite an earlier pending score.

        Returns:
            True if a new pending entry was created.

        Raises:
            LedgerWriteError: If the database write fails.
        """
        now = datetime.now(UTC).isoformat()
        conn: aiosqlite.Connection | None = None
        try:
            conn = await self._get_connection()
            cursor = await conn.execute(
                """
                INSERT INTO duplicate_ledger
                    (canonical_id, duplicate_id, score, breakdown_json, detection_method,
                     status, created_at)
                VALUES (?, ?, ?, ?, ?, 'pending', ?)
                ON CONFLICT(canonical_id, duplicate_id) DO NOTHING
                """,
                (
                    pair.canonical_id,
                    pair.duplicate_id,
                    score,
                    breakdown.model_dump_json() if breakdown else None,
                    method.value,
                    now,
                ),
            )
            created = cursor.rowcount == 1
            if created:
                await self._log_event(
                    conn, pair, "match_detected", score=score, method=method.value
                )
            await conn.commit()
        except aiosqlite.Error as e:
            await self._rollback(conn, pair)
            logger.error("ledger_write_failed", pair=str(pair), error=str(e))
            raise LedgerWriteError(f"Failed to record pending pair {pair}: {e}") from e
        return created

    async def is_suppressed(self, pair: PairKey) -> bool:
        """Whether the pair is confirmed or dismissed."""
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            SELECT 1 FROM duplicate_ledger
            WHERE canonical_id = ? AND duplicate_id = ? AND status IN (?, ?)
            """,
            (pair.canonical_id, pair.duplicate_id, *_RESOLVED),
        )
        return await cursor.fetchone() is not None

    async def suppressed_partners(self, listing_id: str) -> set[str]:
        """Ids paired with ``listing_id`` in a confirmed or dismissed entry."""
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            SELECT canonical_id, duplicate_id FROM duplicate_ledger
            WHERE (canonical_id = ? OR duplicate_id = ?) AND status IN (?, ?)
            """,
            (listing_id, listing_id, *_RESOLVED),
        )
        rows = await cursor.fetchall()
        return {
            row["duplicate_id"] if row["canonical_id"] == listing_id else row["canonical_id"]
            for row in rows
        }

    async def list_pending(
        self,
        *,
        listing_id: str | None = None,
        min_score: float | None = None,
        limit: int | None = None,
    ) -> list[DuplicateLedgerEntry]:
        """Pending entries, highest score first.

        Args:
            listing_id: Only pairs involving this listing.
            min_score: Only entries scoring at least this much.
            limit: Maximum number of entries.
        """
        clauses = ["status = 'pending'"]
        params: list[Any] = []
        if listing_id is not None:
            clauses.append("(canonical_id = ? OR duplicate_id = ?)")
            params.extend([listing_id, listing_id])
        if min_score is not None:
            clauses.append("score >= ?")
            params.append(min_score)
        sql = (
            f"SELECT * FROM duplicate_ledger WHERE {' AND '.join(clauses)} "
            "ORDER BY score DESC, created_at, canonical_id, duplicate_id"
        )
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        conn = await self._get_connection()
        cursor = await conn.execute(sql, params)
        rows = await cursor.fetchall()
        return [row_to_ledger_entry(row) for row in rows]

    async def remove(self, pair: PairKey, *, actor_id: str | None = None) -> bool:
        """Delete the entry for a pair so it can surface on the next scan.

        Returns:
            True if an entry was deleted.

        Raises:
            LedgerWriteError: If the database write fails.
        """
        conn: aiosqlite.Connection | None = None
        try:
            conn = await self._get_connection()
            cursor = await conn.execute(
                "DELETE FROM duplicate_ledger WHERE canonical_id = ? AND duplicate_id = ?",
                (pair.canonical_id, pair.duplicate_id),
            )
            deleted = cursor.rowcount > 0
            if deleted:
                await self._log_event(conn, pair, "suppression_removed", actor_id=actor_id)
            await conn.commit()
        except aiosqlite.Error as e:
            await self._rollback(conn, pair)
            logger.error("ledger_write_failed", pair=str(pair), error=str(e))
            raise LedgerWriteError(f"Failed to remove {pair}: {e}") from e

        logger.info("ledger_entry_removed", pair=str(pair), deleted=deleted)
        return deleted

    async def clear_resolved_for(self, listing_id: str, *, actor_id: str | None = None) -> int:
        """Delete every resolved entry involving ``listing_id`` (forced re-scan).

        Returns:
            Number of entries deleted.
        """
        partners = await self.suppressed_partners(listing_id)
        removed = 0
        for partner in sorted(partners):
            if await self.remove(PairKey.of(listing_id, partner), actor_id=actor_id):
                removed += 1
        return removed

    async def get_events(self, pair: PairKey) -> list[dict[str, Any]]:
        """Audit trail for a pair, oldest first."""
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            SELECT event, actor_id, metadata_json, created_at FROM ledger_events
            WHERE canonical_id = ? AND duplicate_id = ?
            ORDER BY id
            """,
            (pair.canonical_id, pair.duplicate_id),
        )
        rows = await cursor.fetchall()
        return [
            {
                "event": row["event"],
                "actor_id": row["actor_id"],
                "metadata": json.loads(row["metadata_json"]) if row["metadata_json"] else {},
                "created_at": row["created_at"],
            }
            for row in rows
        ]
