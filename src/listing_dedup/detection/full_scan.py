"""Full scan: run detection for every active listing under a worker pool.

Listings are processed in shards. Within a shard, detection runs
concurrently, bounded by a semaphore. Each listing is checkpointed in
``scan_progress`` so an interrupted batch can be resumed by id, skipping
listings that already completed.
"""

import asyncio
from datetime import UTC, datetime
from typing import Protocol

from listing_dedup.db.runs import RunRepository
from listing_dedup.detection.detector import DuplicateDetector
from listing_dedup.logging import get_logger
from listing_dedup.models import (
    DetectionMethod,
    FullScanSummary,
    PairKey,
    SignalScoreBreakdown,
)

logger = get_logger(__name__)


class ScanBatchNotFoundError(LookupError):
    """Resume was requested for a batch id that does not exist."""


class PendingRecorder(Protocol):
    """Ledger write used to queue full-scan matches for review."""

    async def record_pending(
        self,
        pair: PairKey,
        *,
        score: float,
        method: DetectionMethod,
        breakdown: SignalScoreBreakdown | None = None,
    ) -> bool: ...


def _shards(ids: list[str], size: int) -> list[list[str]]:
    return [ids[i : i + size] for i in range(0, len(ids), size)]


class FullScanRunner:
    """Batch detection over the whole active corpus."""

    def __init__(
        self,
        detector: DuplicateDetector,
        ledger: PendingRecorder,
        runs: RunRepository,
        *,
        concurrency: int = 4,
        shard_size: int = 100,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if shard_size < 1:
            raise ValueError("shard_size must be at least 1")
        self.detector = detector
        self.ledger = ledger
        self.runs = runs
        self.concurrency = concurrency
        self.shard_size = shard_size

    async def _start_batch(self, batch_id: int | None, total: int) -> tuple[int, set[str]]:
        if batch_id is None:
            return await self.runs.create_scan_batch(total), set()

        batch = await self.runs.get_scan_batch(batch_id)
        if batch is None:
            raise ScanBatchNotFoundError(f"Scan batch {batch_id} does not exist")
        completed = await self.runs.get_completed_listing_ids(batch_id)
        await self.runs.reopen_scan_batch(batch_id, total)
        logger.info("full_scan_resumed", batch_id=batch_id, already_completed=len(completed))
        return batch_id, completed

    async def run(
        self,
        *,
        batch_id: int | None = None,
        stop_event: asyncio.Event | None = None,
        record_pending: bool = True,
    ) -> FullScanSummary:
        """Scan every active listing.

        Args:
            batch_id: Resume this batch instead of starting a new one.
            stop_event: Cooperative stop signal, checked before each listing.
                Listings already in flight finish normally.
            record_pending: Record each match in the ledger as pending.

        Returns:
            FullScanSummary for this invocation. ``status`` is ``completed``
            or ``stopped``; per-listing failures are listed in ``failures``.

        Raises:
            ScanBatchNotFoundError: If ``batch_id`` is unknown.
        """
        started_at = datetime.now(UTC)
        listing_ids = await self.detector.source.list_active_ids()
        batch_id, completed = await self._start_batch(batch_id, len(listing_ids))
        previous = await self.runs.get_scan_batch(batch_id) or {}

        summary = FullScanSummary(
            batch_id=batch_id,
            status="running",
            total_listings=len(listing_ids),
            skipped_resumed=sum(1 for i in listing_ids if i in completed),
            started_at=started_at,
        )
        to_scan = [i for i in listing_ids if i not in completed]
        logger.info(
            "full_scan_started",
            batch_id=batch_id,
            total=len(listing_ids),
            to_scan=len(to_scan),
            concurrency=self.concurrency,
        )

        semaphore = asyncio.Semaphore(self.concurrency)
        stopped = False

        async def _scan_one(listing_id: str) -> None:
            nonlocal stopped
            async with semaphore:
                if stop_event is not None and stop_event.is_set():
                    stopped = True
                    return
                try:
                    result = await self.detector.detect(listing_id, DetectionMethod.FULL_SCAN)
                    created = 0
                    if record_pending:
                        for match in result.matches:
                            if await self.ledger.record_pending(
                                PairKey.of(listing_id, match.candidate_id),
                                score=match.total_score,
                                method=DetectionMethod.FULL_SCAN,
                                breakdown=match.breakdown,
                            ):
                                created += 1
                except Exception as e:
                    logger.warning(
                        "full_scan_listing_failed",
                        batch_id=batch_id,
                        listing_id=listing_id,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    summary.failures[listing_id] = str(e)
                    await self.runs.mark_listing_scanned(
                        batch_id, listing_id, status="failed", error_message=str(e)
                    )
                    return

                summary.scanned += 1
                summary.matches_found += result.total_matches
                summary.pending_recorded += created
                await self.runs.mark_listing_scanned(batch_id, listing_id)

        try:
            for index, shard in enumerate(_shards(to_scan, self.shard_size)):
                if stopped or (stop_event is not None and stop_event.is_set()):
                    stopped = True
                    break
                await asyncio.gather(*(_scan_one(listing_id) for listing_id in shard))
                await self.runs.update_scan_batch(
                    batch_id,
                    scanned_count=len(completed) + summary.scanned,
                    matches_found=previous.get("matches_found", 0) + summary.matches_found,
                    pending_recorded=previous.get("pending_recorded", 0)
                    + summary.pending_recorded,
                    failed_count=len(summary.failures),
                )
                logger.debug(
                    "full_scan_shard_complete",
                    batch_id=batch_id,
                    shard=index,
                    scanned=summary.scanned,
                    failed=len(summary.failures),
                )
        except Exception as e:
            await self.runs.complete_scan_batch(batch_id, "failed", error_message=str(e))
            logger.error("full_scan_failed", batch_id=batch_id, error=str(e), exc_info=True)
            raise

        summary.status = "stopped" if stopped else "completed"
        summary.completed_at = datetime.now(UTC)
        await self.runs.complete_scan_batch(batch_id, summary.status)

        logger.info(
            "full_scan_complete",
            batch_id=batch_id,
            status=summary.status,
            scanned=summary.scanned,
            skipped_resumed=summary.skipped_resumed,
            matches=summary.matches_found,
            pending_recorded=summary.pending_recorded,
            failed=len(summary.failures),
        )
        return summary
