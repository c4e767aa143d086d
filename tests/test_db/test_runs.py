"""Tests for detection run records and scan batch checkpoints."""

from datetime import UTC, datetime

import pytest

from listing_dedup.db.storage import DedupStorage
from listing_dedup.models import (
    ConfidenceTier,
    DetectionMethod,
    DetectionResult,
    DuplicateMatch,
    SignalScoreBreakdown,
)


def _result(listing_id: str, scores: list[float]) -> DetectionResult:
    matches = tuple(
        DuplicateMatch(
            candidate_id=f"C{i}",
            breakdown=SignalScoreBreakdown(),
            total_score=score,
            confidence=ConfidenceTier.HIGH,
        )
        for i, score in enumerate(scores)
    )
    return DetectionResult(
        listing_id=listing_id,
        matches=matches,
        method=DetectionMethod.INCREMENTAL,
        completed_at=datetime(2025, 1, 15, 10, 0, 5, tzinfo=UTC),
        candidates_considered=len(scores) + 1,
        candidates_skipped=("S1",),
    )


class TestDetectionRuns:
    @pytest.mark.asyncio
    async def test_record_and_read(self, storage: DedupStorage) -> None:
        run_at = datetime(2025, 1, 15, 10, 0, tzinfo=UTC)
        run_id = await storage.runs.record_detection_run(_result("A", [0.9, 0.8]), run_at=run_at)

        runs = await storage.runs.get_detection_runs("A")

        assert len(runs) == 1
        run = runs[0]
        assert run["id"] == run_id
        assert run["total_matches"] == 2
        assert run["highest_match_score"] == pytest.approx(0.9)
        assert run["candidates_considered"] == 3
        assert run["candidates_skipped"] == 1
        assert run["run_at"] == run_at.isoformat()

    @pytest.mark.asyncio
    async def test_no_matches_has_null_highest_score(self, storage: DedupStorage) -> None:
        await storage.runs.record_detection_run(_result("A", []), run_at=datetime.now(UTC))
        runs = await storage.runs.get_detection_runs("A")
        assert runs[0]["highest_match_score"] is None

    @pytest.mark.asyncio
    async def test_newest_first(self, storage: DedupStorage) -> None:
        first = await storage.runs.record_detection_run(_result("A", []), run_at=datetime.now(UTC))
        second = await storage.runs.record_detection_run(
            _result("A", [0.5]), run_at=datetime.now(UTC)
        )
        runs = await storage.runs.get_detection_runs("A")
        assert [r["id"] for r in runs] == [second, first]


class TestScanBatches:
    @pytest.mark.asyncio
    async def test_lifecycle(self, storage: DedupStorage) -> None:
        batch_id = await storage.runs.create_scan_batch(10)
        await storage.runs.update_scan_batch(batch_id, scanned_count=4, matches_found=2)
        await storage.runs.complete_scan_batch(batch_id, "completed")

        batch = await storage.runs.get_scan_batch(batch_id)

        assert batch is not None
        assert batch["status"] == "completed"
        assert batch["total_listings"] == 10
        assert batch["scanned_count"] == 4
        assert batch["matches_found"] == 2
        assert batch["duration_seconds"] is not None
        assert batch["completed_at"] is not None

    @pytest.mark.asyncio
    async def test_failed_batch_keeps_error(self, storage: DedupStorage) -> None:
        batch_id = await storage.runs.create_scan_batch(1)
        await storage.runs.complete_scan_batch(batch_id, "failed", error_message="disk full")

        batch = await storage.runs.get_scan_batch(batch_id)
        assert batch is not None
        assert batch["status"] == "failed"
        assert batch["error_message"] == "disk full"

    @pytest.mark.asyncio
    async def test_reopen(self, storage: DedupStorage) -> None:
        batch_id = await storage.runs.create_scan_batch(5)
        await storage.runs.complete_scan_batch(batch_id, "stopped")
        await storage.runs.reopen_scan_batch(batch_id, 6)

        batch = await storage.runs.get_scan_batch(batch_id)
        assert batch is not None
        assert batch["status"] == "running"
        assert batch["completed_at"] is None
        assert batch["total_listings"] == 6

    @pytest.mark.asyncio
    async def test_missing_batch(self, storage: DedupStorage) -> None:
        assert await storage.runs.get_scan_batch(42) is None

    @pytest.mark.asyncio
    async def test_progress_checkpoints(self, storage: DedupStorage) -> None:
        batch_id = await storage.runs.create_scan_batch(3)
        await storage.runs.mark_listing_scanned(batch_id, "A")
        await storage.runs.mark_listing_scanned(batch_id, "B", status="failed", error_message="x")
        await storage.runs.mark_listing_scanned(batch_id, "C", status="failed", error_message="y")
        # A retry that succeeds overwrites the failure
        await storage.runs.mark_listing_scanned(batch_id, "C")

        assert await storage.runs.get_completed_listing_ids(batch_id) == {"A", "C"}
