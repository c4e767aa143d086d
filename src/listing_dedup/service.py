"""Moderation-facing service: detection, decisions and the pending queue."""

from dataclasses import dataclass, field
from typing import Protocol

from listing_dedup.config import Settings
from listing_dedup.db.ledger import DuplicateLedger, LedgerWriteError
from listing_dedup.db.storage import DedupStorage
from listing_dedup.detection.candidates import ListingSource
from listing_dedup.detection.detector import DuplicateDetector
from listing_dedup.detection.full_scan import FullScanRunner
from listing_dedup.logging import get_logger
from listing_dedup.models import (
    Decision,
    DetectionMethod,
    DetectionResult,
    DuplicateLedgerEntry,
    LedgerStatus,
    PairKey,
)
from listing_dedup.utils.listing_cache import CachedListingSource

logger = get_logger(__name__)


class InvalidDecisionError(ValueError):
    """A moderator decision request is malformed."""


class InvalidPairError(InvalidDecisionError):
    """The two ids do not form a valid pair (blank, or the same listing)."""


class ModerationHook(Protocol):
    """Downstream workflow triggered when a duplicate is confirmed."""

    async def on_duplicate_confirmed(self, entry: DuplicateLedgerEntry) -> None: ...


class LoggingModerationHook:
    """Default hook: record the confirmation for the listing-removal workflow."""

    async def on_duplicate_confirmed(self, entry: DuplicateLedgerEntry) -> None:
        logger.info(
            "duplicate_confirmed",
            canonical_id=entry.canonical_id,
            duplicate_id=entry.duplicate_id,
            score=entry.score,
            reviewer=entry.reviewer_id,
        )


@dataclass(frozen=True)
class PendingFilter:
    """Filter for the pending review queue."""

    listing_id: str | None = None
    min_score: float | None = None
    limit: int | None = None

    def __post_init__(self) -> None:
        if self.min_score is not None and not 0.0 <= self.min_score <= 1.0:
            raise ValueError("min_score must be between 0 and 1")
        if self.limit is not None and self.limit < 1:
            raise ValueError("limit must be at least 1")


@dataclass
class ListingChangeOutcome:
    """Result of processing a listing create/update event.

    ``write_errors`` lists pairs whose pending entry could not be recorded;
    the detection result is returned regardless.
    """

    result: DetectionResult
    pending_recorded: int = 0
    write_errors: list[str] = field(default_factory=list)


def _pair(listing_a: str, listing_b: str) -> PairKey:
    if not listing_a or not listing_a.strip() or not listing_b or not listing_b.strip():
        raise InvalidPairError("Both listing ids must be non-empty")
    try:
        return PairKey.of(listing_a, listing_b)
    except ValueError as e:
        raise InvalidPairError(str(e)) from e


class DuplicateDetectionService:
    """Entry point for moderation tooling and listing-change triggers."""

    def __init__(
        self,
        detector: DuplicateDetector,
        ledger: DuplicateLedger,
        *,
        cache: CachedListingSource | None = None,
        hook: ModerationHook | None = None,
        full_scan: FullScanRunner | None = None,
    ) -> None:
        self.detector = detector
        self.ledger = ledger
        self.cache = cache
        self.hook = hook or LoggingModerationHook()
        self.full_scan = full_scan

    @classmethod
    def from_storage(
        cls,
        storage: DedupStorage,
        settings: Settings,
        *,
        hook: ModerationHook | None = None,
    ) -> "DuplicateDetectionService":
        """Wire the service to a storage backend using settings."""
        cache = CachedListingSource(storage.listings) if settings.enable_listing_cache else None
        source: ListingSource = cache if cache is not None else storage.listings
        detector = DuplicateDetector.from_settings(
            settings, source, suppression=storage.ledger, run_recorder=storage.runs
        )
        full_scan = FullScanRunner(
            detector,
            storage.ledger,
            storage.runs,
            concurrency=settings.full_scan_concurrency,
            shard_size=settings.full_scan_shard_size,
        )
        return cls(detector, storage.ledger, cache=cache, hook=hook, full_scan=full_scan)

    async def detect(
        self,
        listing_id: str,
        mode: DetectionMethod = DetectionMethod.INCREMENTAL,
        *,
        force: bool = False,
    ) -> DetectionResult:
        """Run detection for one listing. Does not write to the ledger."""
        return await self.detector.detect(listing_id, mode, force=force)

    async def mark_decision(
        self,
        canonical_id: str,
        duplicate_id: str,
        decision: Decision | str,
        score: float,
        reviewer_id: str | None = None,
    ) -> DuplicateLedgerEntry:
        """Record a moderator's confirm/dismiss decision. Idempotent.

        The ids may be passed in either order. Confirming a pair that was not
        already confirmed invokes the moderation hook.

        Raises:
            InvalidPairError: If the ids are blank or identical.
            InvalidDecisionError: If the decision or score is out of range.
            LedgerTransitionError: If the pair already carries the other decision.
            LedgerError: If the ledger cannot be read or written.
        """
        pair = _pair(canonical_id, duplicate_id)
        try:
            decision = Decision(decision)
        except ValueError as e:
            raise InvalidDecisionError(f"Unknown decision {decision!r}") from e
        if not 0.0 <= score <= 1.0:
            raise InvalidDecisionError("score must be between 0 and 1")

        previous = await self.ledger.get(pair)
        entry = await self.ledger.upsert_decision(
            pair, decision, score=score, method=DetectionMethod.MANUAL, reviewer_id=reviewer_id
        )

        newly_confirmed = decision is Decision.CONFIRMED and (
            previous is None or previous.status is not LedgerStatus.CONFIRMED
        )
        if newly_confirmed:
            try:
                await self.hook.on_duplicate_confirmed(entry)
            except Exception:
                logger.error("moderation_hook_failed", pair=str(pair), exc_info=True)
        return entry

    async def remove_suppression(
        self, canonical_id: str, duplicate_id: str, *, actor_id: str | None = None
    ) -> None:
        """Delete the ledger entry so the pair can surface again on the next scan."""
        await self.ledger.remove(_pair(canonical_id, duplicate_id), actor_id=actor_id)

    async def list_pending_matches(
        self, pending_filter: PendingFilter | None = None
    ) -> list[DuplicateLedgerEntry]:
        """Pending pairs awaiting review, highest score first."""
        f = pending_filter or PendingFilter()
        return await self.ledger.list_pending(
            listing_id=f.listing_id, min_score=f.min_score, limit=f.limit
        )

    async def handle_listing_changed(self, listing_id: str) -> ListingChangeOutcome:
        """React to a listing being created or updated.

        Drops the cached copy, runs incremental detection and queues every
        match as pending. A ledger failure for one pair is reported in the
        outcome without discarding the detection result.
        """
        if self.cache is not None:
            self.cache.invalidate(listing_id)

        result = await self.detector.detect(listing_id, DetectionMethod.INCREMENTAL)
        outcome = ListingChangeOutcome(result=result)
        for match in result.matches:
            pair = PairKey.of(result.listing_id, match.candidate_id)
            try:
                if await self.ledger.record_pending(
                    pair,
                    score=match.total_score,
                    method=DetectionMethod.INCREMENTAL,
                    breakdown=match.breakdown,
                ):
                    outcome.pending_recorded += 1
            except LedgerWriteError as e:
                outcome.write_errors.append(str(pair))
                logger.warning("pending_record_failed", pair=str(pair), error=str(e))

        logger.info(
            "listing_change_processed",
            listing_id=listing_id,
            matches=result.total_matches,
            pending_recorded=outcome.pending_recorded,
            write_errors=len(outcome.write_errors),
        )
        return outcome

    async def force_rescan(
        self, listing_id: str, *, actor_id: str | None = None
    ) -> DetectionResult:
        """Forget resolved decisions involving a listing and detect again.

        Raises:
            DetectionInputError: If the listing id is blank or unknown. The
                ledger is left untouched in that case.
        """
        await self.detector.load_target(listing_id)
        removed = await self.ledger.clear_resolved_for(listing_id, actor_id=actor_id)
        logger.info("force_rescan_cleared", listing_id=listing_id, removed=removed)
        return await self.detector.detect(listing_id, DetectionMethod.MANUAL, force=True)
