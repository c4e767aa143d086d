"""Detection orchestrator: select candidates, score, rank.

One invocation moves through ``start -> candidates_selected -> scored ->
ranked -> returned``. There are no retries inside an invocation, and a
failure while scoring one candidate never aborts the others.
"""

from datetime import UTC, datetime
from typing import Protocol

from listing_dedup.config import Settings
from listing_dedup.detection.candidates import CandidateSelector, ListingSource
from listing_dedup.detection.scoring import CompositeScorer, build_evidence_rules
from listing_dedup.detection.signals import (
    SIGNAL_SCORERS,
    Scorer,
    build_scorers,
    score_signals,
    titles_identical,
)
from listing_dedup.logging import get_logger
from listing_dedup.models import (
    DetectionMethod,
    DetectionResult,
    DuplicateMatch,
    Listing,
    SignalName,
)

logger = get_logger(__name__)


class DetectionInputError(ValueError):
    """The target listing id is missing, unknown or unreadable."""


class InvalidListingIdError(DetectionInputError):
    """Blank or otherwise unusable listing id."""


class ListingNotFoundError(DetectionInputError):
    """No listing exists with the requested id."""

    def __init__(self, listing_id: str) -> None:
        super().__init__(f"Listing {listing_id!r} not found")
        self.listing_id = listing_id


class MalformedListingError(DetectionInputError):
    """The target listing's stored data cannot be read."""


class SuppressionSource(Protocol):
    """Source of already-resolved pairs (the duplicate ledger)."""

    async def suppressed_partners(self, listing_id: str) -> set[str]: ...


class RunRecorder(Protocol):
    """Sink for detection run records."""

    async def record_detection_run(self, result: DetectionResult, *, run_at: datetime) -> int: ...


class DuplicateDetector:
    """Run the detection pipeline for one target listing."""

    def __init__(
        self,
        source: ListingSource,
        *,
        suppression: SuppressionSource | None = None,
        selector: CandidateSelector | None = None,
        scorers: dict[SignalName, Scorer] | None = None,
        composite: CompositeScorer | None = None,
        run_recorder: RunRecorder | None = None,
    ) -> None:
        """Initialize the detector.

        Args:
            source: Listing repository (optionally cached).
            suppression: Ledger consulted to exclude resolved pairs.
            selector: Candidate selector; defaults to a 150m radius.
            scorers: Signal registry; defaults to :data:`SIGNAL_SCORERS`.
            composite: Composite scorer; defaults to the standard weights.
            run_recorder: If set, every completed run is recorded.
        """
        self.source = source
        self.suppression = suppression
        self.selector = selector or CandidateSelector()
        self.scorers = scorers if scorers is not None else dict(SIGNAL_SCORERS)
        self.composite = composite or CompositeScorer()
        self.run_recorder = run_recorder

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        source: ListingSource,
        *,
        suppression: SuppressionSource | None = None,
        run_recorder: RunRecorder | None = None,
    ) -> "DuplicateDetector":
        """Build a detector whose radius, weights and thresholds come from settings."""
        return cls(
            source,
            suppression=suppression,
            selector=CandidateSelector(
                radius_meters=settings.candidate_radius_meters,
                address_prefix_tokens=settings.address_prefix_tokens,
            ),
            scorers=build_scorers(settings.candidate_radius_meters),
            composite=CompositeScorer(
                weights=settings.get_weights(),
                evidence_rules=build_evidence_rules(
                    settings.get_evidence_thresholds(),
                    evidence_distance_meters=settings.evidence_distance_meters,
                ),
            ),
            run_recorder=run_recorder if settings.record_detection_runs else None,
        )

    def score_pair(self, target: Listing, candidate: Listing) -> DuplicateMatch | None:
        """Score one pair.

        Returns:
            A DuplicateMatch, or None if the pair falls below the lowest
            confidence band.
        """
        breakdown = score_signals(target, candidate, self.scorers)
        exact = {SignalName.TITLE} if titles_identical(target, candidate) else set()
        result = self.composite.score(breakdown, exact=exact)
        if result.confidence is None:
            return None
        return DuplicateMatch(
            candidate_id=candidate.id,
            breakdown=breakdown,
            total_score=result.total_score,
            confidence=result.confidence,
            evidence=result.evidence,
        )

    async def load_target(self, listing_id: str) -> Listing:
        """Fetch the target listing, raising a DetectionInputError subclass if unusable."""
        if not listing_id or not listing_id.strip():
            raise InvalidListingIdError("listing_id must be a non-empty string")
        try:
            target = await self.source.get_listing(listing_id)
        except ValueError as e:
            raise MalformedListingError(f"Listing {listing_id!r} is malformed: {e}") from e
        if target is None:
            raise ListingNotFoundError(listing_id)
        return target

    async def detect(
        self,
        listing_id: str,
        mode: DetectionMethod = DetectionMethod.INCREMENTAL,
        *,
        force: bool = False,
    ) -> DetectionResult:
        """Find plausible duplicates of one listing.

        Args:
            listing_id: Target listing id.
            mode: Detection method reported on the result.
            force: If True, pairs already confirmed or dismissed in the
                ledger are scored again instead of being suppressed.

        Returns:
            DetectionResult with matches ranked by descending total score.

        Raises:
            DetectionInputError: If the id is blank, unknown or unreadable.
                No detection is attempted.
        """
        run_at = datetime.now(UTC)
        target = await self.load_target(listing_id)
        logger.debug("detection_started", listing_id=listing_id, mode=mode.value, forced=force)

        suppressed: set[str] = set()
        if self.suppression is not None and not force:
            suppressed = await self.suppression.suppressed_partners(target.id)

        selection = await self.selector.select_candidates(
            target, self.source, mode, suppressed=suppressed, force=force
        )

        matches: list[DuplicateMatch] = []
        skipped: list[str] = []
        for candidate in selection.candidates:
            try:
                match = self.score_pair(target, candidate)
            except Exception as e:
                logger.warning(
                    "candidate_scoring_failed",
                    listing_id=target.id,
                    candidate_id=candidate.id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                skipped.append(candidate.id)
                continue
            if match is not None:
                matches.append(match)

        matches.sort(key=lambda m: (-m.total_score, m.candidate_id))

        result = DetectionResult(
            listing_id=target.id,
            matches=tuple(matches),
            method=mode,
            completed_at=datetime.now(UTC),
            candidates_considered=len(selection.candidates),
            candidates_skipped=tuple(skipped),
            forced=force,
        )

        logger.info(
            "detection_complete",
            listing_id=target.id,
            mode=mode.value,
            candidates=len(selection.candidates),
            suppressed=selection.suppressed,
            skipped=len(skipped),
            matches=result.total_matches,
            highest_score=result.highest_match_score,
        )

        if self.run_recorder is not None:
            try:
                await self.run_recorder.record_detection_run(result, run_at=run_at)
            except Exception as e:
                logger.warning("detection_run_record_failed", listing_id=target.id, error=str(e))

        return result
