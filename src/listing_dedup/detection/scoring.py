"""Composite scoring: weighted fusion, confidence tiers and evidence strings."""

import math
from collections.abc import Collection, Mapping
from dataclasses import dataclass
from typing import Final

from listing_dedup.models import ConfidenceTier, SignalName, SignalScoreBreakdown

# Tier lower bounds (closed below, open above)
HIGH_THRESHOLD: Final = 0.75
MEDIUM_THRESHOLD: Final = 0.5
LOW_THRESHOLD: Final = 0.3

# Default fusion weights; address and geography dominate, owner overlap is weakest
DEFAULT_WEIGHTS: Final[dict[SignalName, float]] = {
    SignalName.ADDRESS: 0.35,
    SignalName.GEOGRAPHY: 0.25,
    SignalName.TITLE: 0.15,
    SignalName.DESCRIPTION: 0.10,
    SignalName.AMENITIES: 0.10,
    SignalName.OWNER: 0.05,
}

DEFAULT_EVIDENCE_THRESHOLDS: Final[dict[SignalName, float]] = {
    SignalName.ADDRESS: 0.7,
    SignalName.GEOGRAPHY: 1.0 - 50.0 / 150.0,  # within 50m of a 150m radius
    SignalName.TITLE: 0.7,
    SignalName.DESCRIPTION: 0.7,
    SignalName.AMENITIES: 0.6,
    SignalName.OWNER: 0.5,
}

# Total scores are reported to 3 decimals
_SCORE_PRECISION: Final = 3


@dataclass(frozen=True)
class EvidenceRule:
    """Disclose ``text`` when a signal's score clears ``threshold``.

    An ``exact_only`` rule also needs the compared inputs to be exactly
    equal, which the score alone cannot show.
    """

    signal: SignalName
    threshold: float
    text: str
    inclusive: bool = False
    exact_only: bool = False

    def applies(self, score: float) -> bool:
        return score >= self.threshold if self.inclusive else score > self.threshold


@dataclass(frozen=True)
class CompositeScore:
    """Fused result for one pair."""

    total_score: float
    confidence: ConfidenceTier | None
    evidence: tuple[str, ...]

    @property
    def is_reportable(self) -> bool:
        """Whether the pair clears the lowest confidence band."""
        return self.confidence is not None


def classify_confidence(total_score: float) -> ConfidenceTier | None:
    """Map a total score to a confidence tier, or None below the lowest band."""
    if total_score >= HIGH_THRESHOLD:
        return ConfidenceTier.HIGH
    if total_score >= MEDIUM_THRESHOLD:
        return ConfidenceTier.MEDIUM
    if total_score >= LOW_THRESHOLD:
        return ConfidenceTier.LOW
    return None


def build_evidence_rules(
    thresholds: Mapping[SignalName, float] | None = None,
    *,
    evidence_distance_meters: float = 50.0,
) -> tuple[EvidenceRule, ...]:
    """Evidence rules in display order.

    Only the first matching rule per signal contributes, so an identical
    title is not also reported as a similar one.
    """
    t = {**DEFAULT_EVIDENCE_THRESHOLDS, **(thresholds or {})}
    return (
        EvidenceRule(SignalName.ADDRESS, t[SignalName.ADDRESS], "Matching address"),
        EvidenceRule(
            SignalName.GEOGRAPHY,
            t[SignalName.GEOGRAPHY],
            f"Within {evidence_distance_meters:g}m",
            inclusive=True,
        ),
        EvidenceRule(SignalName.TITLE, 1.0, "Identical title", inclusive=True, exact_only=True),
        EvidenceRule(SignalName.TITLE, t[SignalName.TITLE], "Similar title"),
        EvidenceRule(
            SignalName.DESCRIPTION, t[SignalName.DESCRIPTION], "Near-identical description"
        ),
        EvidenceRule(SignalName.AMENITIES, t[SignalName.AMENITIES], "Shared amenities profile"),
        EvidenceRule(SignalName.OWNER, t[SignalName.OWNER], "Same listing owner"),
    )


class CompositeScorer:
    """Fuse six signal scores into a total, a confidence tier and evidence."""

    def __init__(
        self,
        weights: Mapping[SignalName, float] | None = None,
        evidence_rules: tuple[EvidenceRule, ...] | None = None,
    ) -> None:
        """Initialize the scorer.

        Args:
            weights: Non-negative weight per signal summing to 1. Signals
                missing from the mapping get weight 0.
            evidence_rules: Disclosure rules; defaults to :func:`build_evidence_rules`.
        """
        resolved = dict(DEFAULT_WEIGHTS if weights is None else weights)
        if any(w < 0 for w in resolved.values()):
            raise ValueError("Signal weights must be non-negative")
        total = sum(resolved.values())
        if not math.isclose(total, 1.0, abs_tol=1e-6):
            raise ValueError(f"Signal weights must sum to 1.0, got {total:.4f}")
        self.weights = {signal: resolved.get(signal, 0.0) for signal in SignalName}
        self.evidence_rules = (
            evidence_rules if evidence_rules is not None else build_evidence_rules()
        )

    def total(self, breakdown: SignalScoreBreakdown) -> float:
        """Weighted sum of component scores, rounded for stable reporting."""
        raw = sum(weight * breakdown.get(signal) for signal, weight in self.weights.items())
        return round(min(1.0, max(0.0, raw)), _SCORE_PRECISION)

    def evidence(
        self,
        breakdown: SignalScoreBreakdown,
        *,
        exact: Collection[SignalName] | None = None,
    ) -> tuple[str, ...]:
        """Human-readable reasons for the match. Descriptive only.

        Args:
            breakdown: Per-signal scores.
            exact: Signals whose inputs are exactly equal. When None, a
                maximal score is taken as exact.
        """
        items: list[str] = []
        disclosed: set[SignalName] = set()
        for rule in self.evidence_rules:
            if rule.signal in disclosed:
                continue
            if rule.exact_only and exact is not None and rule.signal not in exact:
                continue
            if rule.applies(breakdown.get(rule.signal)):
                items.append(rule.text)
                disclosed.add(rule.signal)
        return tuple(items)

    def score(
        self,
        breakdown: SignalScoreBreakdown,
        *,
        exact: Collection[SignalName] | None = None,
    ) -> CompositeScore:
        """Fuse a breakdown into total score, confidence tier and evidence."""
        total = self.total(breakdown)
        return CompositeScore(
            total_score=total,
            confidence=classify_confidence(total),
            evidence=self.evidence(breakdown, exact=exact),
        )
