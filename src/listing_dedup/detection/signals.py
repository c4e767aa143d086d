"""Pure signal scorers for duplicate-listing matching.

Every scorer takes ``(target, candidate)`` and returns a float in [0, 1].
A missing input on either side scores 0.0 rather than raising, so each
signal is computable independently of the others.
"""

from collections.abc import Callable, Collection
from typing import Final

from listing_dedup.models import Listing, SignalName, SignalScoreBreakdown
from listing_dedup.utils.address import (
    address_tokens,
    normalize_address,
    normalize_phrase,
    normalize_text,
)
from listing_dedup.utils.geo import haversine_distance

Scorer = Callable[[Listing, Listing], float]

# Distance at which the geography score reaches 0 (matches the candidate radius)
DEFAULT_RADIUS_METERS: Final = 150.0


def jaccard(a: Collection[str], b: Collection[str]) -> float:
    """Intersection over union of two token sets; 0.0 when both are empty."""
    set_a, set_b = set(a), set(b)
    union = set_a | set_b
    if not union:
        return 0.0
    return len(set_a & set_b) / len(union)


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, value))


def _address_of(listing: Listing) -> str:
    return normalize_address(listing.canonical_address or listing.address)


def address_score(target: Listing, candidate: Listing) -> float:
    """Exact normalized-address match scores 1.0, else address-token Jaccard."""
    addr1 = _address_of(target)
    addr2 = _address_of(candidate)
    if not addr1 or not addr2:
        return 0.0
    if addr1 == addr2:
        return 1.0
    return _clamp(
        jaccard(
            address_tokens(target.canonical_address or target.address),
            address_tokens(candidate.canonical_address or candidate.address),
        )
    )


def geography_score(
    target: Listing, candidate: Listing, radius_meters: float = DEFAULT_RADIUS_METERS
) -> float:
    """Linear proximity score.

    Returns 1.0 at 0m, decaying linearly to 0.0 at ``radius_meters``.

    Args:
        target: Target listing.
        candidate: Candidate listing.
        radius_meters: Distance at which the score reaches zero.

    Returns:
        Score in [0.0, 1.0], or 0.0 if either listing lacks coordinates.
    """
    if (
        target.latitude is None
        or target.longitude is None
        or candidate.latitude is None
        or candidate.longitude is None
    ):
        return 0.0

    distance = haversine_distance(
        target.latitude, target.longitude, candidate.latitude, candidate.longitude
    )
    if distance >= radius_meters:
        return 0.0
    return _clamp(1.0 - distance / radius_meters)


def title_score(target: Listing, candidate: Listing) -> float:
    """Token-set overlap of normalized titles; identical titles score 1.0."""
    return _clamp(jaccard(normalize_text(target.title), normalize_text(candidate.title)))


def description_score(target: Listing, candidate: Listing) -> float:
    """Token-set overlap of descriptions; a missing description scores 0.0."""
    if not target.description or not candidate.description:
        return 0.0
    return _clamp(
        jaccard(normalize_text(target.description), normalize_text(candidate.description))
    )


def amenity_score(target: Listing, candidate: Listing) -> float:
    """Jaccard over amenity flags. Two empty sets score 0.0, not 1.0."""
    return _clamp(jaccard(target.amenities, candidate.amenities))


def owner_score(target: Listing, candidate: Listing) -> float:
    """Binary: 1.0 for the same (non-empty) owner, else 0.0."""
    if not target.owner_id or not candidate.owner_id:
        return 0.0
    return 1.0 if target.owner_id == candidate.owner_id else 0.0


def titles_identical(target: Listing, candidate: Listing) -> bool:
    """Same title words in the same order, ignoring case and punctuation.

    Stricter than a title score of 1.0, which only needs equal token sets.
    """
    title = normalize_phrase(target.title)
    return bool(title) and title == normalize_phrase(candidate.title)


def make_geography_scorer(radius_meters: float) -> Scorer:
    """Bind the decay radius so the geography scorer fits the common interface."""

    def _score(target: Listing, candidate: Listing) -> float:
        return geography_score(target, candidate, radius_meters)

    return _score


def build_scorers(radius_meters: float = DEFAULT_RADIUS_METERS) -> dict[SignalName, Scorer]:
    """Ordered signal registry used by the detector.

    New signal types are added here without touching the composite scorer.
    """
    return {
        SignalName.ADDRESS: address_score,
        SignalName.GEOGRAPHY: make_geography_scorer(radius_meters),
        SignalName.TITLE: title_score,
        SignalName.DESCRIPTION: description_score,
        SignalName.AMENITIES: amenity_score,
        SignalName.OWNER: owner_score,
    }


SIGNAL_SCORERS: Final[dict[SignalName, Scorer]] = build_scorers()


def score_signals(
    target: Listing,
    candidate: Listing,
    scorers: dict[SignalName, Scorer] | None = None,
) -> SignalScoreBreakdown:
    """Run every registered scorer for one pair.

    Signals without a registered scorer keep the default score of 0.0.
    """
    registry = SIGNAL_SCORERS if scorers is None else scorers
    return SignalScoreBreakdown(
        **{signal.value: scorer(target, candidate) for signal, scorer in registry.items()}
    )
