"""Duplicate detection: candidate selection, signal scoring and orchestration."""

import importlib
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from listing_dedup.detection.candidates import (  # noqa: F401
        CandidateSelection,
        CandidateSelector,
        ListingSource,
    )
    from listing_dedup.detection.detector import (  # noqa: F401
        DetectionInputError,
        DuplicateDetector,
        InvalidListingIdError,
        ListingNotFoundError,
    )
    from listing_dedup.detection.full_scan import FullScanRunner  # noqa: F401
    from listing_dedup.detection.scoring import CompositeScorer  # noqa: F401

__all__ = [
    "CandidateSelection",
    "CandidateSelector",
    "CompositeScorer",
    "DetectionInputError",
    "DuplicateDetector",
    "FullScanRunner",
    "InvalidListingIdError",
    "ListingNotFoundError",
    "ListingSource",
]

_LAZY_IMPORTS: dict[str, tuple[str, str]] = {
    "CandidateSelection": (".candidates", "CandidateSelection"),
    "CandidateSelector": (".candidates", "CandidateSelector"),
    "CompositeScorer": (".scoring", "CompositeScorer"),
    "DetectionInputError": (".detector", "DetectionInputError"),
    "DuplicateDetector": (".detector", "DuplicateDetector"),
    "FullScanRunner": (".full_scan", "FullScanRunner"),
    "InvalidListingIdError": (".detector", "InvalidListingIdError"),
    "ListingNotFoundError": (".detector", "ListingNotFoundError"),
    "ListingSource": (".candidates", "ListingSource"),
}


def __getattr__(name: str) -> type:
    if name in _LAZY_IMPORTS:
        module_path, attr = _LAZY_IMPORTS[name]
        mod = importlib.import_module(module_path, __name__)
        val = getattr(mod, attr)
        globals()[name] = val
        return val  # type: ignore[no-any-return]
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
