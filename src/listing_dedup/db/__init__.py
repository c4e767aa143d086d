"""Database storage for listings, the duplicate ledger and run records."""

from listing_dedup.db.ledger import (
    DuplicateLedger,
    LedgerError,
    LedgerReadError,
    LedgerTransitionError,
    LedgerWriteError,
)
from listing_dedup.db.listings import ListingRepository
from listing_dedup.db.storage import DedupStorage

__all__ = [
    "DedupStorage",
    "DuplicateLedger",
    "LedgerError",
    "LedgerReadError",
    "LedgerTransitionError",
    "LedgerWriteError",
    "ListingRepository",
]
