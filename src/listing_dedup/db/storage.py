"""SQLite storage for listings, the duplicate ledger and run records."""

from __future__ import annotations

from pathlib import Path

import aiosqlite

from listing_dedup.db.ledger import DuplicateLedger
from listing_dedup.db.listings import ListingRepository
from listing_dedup.db.runs import RunRepository
from listing_dedup.logging import get_logger

__all__ = ["DedupStorage"]

logger = get_logger(__name__)


class DedupStorage:
    """Owns the SQLite connection and schema; exposes one repository per concern.

    Attributes:
        listings: Listing repository adapter (candidate lookups).
        ledger: Duplicate ledger (moderation decisions).
        runs: Detection runs and full-scan batch checkpoints.
    """

    def __init__(self, db_path: str) -> None:
        """Initialize storage with database path.

        Args:
            db_path: Path to SQLite database file, or ":memory:" for in-memory.
        """
        self.db_path = db_path
        self._conn: aiosqlite.Connection | None = None
        self._ensure_directory()
        self.listings = ListingRepository(self._get_connection)
        self.ledger = DuplicateLedger(self._get_connection)
        self.runs = RunRepository(self._get_connection)

    def _ensure_directory(self) -> None:
        """Ensure the directory for the database exists."""
        if self.db_path != ":memory:":
            path = Path(self.db_path)
            path.parent.mkdir(parents=True, exist_ok=True)

    async def _get_connection(self) -> aiosqlite.Connection:
        """Get or create the database connection."""
        if self._conn is None:
            self._conn = await aiosqlite.connect(self.db_path)
            self._conn.row_factory = aiosqlite.Row
            await self._conn.execute("PRAGMA journal_mode=WAL")
            await self._conn.execute("PRAGMA busy_timeout=5000")
            await self._conn.execute("PRAGMA synchronous=NORMAL")
            await self._conn.execute("PRAGMA foreign_keys=ON")
        return self._conn

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    async def initialize(self) -> None:
        """Initialize the database schema."""
        conn = await self._get_connection()
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS listings (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL DEFAULT '',
                description TEXT,
                address TEXT,
                canonical_address TEXT,
                normalized_address TEXT,
                latitude REAL,
                longitude REAL,
                owner_id TEXT,
                amenities_json TEXT,
                image_keys_json TEXT,
                is_active INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL,
                updated_at TEXT
            )
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_listings_coordinates
            ON listings(latitude, longitude)
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_listings_normalized_address
            ON listings(normalized_address)
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_listings_owner
            ON listings(owner_id)
        """)

        # One row per unordered pair; canonical_id always sorts first
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS duplicate_ledger (
                canonical_id TEXT NOT NULL,
                duplicate_id TEXT NOT NULL,
                score REAL NOT NULL,
                breakdown_json TEXT,
                detection_method TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending'
                    CHECK (status IN ('pending', 'confirmed', 'dismissed')),
                reviewer_id TEXT,
                created_at TEXT NOT NULL,
                resolved_at TEXT,
                UNIQUE(canonical_id, duplicate_id),
                CHECK (canonical_id < duplicate_id)
            )
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_ledger_duplicate
            ON duplicate_ledger(duplicate_id)
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_ledger_status
            ON duplicate_ledger(status)
        """)

        # Audit trail of ledger writes
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS ledger_events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                canonical_id TEXT NOT NULL,
                duplicate_id TEXT NOT NULL,
                event TEXT NOT NULL,
                actor_id TEXT,
                metadata_json TEXT,
                created_at TEXT NOT NULL
            )
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_ledger_events_pair
            ON ledger_events(canonical_id, duplicate_id)
        """)

        await conn.execute("""
            CREATE TABLE IF NOT EXISTS detection_runs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                listing_id TEXT NOT NULL,
                detection_method TEXT NOT NULL,
                total_matches INTEGER DEFAULT 0,
                highest_match_score REAL,
                candidates_considered INTEGER DEFAULT 0,
                candidates_skipped INTEGER DEFAULT 0,
                forced INTEGER DEFAULT 0,
                run_at TEXT NOT NULL,
                completed_at TEXT
            )
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_detection_runs_listing
            ON detection_runs(listing_id)
        """)

        await conn.execute("""
            CREATE TABLE IF NOT EXISTS scan_batches (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                started_at TEXT NOT NULL,
                completed_at TEXT,
                status TEXT NOT NULL DEFAULT 'running',
                total_listings INTEGER DEFAULT 0,
                scanned_count INTEGER DEFAULT 0,
                matches_found INTEGER DEFAULT 0,
                pending_recorded INTEGER DEFAULT 0,
                failed_count INTEGER DEFAULT 0,
                error_message TEXT,
                duration_seconds REAL
            )
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS scan_progress (
                batch_id INTEGER NOT NULL,
                listing_id TEXT NOT NULL,
                status TEXT NOT NULL,
                error_message TEXT,
                completed_at TEXT NOT NULL,
                PRIMARY KEY (batch_id, listing_id),
                FOREIGN KEY (batch_id) REFERENCES scan_batches(id)
            )
        """)

        await conn.commit()
        logger.debug("storage_initialized", db_path=self.db_path)
