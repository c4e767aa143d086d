"""Listing repository: read access to listings, filterable for candidate selection."""

from __future__ import annotations

from collections.abc import Callable, Coroutine, Iterable
from typing import Any

import aiosqlite

from listing_dedup.db.row_mappers import listing_to_params, row_to_listing
from listing_dedup.logging import get_logger
from listing_dedup.models import Listing
from listing_dedup.utils.geo import BoundingBox

logger = get_logger(__name__)

_LISTING_COLUMNS = (
    "id",
    "title",
    "description",
    "address",
    "canonical_address",
    "normalized_address",
    "latitude",
    "longitude",
    "owner_id",
    "amenities_json",
    "image_keys_json",
    "is_active",
    "created_at",
    "updated_at",
)


class ListingRepository:
    """SQLite adapter for the listing repository collaborator.

    The candidate filters (bounding box, address prefix, owner) run as
    indexed SQL queries so the scorers never see the whole corpus.
    """

    def __init__(
        self, get_connection: Callable[[], Coroutine[Any, Any, aiosqlite.Connection]]
    ) -> None:
        self._get_connection = get_connection

    def _map_rows(self, rows: Iterable[aiosqlite.Row]) -> list[Listing]:
        """Map rows to listings, dropping malformed rows with a warning."""
        listings: list[Listing] = []
        for row in rows:
            try:
                listings.append(row_to_listing(row))
            except ValueError as e:
                logger.warning("malformed_listing_row", listing_id=row["id"], error=str(e))
        return listings

    async def save_listing(self, listing: Listing) -> None:
        """Insert or update a listing."""
        conn = await self._get_connection()
        params = listing_to_params(listing)
        columns = ", ".join(_LISTING_COLUMNS)
        placeholders = ", ".join(f":{c}" for c in _LISTING_COLUMNS)
        updates = ", ".join(f"{c} = excluded.{c}" for c in _LISTING_COLUMNS if c != "id")
        await conn.execute(
            f"""
            INSERT INTO listings ({columns}) VALUES ({placeholders})
            ON CONFLICT(id) DO UPDATE SET {updates}
            """,
            params,
        )
        await conn.commit()

    async def save_listings(self, listings: Iterable[Listing]) -> None:
        """Insert or update several listings."""
        for listing in listings:
            await self.save_listing(listing)

    async def set_active(self, listing_id: str, active: bool) -> None:
        """Activate or deactivate a listing."""
        conn = await self._get_connection()
        await conn.execute(
            "UPDATE listings SET is_active = ? WHERE id = ?", (int(active), listing_id)
        )
        await conn.commit()

    async def get_listing(self, listing_id: str) -> Listing | None:
        """Get a single listing by id.

        Raises:
            ValueError: If the stored row is malformed.
        """
        conn = await self._get_connection()
        cursor = await conn.execute("SELECT * FROM listings WHERE id = ?", (listing_id,))
        row = await cursor.fetchone()
        if row is None:
            return None
        return row_to_listing(row)

    async def find_in_bounding_box(self, box: BoundingBox) -> list[Listing]:
        """Active listings with coordinates inside ``box``.

        A box wrapping the antimeridian is queried as two longitude ranges.
        """
        ranges = box.longitude_ranges()
        lon_clause = " OR ".join("longitude BETWEEN ? AND ?" for _ in ranges)
        params: list[float] = [box.min_lat, box.max_lat]
        for lo, hi in ranges:
            params.extend((lo, hi))

        conn = await self._get_connection()
        cursor = await conn.execute(
            f"""
            SELECT * FROM listings
            WHERE is_active = 1
              AND latitude BETWEEN ? AND ?
              AND ({lon_clause})
            """,
            params,
        )
        return self._map_rows(await cursor.fetchall())

    async def find_by_address_prefix(self, prefix: str) -> list[Listing]:
        """Active listings whose normalized address starts with the whole-token ``prefix``.

        Uses a range scan: every string beginning with ``prefix + " "`` sorts
        before ``prefix + "!"``.
        """
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            SELECT * FROM listings
            WHERE is_active = 1
              AND (normalized_address = ?
                   OR (normalized_address >= ? AND normalized_address < ?))
            """,
            (prefix, f"{prefix} ", f"{prefix}!"),
        )
        return self._map_rows(await cursor.fetchall())

    async def find_by_owner(self, owner_id: str) -> list[Listing]:
        """Active listings from the same owner."""
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT * FROM listings WHERE is_active = 1 AND owner_id = ?",
            (owner_id,),
        )
        return self._map_rows(await cursor.fetchall())

    async def list_active_ids(self) -> list[str]:
        """Ids of all active listings, oldest first."""
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT id FROM listings WHERE is_active = 1 ORDER BY created_at, id"
        )
        rows = await cursor.fetchall()
        return [row["id"] for row in rows]

    async def count(self) -> int:
        """Total number of listings."""
        conn = await self._get_connection()
        cursor = await conn.execute("SELECT COUNT(*) AS n FROM listings")
        row = await cursor.fetchone()
        return int(row["n"]) if row else 0
