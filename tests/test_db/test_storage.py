"""Tests for listing storage with SQLite."""

from collections.abc import Callable
from datetime import UTC, datetime

import pytest

from listing_dedup.db.storage import DedupStorage
from listing_dedup.models import Listing
from listing_dedup.utils.geo import bounding_box


class TestInitialize:
    @pytest.mark.asyncio
    async def test_idempotent(self, storage: DedupStorage) -> None:
        await storage.initialize()
        assert await storage.listings.count() == 0

    @pytest.mark.asyncio
    async def test_file_database_creates_directory(self, tmp_path) -> None:
        db_path = tmp_path / "nested" / "listings.db"
        storage = DedupStorage(str(db_path))
        await storage.initialize()
        await storage.close()
        assert db_path.exists()


class TestListingRepository:
    @pytest.mark.asyncio
    async def test_round_trip(self, storage: DedupStorage, listing_a: Listing) -> None:
        listing = listing_a.model_copy(
            update={"image_keys": ("img/1.jpg",), "updated_at": datetime(2025, 2, 1, tzinfo=UTC)}
        )
        await storage.listings.save_listing(listing)

        loaded = await storage.listings.get_listing("A")

        assert loaded == listing

    @pytest.mark.asyncio
    async def test_upsert_updates_existing(
        self, storage: DedupStorage, make_listing: Callable[..., Listing]
    ) -> None:
        listing = make_listing(id="L1", title="Before")
        await storage.listings.save_listing(listing)
        await storage.listings.save_listing(listing.model_copy(update={"title": "After"}))

        loaded = await storage.listings.get_listing("L1")
        assert loaded is not None and loaded.title == "After"
        assert await storage.listings.count() == 1

    @pytest.mark.asyncio
    async def test_get_missing(self, storage: DedupStorage) -> None:
        assert await storage.listings.get_listing("nope") is None

    @pytest.mark.asyncio
    async def test_bounding_box_query(
        self, storage: DedupStorage, make_listing: Callable[..., Listing]
    ) -> None:
        inside = make_listing(id="IN", latitude=47.5025, longitude=19.0635)
        outside = make_listing(id="OUT", latitude=47.6, longitude=19.0635)
        no_coords = make_listing(id="NONE")
        await storage.listings.save_listings([inside, outside, no_coords])

        found = await storage.listings.find_in_bounding_box(bounding_box(47.5025, 19.0635, 150))

        assert [listing.id for listing in found] == ["IN"]

    @pytest.mark.asyncio
    async def test_address_prefix_uses_normalized_address(
        self, storage: DedupStorage, make_listing: Callable[..., Listing]
    ) -> None:
        await storage.listings.save_listings(
            [
                make_listing(id="L1", address="12 Kings Rd, Flat 3"),
                make_listing(id="L2", address="12 KINGS"),
                make_listing(id="L3", address="12 Kingston Road"),
                make_listing(id="L4", address="120 Kings Road"),
            ]
        )

        found = await storage.listings.find_by_address_prefix("12 kings")

        assert sorted(listing.id for listing in found) == ["L1", "L2"]

    @pytest.mark.asyncio
    async def test_inactive_listings_hidden_from_queries(
        self, storage: DedupStorage, make_listing: Callable[..., Listing]
    ) -> None:
        await storage.listings.save_listings(
            [make_listing(id="L1", owner_id="O1"), make_listing(id="L2", owner_id="O1")]
        )
        await storage.listings.set_active("L2", False)

        assert [listing.id for listing in await storage.listings.find_by_owner("O1")] == ["L1"]
        assert await storage.listings.list_active_ids() == ["L1"]
        # Still readable by id
        assert await storage.listings.get_listing("L2") is not None

    @pytest.mark.asyncio
    async def test_active_ids_oldest_first(
        self, storage: DedupStorage, make_listing: Callable[..., Listing]
    ) -> None:
        newer = make_listing(id="a-new", created_at=datetime(2025, 3, 1, tzinfo=UTC))
        older = make_listing(id="z-old", created_at=datetime(2025, 1, 1, tzinfo=UTC))
        await storage.listings.save_listings([newer, older])

        assert await storage.listings.list_active_ids() == ["z-old", "a-new"]

    @pytest.mark.asyncio
    async def test_malformed_row_raises_on_direct_read(self, storage: DedupStorage) -> None:
        conn = await storage._get_connection()
        await conn.execute(
            """
            INSERT INTO listings (id, latitude, is_active, created_at)
            VALUES ('BAD', 47.5, 1, '2025-01-01T00:00:00+00:00')
            """
        )
        await conn.commit()

        # Latitude without longitude fails validation
        with pytest.raises(ValueError):
            await storage.listings.get_listing("BAD")
        assert await storage.listings.find_by_owner("anyone") == []
