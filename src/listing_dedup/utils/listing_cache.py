"""Read-through in-memory cache in front of the listing repository.

Entries are keyed by listing id and must be invalidated whenever the
listing changes. The repository stays the source of truth: filtered
queries always go to it, and their results refresh the cache.
"""

from typing import TYPE_CHECKING

from listing_dedup.logging import get_logger
from listing_dedup.models import Listing
from listing_dedup.utils.geo import BoundingBox

if TYPE_CHECKING:
    from listing_dedup.detection.candidates import ListingSource

logger = get_logger(__name__)


class CachedListingSource:
    """Wrap a listing source with a per-id read-through cache."""

    def __init__(self, source: "ListingSource", *, max_entries: int = 10_000) -> None:
        self._source = source
        self._max_entries = max_entries
        self._cache: dict[str, Listing] = {}
        self.hits = 0
        self.misses = 0

    def _store(self, listing: Listing) -> None:
        if listing.id not in self._cache and len(self._cache) >= self._max_entries:
            # Evict the oldest insertion
            self._cache.pop(next(iter(self._cache)))
        self._cache[listing.id] = listing

    def _store_all(self, listings: list[Listing]) -> list[Listing]:
        for listing in listings:
            self._store(listing)
        return listings

    def invalidate(self, listing_id: str) -> None:
        """Drop a listing after it was created, updated or deactivated."""
        if self._cache.pop(listing_id, None) is not None:
            logger.debug("listing_cache_invalidated", listing_id=listing_id)

    def clear(self) -> None:
        self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)

    async def get_listing(self, listing_id: str) -> Listing | None:
        cached = self._cache.get(listing_id)
        if cached is not None:
            self.hits += 1
            return cached
        self.misses += 1
        listing = await self._source.get_listing(listing_id)
        if listing is not None:
            self._store(listing)
        return listing

    async def find_in_bounding_box(self, box: BoundingBox) -> list[Listing]:
        return self._store_all(await self._source.find_in_bounding_box(box))

    async def find_by_address_prefix(self, prefix: str) -> list[Listing]:
        return self._store_all(await self._source.find_by_address_prefix(prefix))

    async def find_by_owner(self, owner_id: str) -> list[Listing]:
        return self._store_all(await self._source.find_by_owner(owner_id))

    async def list_active_ids(self) -> list[str]:
        return await self._source.list_active_ids()
