"""Candidate selection: prune the corpus to plausible duplicates before scoring."""

from collections.abc import Collection
from dataclasses import dataclass, field
from typing import Final, Protocol

from listing_dedup.logging import get_logger
from listing_dedup.models import DetectionMethod, Listing
from listing_dedup.utils.address import address_prefix, normalize_address
from listing_dedup.utils.geo import BoundingBox, bounding_box, haversine_distance

logger = get_logger(__name__)

# Co-location radius; listings this close are always candidates
DEFAULT_CANDIDATE_RADIUS_METERS: Final = 150.0


class ListingSource(Protocol):
    """Read access to the listing repository, filterable by geography and owner."""

    async def get_listing(self, listing_id: str) -> Listing | None: ...

    async def find_in_bounding_box(self, box: BoundingBox) -> list[Listing]: ...

    async def find_by_address_prefix(self, prefix: str) -> list[Listing]: ...

    async def find_by_owner(self, owner_id: str) -> list[Listing]: ...

    async def list_active_ids(self) -> list[str]: ...


@dataclass
class CandidateSelection:
    """Candidates chosen for one target, with per-filter counts for logging."""

    target_id: str
    candidates: list[Listing] = field(default_factory=list)
    geographic: int = 0
    address: int = 0
    owner: int = 0
    suppressed: int = 0

    @property
    def candidate_ids(self) -> list[str]:
        return [c.id for c in self.candidates]


class CandidateSelector:
    """Union of geographic, address-prefix and owner filters."""

    def __init__(
        self,
        *,
        radius_meters: float = DEFAULT_CANDIDATE_RADIUS_METERS,
        address_prefix_tokens: int = 2,
    ) -> None:
        """Initialize the selector.

        Args:
            radius_meters: Listings within this haversine distance are always
                candidates.
            address_prefix_tokens: Leading normalized-address tokens two
                listings must share to be address candidates.
        """
        self.radius_meters = radius_meters
        self.address_prefix_tokens = address_prefix_tokens

    async def select_candidates(
        self,
        target: Listing,
        source: ListingSource,
        mode: DetectionMethod = DetectionMethod.INCREMENTAL,
        *,
        suppressed: Collection[str] = (),
        force: bool = False,
    ) -> CandidateSelection:
        """Select the bounded set of listings worth full scoring.

        Both incremental and full-scan modes use this path; a full scan calls
        it once per listing.

        Args:
            target: Listing to find duplicates of.
            source: Listing repository.
            mode: Detection mode (logged only).
            suppressed: Partner ids whose pair with the target is already
                confirmed or dismissed.
            force: If True, suppressed pairs are kept as candidates.

        Returns:
            CandidateSelection ordered by listing id.
        """
        selection = CandidateSelection(target_id=target.id)
        found: dict[str, Listing] = {}

        def _add(listing: Listing) -> bool:
            if listing.id == target.id or not listing.is_active:
                return False
            is_new = listing.id not in found
            found[listing.id] = listing
            return is_new

        lat, lon = target.latitude, target.longitude
        if lat is not None and lon is not None:
            box = bounding_box(lat, lon, self.radius_meters)
            for listing in await source.find_in_bounding_box(box):
                if listing.latitude is None or listing.longitude is None:
                    continue
                distance = haversine_distance(lat, lon, listing.latitude, listing.longitude)
                if distance <= self.radius_meters and _add(listing):
                    selection.geographic += 1

        prefix = address_prefix(
            normalize_address(target.canonical_address or target.address),
            self.address_prefix_tokens,
        )
        if prefix:
            for listing in await source.find_by_address_prefix(prefix):
                if _add(listing):
                    selection.address += 1

        if target.owner_id:
            for listing in await source.find_by_owner(target.owner_id):
                if _add(listing):
                    selection.owner += 1

        suppressed_ids = set(suppressed)
        for listing_id in sorted(found):
            if listing_id in suppressed_ids and not force:
                selection.suppressed += 1
                continue
            selection.candidates.append(found[listing_id])

        logger.debug(
            "candidates_selected",
            target=target.id,
            mode=mode.value,
            count=len(selection.candidates),
            geographic=selection.geographic,
            address=selection.address,
            owner=selection.owner,
            suppressed=selection.suppressed,
            forced=force,
        )
        return selection
