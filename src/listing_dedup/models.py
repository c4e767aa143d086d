"""Pydantic models for listings, duplicate matches and ledger entries."""

from collections.abc import Mapping
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class SignalName(StrEnum):
    """Independent similarity signals compared for every candidate pair."""

    ADDRESS = "address"
    GEOGRAPHY = "geography"
    TITLE = "title"
    DESCRIPTION = "description"
    AMENITIES = "amenities"
    OWNER = "owner"


class ConfidenceTier(StrEnum):
    """Coarse bucket used to prioritise moderator review."""

    HIGH = "high"  # >= 0.75
    MEDIUM = "medium"  # [0.5, 0.75)
    LOW = "low"  # [0.3, 0.5)


class DetectionMethod(StrEnum):
    """How a duplicate relationship was found."""

    INCREMENTAL = "incremental"
    FULL_SCAN = "full_scan"
    MANUAL = "manual"


class LedgerStatus(StrEnum):
    """Moderation status of a duplicate pair."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    DISMISSED = "dismissed"

    @property
    def is_resolved(self) -> bool:
        return self is not LedgerStatus.PENDING


class Decision(StrEnum):
    """A moderator decision about a pending pair."""

    CONFIRMED = "confirmed"
    DISMISSED = "dismissed"

    @property
    def status(self) -> LedgerStatus:
        return LedgerStatus(self.value)


def _coerce_amenities(value: Any) -> frozenset[str]:
    """Flatten amenity flags into a set of names.

    Boolean flags contribute their name when true. Categorical values
    contribute ``name:value`` so that e.g. ``heating: gas`` and
    ``heating: electric`` are different amenities.
    """
    if value is None:
        return frozenset()
    if isinstance(value, Mapping):
        flags: set[str] = set()
        for name, flag in value.items():
            key = str(name).strip().lower()
            if not key:
                continue
            if isinstance(flag, bool):
                if flag:
                    flags.add(key)
            elif isinstance(flag, str):
                if flag.strip():
                    flags.add(f"{key}:{flag.strip().lower()}")
            elif flag:
                flags.add(key)
        return frozenset(flags)
    return frozenset(str(v).strip().lower() for v in value if str(v).strip())


class Listing(BaseModel):
    """A rental listing as read from the listing repository."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    title: str = ""
    description: str | None = None
    address: str | None = None
    canonical_address: str | None = None
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)
    owner_id: str | None = None
    amenities: frozenset[str] = frozenset()
    image_keys: tuple[str, ...] = ()
    is_active: bool = True
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime | None = None

    @field_validator("amenities", mode="before")
    @classmethod
    def normalize_amenities(cls, v: Any) -> frozenset[str]:
        """Accept a flag mapping or an iterable of names."""
        return _coerce_amenities(v)

    @model_validator(mode="after")
    def check_coordinates(self) -> Self:
        """Ensure both lat and lon are present or both are absent."""
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("Both latitude and longitude must be provided, or neither")
        return self

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @property
    def image_count(self) -> int:
        return len(self.image_keys)


class SignalScoreBreakdown(BaseModel):
    """Per-signal similarity scores for one (target, candidate) pair."""

    model_config = ConfigDict(frozen=True)

    address: float = Field(default=0.0, ge=0.0, le=1.0)
    geography: float = Field(default=0.0, ge=0.0, le=1.0)
    title: float = Field(default=0.0, ge=0.0, le=1.0)
    description: float = Field(default=0.0, ge=0.0, le=1.0)
    amenities: float = Field(default=0.0, ge=0.0, le=1.0)
    owner: float = Field(default=0.0, ge=0.0, le=1.0)

    def get(self, signal: SignalName) -> float:
        """Score for a single signal."""
        value: float = getattr(self, signal.value)
        return value

    def to_dict(self) -> dict[str, float]:
        """Convert to dict for logging and persistence."""
        return {signal.value: self.get(signal) for signal in SignalName}


class DuplicateMatch(BaseModel):
    """A candidate judged plausibly the same property as the target."""

    model_config = ConfigDict(frozen=True)

    candidate_id: str
    breakdown: SignalScoreBreakdown
    total_score: float = Field(ge=0.0, le=1.0)
    confidence: ConfidenceTier
    evidence: tuple[str, ...] = ()


class DetectionResult(BaseModel):
    """Ranked output of one detection run for a single target listing."""

    model_config = ConfigDict(frozen=True)

    listing_id: str
    matches: tuple[DuplicateMatch, ...] = ()
    method: DetectionMethod
    completed_at: datetime
    candidates_considered: int = 0
    candidates_skipped: tuple[str, ...] = ()
    forced: bool = False

    @property
    def total_matches(self) -> int:
        return len(self.matches)

    @property
    def highest_match_score(self) -> float:
        return self.matches[0].total_score if self.matches else 0.0


class PairKey(BaseModel):
    """Order-independent identifier for a pair of listings.

    Build with :meth:`of` so that ``(A, B)`` and ``(B, A)`` produce the same key.
    """

    model_config = ConfigDict(frozen=True)

    canonical_id: str = Field(min_length=1)
    duplicate_id: str = Field(min_length=1)

    @model_validator(mode="after")
    def check_order(self) -> Self:
        if self.canonical_id >= self.duplicate_id:
            raise ValueError("canonical_id must sort strictly before duplicate_id")
        return self

    @classmethod
    def of(cls, listing_a: str, listing_b: str) -> "PairKey":
        """Canonicalise an unordered pair of listing ids."""
        if listing_a == listing_b:
            raise ValueError(f"Cannot pair listing {listing_a!r} with itself")
        low, high = sorted((listing_a, listing_b))
        return cls(canonical_id=low, duplicate_id=high)

    def other(self, listing_id: str) -> str:
        """Return the partner of ``listing_id`` in this pair."""
        if listing_id == self.canonical_id:
            return self.duplicate_id
        if listing_id == self.duplicate_id:
            return self.canonical_id
        raise KeyError(listing_id)

    def __str__(self) -> str:
        return f"{self.canonical_id}:{self.duplicate_id}"


class DuplicateLedgerEntry(BaseModel):
    """A persisted moderation record for one unordered pair."""

    model_config = ConfigDict(frozen=True)

    canonical_id: str
    duplicate_id: str
    score: float = Field(ge=0.0, le=1.0)
    breakdown: SignalScoreBreakdown | None = None
    detection_method: DetectionMethod
    status: LedgerStatus
    reviewer_id: str | None = None
    created_at: datetime
    resolved_at: datetime | None = None

    @property
    def pair(self) -> PairKey:
        return PairKey(canonical_id=self.canonical_id, duplicate_id=self.duplicate_id)


class FullScanSummary(BaseModel):
    """Outcome of one full-scan batch, including per-listing failures."""

    batch_id: int
    status: str
    total_listings: int = 0
    scanned: int = 0
    skipped_resumed: int = 0
    matches_found: int = 0
    pending_recorded: int = 0
    failures: dict[str, str] = Field(default_factory=dict)
    started_at: datetime
    completed_at: datetime | None = None
