"""Shared row-mapping utilities for database modules."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

import aiosqlite

from listing_dedup.models import (
    DetectionMethod,
    DuplicateLedgerEntry,
    LedgerStatus,
    Listing,
    SignalScoreBreakdown,
)
from listing_dedup.utils.address import normalize_address


def _parse_datetime(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def listing_to_params(listing: Listing) -> dict[str, Any]:
    """Column values for inserting or updating a listing row.

    The normalized address is stored alongside the raw fields so that
    address-prefix candidate lookups can use an index.
    """
    return {
        "id": listing.id,
        "title": listing.title,
        "description": listing.description,
        "address": listing.address,
        "canonical_address": listing.canonical_address,
        "normalized_address": normalize_address(listing.canonical_address or listing.address)
        or None,
        "latitude": listing.latitude,
        "longitude": listing.longitude,
        "owner_id": listing.owner_id,
        "amenities_json": json.dumps(sorted(listing.amenities)),
        "image_keys_json": json.dumps(list(listing.image_keys)),
        "is_active": int(listing.is_active),
        "created_at": listing.created_at.isoformat(),
        "updated_at": listing.updated_at.isoformat() if listing.updated_at else None,
    }


def row_to_listing(row: aiosqlite.Row) -> Listing:
    """Convert a database row to a Listing.

    Args:
        row: Database row from the listings table.

    Returns:
        Listing instance.

    Raises:
        ValueError: If the row holds malformed data (bad JSON, invalid
            coordinates, ...). Pydantic's ValidationError is a ValueError.
    """
    amenities = json.loads(row["amenities_json"]) if row["amenities_json"] else []
    image_keys = json.loads(row["image_keys_json"]) if row["image_keys_json"] else []
    return Listing(
        id=row["id"],
        title=row["title"] or "",
        description=row["description"],
        address=row["address"],
        canonical_address=row["canonical_address"],
        latitude=row["latitude"],
        longitude=row["longitude"],
        owner_id=row["owner_id"],
        amenities=amenities,
        image_keys=tuple(image_keys),
        is_active=bool(row["is_active"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=_parse_datetime(row["updated_at"]),
    )


def row_to_ledger_entry(row: aiosqlite.Row) -> DuplicateLedgerEntry:
    """Convert a duplicate_ledger row to a DuplicateLedgerEntry."""
    breakdown = (
        SignalScoreBreakdown.model_validate_json(row["breakdown_json"])
        if row["breakdown_json"]
        else None
    )
    return DuplicateLedgerEntry(
        canonical_id=row["canonical_id"],
        duplicate_id=row["duplicate_id"],
        score=row["score"],
        breakdown=breakdown,
        detection_method=DetectionMethod(row["detection_method"]),
        status=LedgerStatus(row["status"]),
        reviewer_id=row["reviewer_id"],
        created_at=datetime.fromisoformat(row["created_at"]),
        resolved_at=_parse_datetime(row["resolved_at"]),
    )
