"""Moderation API routes."""

from typing import Any, Literal

from fastapi import APIRouter, Query, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from listing_dedup.db.ledger import LedgerError, LedgerTransitionError
from listing_dedup.detection.detector import (
    DetectionInputError,
    InvalidListingIdError,
    ListingNotFoundError,
)
from listing_dedup.logging import get_logger
from listing_dedup.models import Decision, DetectionMethod
from listing_dedup.service import DuplicateDetectionService, InvalidDecisionError, PendingFilter

logger = get_logger(__name__)

router = APIRouter()


class DecisionRequest(BaseModel):
    """Body of a moderator decision."""

    canonical_id: str
    duplicate_id: str
    decision: Decision
    score: float = Field(ge=0.0, le=1.0)
    reviewer_id: str | None = None


class ListingEvent(BaseModel):
    """Listing create/update notification."""

    event: Literal["created", "updated"] = "updated"


def _get_service(request: Request) -> DuplicateDetectionService:
    return request.app.state.service  # type: ignore[no-any-return]


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def _detection_error(e: DetectionInputError) -> JSONResponse:
    if isinstance(e, ListingNotFoundError):
        return _error(str(e), 404)
    if isinstance(e, InvalidListingIdError):
        return _error(str(e), 400)
    # Stored row exists but cannot be read
    return _error(str(e), 422)


@router.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse({"status": "ok"})


@router.get("/api/listings/{listing_id}/duplicates")
async def get_duplicates(
    request: Request,
    listing_id: str,
    mode: DetectionMethod = DetectionMethod.INCREMENTAL,
    force: bool = False,
) -> JSONResponse:
    """Ranked duplicate candidates for one listing."""
    try:
        result = await _get_service(request).detect(listing_id.strip(), mode, force=force)
    except DetectionInputError as e:
        return _detection_error(e)
    payload: dict[str, Any] = result.model_dump(mode="json")
    payload["total_matches"] = result.total_matches
    payload["highest_match_score"] = result.highest_match_score
    return JSONResponse(payload)


@router.post("/api/duplicates/decisions")
async def record_decision(request: Request, body: DecisionRequest) -> JSONResponse:
    """Confirm or dismiss a pair."""
    try:
        entry = await _get_service(request).mark_decision(
            body.canonical_id,
            body.duplicate_id,
            body.decision,
            body.score,
            reviewer_id=body.reviewer_id,
        )
    except InvalidDecisionError as e:
        return _error(str(e), 400)
    except LedgerTransitionError as e:
        return _error(str(e), 409)
    except LedgerError:
        logger.error("decision_write_failed", exc_info=True)
        return _error("Failed to record decision. Please try again.", 503)
    return JSONResponse(entry.model_dump(mode="json"))


@router.delete("/api/duplicates/{listing_a}/{listing_b}", status_code=204)
async def remove_suppression(request: Request, listing_a: str, listing_b: str) -> Response:
    """Delete a pair's ledger entry so it can be detected again."""
    try:
        await _get_service(request).remove_suppression(listing_a, listing_b)
    except InvalidDecisionError as e:
        return _error(str(e), 400)
    except LedgerError:
        logger.error("suppression_remove_failed", exc_info=True)
        return _error("Failed to remove entry. Please try again.", 503)
    return Response(status_code=204)


@router.get("/api/duplicates/pending")
async def list_pending(
    request: Request,
    listing_id: str | None = None,
    min_score: float | None = Query(default=None, ge=0.0, le=1.0),
    limit: int | None = Query(default=None, ge=1, le=1000),
) -> JSONResponse:
    """Pending pairs awaiting review, highest score first."""
    entries = await _get_service(request).list_pending_matches(
        PendingFilter(listing_id=listing_id, min_score=min_score, limit=limit)
    )
    return JSONResponse([entry.model_dump(mode="json") for entry in entries])


@router.post("/api/listings/{listing_id}/events")
async def listing_changed(
    request: Request, listing_id: str, body: ListingEvent | None = None
) -> JSONResponse:
    """Run incremental detection after a listing was created or updated."""
    event = body.event if body else "updated"
    try:
        outcome = await _get_service(request).handle_listing_changed(listing_id.strip())
    except DetectionInputError as e:
        return _detection_error(e)

    logger.debug("listing_event_received", listing_id=listing_id, listing_event=event)
    return JSONResponse(
        {
            "result": outcome.result.model_dump(mode="json"),
            "pending_recorded": outcome.pending_recorded,
            "write_errors": outcome.write_errors,
        }
    )
