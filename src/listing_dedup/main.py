"""Command-line entry point for the duplicate detection engine."""

import argparse
import asyncio
import contextlib
import signal
import sys

from listing_dedup.config import Settings
from listing_dedup.db import DedupStorage
from listing_dedup.detection.detector import DetectionInputError
from listing_dedup.detection.full_scan import ScanBatchNotFoundError
from listing_dedup.logging import configure_logging, get_logger
from listing_dedup.models import DetectionMethod
from listing_dedup.service import DuplicateDetectionService

logger = get_logger(__name__)


async def run_detect(settings: Settings, listing_id: str, *, force: bool = False) -> int:
    """Detect duplicates of one listing and print the ranked result as JSON.

    Returns:
        Process exit code.
    """
    storage = DedupStorage(settings.database_path)
    await storage.initialize()
    try:
        service = DuplicateDetectionService.from_storage(storage, settings)
        try:
            result = await service.detect(listing_id, DetectionMethod.MANUAL, force=force)
        except DetectionInputError as e:
            logger.error("detection_rejected", listing_id=listing_id, error=str(e))
            print(f"Error: {e}")
            return 2
        print(result.model_dump_json(indent=2))
        return 0
    finally:
        await storage.close()


async def run_full_scan(settings: Settings, *, resume_batch: int | None = None) -> int:
    """Scan every active listing. SIGINT/SIGTERM stop the scan between listings.

    Returns:
        Process exit code.
    """
    storage = DedupStorage(settings.database_path)
    await storage.initialize()

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Unsupported on Windows event loops
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop_event.set)

    try:
        service = DuplicateDetectionService.from_storage(storage, settings)
        if service.full_scan is None:
            return 1
        try:
            summary = await service.full_scan.run(
                batch_id=resume_batch,
                stop_event=stop_event,
                record_pending=settings.full_scan_record_pending,
            )
        except ScanBatchNotFoundError as e:
            print(f"Error: {e}")
            return 2
        print(summary.model_dump_json(indent=2))
        if summary.status == "stopped":
            print(f"Scan stopped. Resume with --full-scan --resume {summary.batch_id}")
        return 0
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):
                loop.remove_signal_handler(sig)
        await storage.close()


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Listing Dedup - duplicate rental listing detection"
    )
    parser.add_argument(
        "--detect",
        metavar="LISTING_ID",
        default=None,
        help="Detect duplicates of one listing and print the ranked matches",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="With --detect: include pairs already confirmed or dismissed",
    )
    parser.add_argument(
        "--full-scan",
        action="store_true",
        help="Run detection for every active listing and queue matches for review",
    )
    parser.add_argument(
        "--resume",
        metavar="BATCH_ID",
        type=int,
        default=None,
        help="With --full-scan: resume an interrupted batch",
    )
    parser.add_argument(
        "--serve",
        action="store_true",
        help="Start the moderation API server",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug-level logging for troubleshooting",
    )
    args = parser.parse_args()

    import logging

    level = logging.DEBUG if args.debug else logging.INFO

    try:
        settings = Settings()
    except Exception as e:
        configure_logging(json_output=False, level=level)
        logger.error("failed_to_load_settings", error=str(e))
        print(f"Error: Failed to load settings. {e}")
        print("Settings are read from LISTING_DEDUP_* environment variables or a .env file.")
        sys.exit(1)

    configure_logging(json_output=settings.json_logs, level=level)

    logger.info(
        "starting_listing_dedup",
        database=settings.database_path,
        radius_meters=settings.candidate_radius_meters,
        detect=args.detect,
        full_scan=args.full_scan,
        serve=args.serve,
    )

    if args.serve:
        import uvicorn

        from listing_dedup.web.app import create_app

        app = create_app(settings)
        uvicorn.run(app, host=settings.web_host, port=settings.web_port, log_level="info")
    elif args.detect is not None:
        sys.exit(asyncio.run(run_detect(settings, args.detect, force=args.force)))
    elif args.full_scan:
        sys.exit(asyncio.run(run_full_scan(settings, resume_batch=args.resume)))
    else:
        parser.print_help()
        sys.exit(2)


if __name__ == "__main__":
    main()
