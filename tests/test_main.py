"""Tests for the command-line entry point."""

import json
import sys

import pytest

from listing_dedup.config import Settings
from listing_dedup.db import DedupStorage
from listing_dedup.main import main, run_detect, run_full_scan
from listing_dedup.models import Listing


@pytest.fixture
def file_settings(tmp_path) -> Settings:
    return Settings(database_path=str(tmp_path / "listings.db"))


async def _seed(settings: Settings, *listings: Listing) -> None:
    storage = DedupStorage(settings.database_path)
    await storage.initialize()
    try:
        await storage.listings.save_listings(list(listings))
    finally:
        await storage.close()


class TestRunDetect:
    @pytest.mark.asyncio
    async def test_prints_ranked_result(
        self,
        file_settings: Settings,
        listing_a: Listing,
        listing_b: Listing,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        await _seed(file_settings, listing_a, listing_b)

        code = await run_detect(file_settings, "A")

        assert code == 0
        result = json.loads(capsys.readouterr().out)
        assert result["method"] == "manual"
        assert [m["candidate_id"] for m in result["matches"]] == ["B"]

    @pytest.mark.asyncio
    async def test_unknown_listing_exit_code(
        self, file_settings: Settings, capsys: pytest.CaptureFixture[str]
    ) -> None:
        code = await run_detect(file_settings, "ghost")

        assert code == 2
        assert "not found" in capsys.readouterr().out


class TestRunFullScan:
    @pytest.mark.asyncio
    async def test_scans_and_prints_summary(
        self,
        file_settings: Settings,
        listing_a: Listing,
        listing_b: Listing,
        listing_c: Listing,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        await _seed(file_settings, listing_a, listing_b, listing_c)

        code = await run_full_scan(file_settings)

        assert code == 0
        summary = json.loads(capsys.readouterr().out)
        assert summary["status"] == "completed"
        assert summary["scanned"] == 3

    @pytest.mark.asyncio
    async def test_unknown_batch(
        self, file_settings: Settings, capsys: pytest.CaptureFixture[str]
    ) -> None:
        code = await run_full_scan(file_settings, resume_batch=99)

        assert code == 2
        assert "99" in capsys.readouterr().out


class TestMain:
    def test_no_action_prints_help(
        self, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        monkeypatch.setattr(sys, "argv", ["listing-dedup"])
        monkeypatch.setattr("listing_dedup.main.configure_logging", lambda **_: None)
        monkeypatch.setenv("LISTING_DEDUP_DATABASE_PATH", ":memory:")

        with pytest.raises(SystemExit) as exc_info:
            main()

        assert exc_info.value.code == 2
        assert "--full-scan" in capsys.readouterr().out

    def test_invalid_settings_exit(
        self, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        monkeypatch.setattr(sys, "argv", ["listing-dedup", "--detect", "A"])
        monkeypatch.setattr("listing_dedup.main.configure_logging", lambda **_: None)
        monkeypatch.setenv("LISTING_DEDUP_WEIGHT_ADDRESS", "0.9")

        with pytest.raises(SystemExit) as exc_info:
            main()

        assert exc_info.value.code == 1
        assert "Failed to load settings" in capsys.readouterr().out
