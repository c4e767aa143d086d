"""Application configuration using pydantic-settings."""

import math
from typing import Self

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from listing_dedup.models import SignalName


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="LISTING_DEDUP_",
        extra="ignore",
    )

    # Database
    database_path: str = Field(default="data/listings.db")

    # Candidate selection
    candidate_radius_meters: float = Field(
        default=150.0,
        gt=0,
        description="Co-location radius; also the distance at which the geography score hits 0",
    )
    address_prefix_tokens: int = Field(
        default=2,
        ge=1,
        le=6,
        description="Number of normalized address tokens shared by address-prefix candidates",
    )

    # Composite weights (must sum to 1)
    weight_address: float = Field(default=0.35, ge=0)
    weight_geography: float = Field(default=0.25, ge=0)
    weight_title: float = Field(default=0.15, ge=0)
    weight_description: float = Field(default=0.10, ge=0)
    weight_amenities: float = Field(default=0.10, ge=0)
    weight_owner: float = Field(default=0.05, ge=0)

    # Evidence disclosure thresholds
    evidence_address_threshold: float = Field(default=0.7, ge=0, le=1)
    evidence_distance_meters: float = Field(
        default=50.0,
        gt=0,
        description="Disclose proximity evidence when candidates are within this distance",
    )
    evidence_title_threshold: float = Field(default=0.7, ge=0, le=1)
    evidence_description_threshold: float = Field(default=0.7, ge=0, le=1)
    evidence_amenities_threshold: float = Field(default=0.6, ge=0, le=1)
    evidence_owner_threshold: float = Field(default=0.5, ge=0, le=1)

    # Full scan
    full_scan_concurrency: int = Field(default=4, ge=1, le=64)
    full_scan_shard_size: int = Field(default=100, ge=1)
    full_scan_record_pending: bool = Field(
        default=True,
        description="Record full-scan matches in the ledger as pending for review",
    )

    # Observability and caching
    record_detection_runs: bool = Field(default=True)
    enable_listing_cache: bool = Field(default=True)
    json_logs: bool = Field(default=False)

    # Web API
    web_host: str = Field(default="0.0.0.0", description="Web server host")
    web_port: int = Field(default=8000, description="Web server port")

    @model_validator(mode="after")
    def check_weights(self) -> Self:
        """Ensure composite weights sum to 1."""
        total = sum(self.get_weights().values())
        if not math.isclose(total, 1.0, abs_tol=1e-6):
            raise ValueError(f"Signal weights must sum to 1.0, got {total:.4f}")
        return self

    @model_validator(mode="after")
    def check_evidence_distance(self) -> Self:
        if self.evidence_distance_meters > self.candidate_radius_meters:
            raise ValueError("evidence_distance_meters must not exceed candidate_radius_meters")
        return self

    def get_weights(self) -> dict[SignalName, float]:
        """Composite weights keyed by signal."""
        return {
            SignalName.ADDRESS: self.weight_address,
            SignalName.GEOGRAPHY: self.weight_geography,
            SignalName.TITLE: self.weight_title,
            SignalName.DESCRIPTION: self.weight_description,
            SignalName.AMENITIES: self.weight_amenities,
            SignalName.OWNER: self.weight_owner,
        }

    def get_evidence_thresholds(self) -> dict[SignalName, float]:
        """Per-signal disclosure thresholds, with distance converted to a geography score."""
        return {
            SignalName.ADDRESS: self.evidence_address_threshold,
            SignalName.GEOGRAPHY: (
                1.0 - self.evidence_distance_meters / self.candidate_radius_meters
            ),
            SignalName.TITLE: self.evidence_title_threshold,
            SignalName.DESCRIPTION: self.evidence_description_threshold,
            SignalName.AMENITIES: self.evidence_amenities_threshold,
            SignalName.OWNER: self.evidence_owner_threshold,
        }
