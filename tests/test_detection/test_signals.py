"""Tests for the individual signal scorers."""

from collections.abc import Callable

import pytest

from listing_dedup.detection.signals import (
    SIGNAL_SCORERS,
    address_score,
    amenity_score,
    build_scorers,
    description_score,
    geography_score,
    jaccard,
    owner_score,
    score_signals,
    title_score,
    titles_identical,
)
from listing_dedup.models import Listing, SignalName

LAT, LON = 47.5025, 19.0635
LAT_PER_METER = 1 / 111_195


def _north(meters: float) -> float:
    return LAT + meters * LAT_PER_METER


class TestJaccard:
    def test_empty_sets_score_zero(self) -> None:
        assert jaccard(set(), set()) == 0.0

    def test_partial_overlap(self) -> None:
        assert jaccard({"a", "b"}, {"b", "c"}) == pytest.approx(1 / 3)


class TestAddressScore:
    def test_formatting_differences_match_exactly(
        self, make_listing: Callable[..., Listing]
    ) -> None:
        a = make_listing(address="123 Main St.")
        b = make_listing(address="123, MAIN street")
        assert address_score(a, b) == 1.0

    def test_token_overlap(self, make_listing: Callable[..., Listing]) -> None:
        a = make_listing(address="123 Main Street")
        b = make_listing(address="125 Main Street")
        # {123, main, street} vs {125, main, street}
        assert address_score(a, b) == pytest.approx(0.5)

    def test_missing_address(self, make_listing: Callable[..., Listing]) -> None:
        a = make_listing(address="123 Main Street")
        b = make_listing(address=None)
        assert address_score(a, b) == 0.0
        assert address_score(b, a) == 0.0

    def test_canonical_address_preferred(self, make_listing: Callable[..., Listing]) -> None:
        a = make_listing(address="Main St 123, 2nd floor", canonical_address="123 Main Street")
        b = make_listing(address="123 Main St")
        assert address_score(a, b) == 1.0


class TestGeographyScore:
    def test_same_point(self, make_listing: Callable[..., Listing]) -> None:
        a = make_listing(latitude=LAT, longitude=LON)
        b = make_listing(latitude=LAT, longitude=LON)
        assert geography_score(a, b) == 1.0

    def test_linear_decay(self, make_listing: Callable[..., Listing]) -> None:
        a = make_listing(latitude=LAT, longitude=LON)
        b = make_listing(latitude=_north(75), longitude=LON)
        assert geography_score(a, b) == pytest.approx(0.5, abs=0.01)

    def test_zero_at_and_beyond_radius(self, make_listing: Callable[..., Listing]) -> None:
        a = make_listing(latitude=LAT, longitude=LON)
        b = make_listing(latitude=_north(200), longitude=LON)
        assert geography_score(a, b) == 0.0

    def test_missing_coordinates(self, make_listing: Callable[..., Listing]) -> None:
        a = make_listing(latitude=LAT, longitude=LON)
        b = make_listing()
        assert geography_score(a, b) == 0.0
        assert geography_score(b, a) == 0.0

    def test_custom_radius(self, make_listing: Callable[..., Listing]) -> None:
        a = make_listing(latitude=LAT, longitude=LON)
        b = make_listing(latitude=_north(150), longitude=LON)
        scorer = build_scorers(radius_meters=300)[SignalName.GEOGRAPHY]
        assert scorer(a, b) == pytest.approx(0.5, abs=0.01)


class TestTextScores:
    def test_identical_titles(self, make_listing: Callable[..., Listing]) -> None:
        a = make_listing(title="Sunny 2BR")
        b = make_listing(title="sunny 2br")
        assert title_score(a, b) == 1.0

    def test_title_overlap(self, make_listing: Callable[..., Listing]) -> None:
        a = make_listing(title="Sunny 2BR")
        b = make_listing(title="Sunny 2BR flat")
        assert title_score(a, b) == pytest.approx(2 / 3)

    def test_blank_titles_score_zero(self, make_listing: Callable[..., Listing]) -> None:
        assert title_score(make_listing(title=""), make_listing(title="")) == 0.0

    def test_titles_identical_ignores_case_and_punctuation(
        self, make_listing: Callable[..., Listing]
    ) -> None:
        assert titles_identical(make_listing(title="Sunny 2BR!"), make_listing(title="sunny 2br"))

    def test_reordered_titles_not_identical(self, make_listing: Callable[..., Listing]) -> None:
        a = make_listing(title="2BR Sunny")
        b = make_listing(title="Sunny 2BR!")
        assert title_score(a, b) == 1.0
        assert not titles_identical(a, b)
        assert not titles_identical(make_listing(title=""), make_listing(title=""))

    def test_missing_description(self, make_listing: Callable[..., Listing]) -> None:
        a = make_listing(description="Bright flat near the park")
        b = make_listing(description=None)
        assert description_score(a, b) == 0.0

    def test_description_overlap(self, make_listing: Callable[..., Listing]) -> None:
        a = make_listing(description="Bright flat near the park")
        b = make_listing(description="bright flat near the park!")
        assert description_score(a, b) == 1.0


class TestAmenityScore:
    def test_both_empty_scores_zero(self, make_listing: Callable[..., Listing]) -> None:
        assert amenity_score(make_listing(), make_listing()) == 0.0

    def test_partial_overlap(self, make_listing: Callable[..., Listing]) -> None:
        a = make_listing(amenities={"gym", "wifi"})
        b = make_listing(amenities={"gym"})
        assert amenity_score(a, b) == pytest.approx(0.5)

    def test_flag_mapping(self, make_listing: Callable[..., Listing]) -> None:
        a = make_listing(amenities={"gym": True, "wifi": True, "pool": False})
        b = make_listing(amenities=["gym", "wifi"])
        assert amenity_score(a, b) == 1.0

    def test_categorical_values_differ(self, make_listing: Callable[..., Listing]) -> None:
        a = make_listing(amenities={"heating": "gas"})
        b = make_listing(amenities={"heating": "electric"})
        assert amenity_score(a, b) == 0.0


class TestOwnerScore:
    def test_same_owner(self, make_listing: Callable[..., Listing]) -> None:
        assert owner_score(make_listing(owner_id="O1"), make_listing(owner_id="O1")) == 1.0

    def test_different_owner(self, make_listing: Callable[..., Listing]) -> None:
        assert owner_score(make_listing(owner_id="O1"), make_listing(owner_id="O2")) == 0.0

    def test_missing_owner(self, make_listing: Callable[..., Listing]) -> None:
        assert owner_score(make_listing(), make_listing()) == 0.0


class TestScoreSignals:
    def test_default_registry_covers_all_signals(self) -> None:
        assert set(SIGNAL_SCORERS) == set(SignalName)

    def test_identical_listings(self, listing_a: Listing, listing_b: Listing) -> None:
        breakdown = score_signals(listing_a, listing_b)
        assert breakdown.to_dict() == {signal.value: 1.0 for signal in SignalName}

    def test_unregistered_signal_scores_zero(self, listing_a: Listing, listing_b: Listing) -> None:
        breakdown = score_signals(listing_a, listing_b, {SignalName.OWNER: owner_score})
        assert breakdown.owner == 1.0
        assert breakdown.address == 0.0
