"""Tests for item name normalization."""

import pytest

from pantry_tracker.item_normalizer import display_name, normalize_item_name


class TestNormalizeItemName:
    """Tests for normalize_item_name."""

    @pytest.mark.parametrize(
        "raw",
        [
            "whole milk",
            "  Whole   MILK ",
            "Fresh Whole Milk, 1 gal",
            "The Whole Milk 64oz",
            "Whole Milk 16 fl oz",
            "Whole Milk (2 pack)",
        ],
    )
    def test_variants_share_key(self, raw):
        """Case, fillers and package sizes do not change the key."""
        assert normalize_item_name(raw) == "whole milk"

    def test_organic_kept(self):
        """Organic products are tracked separately."""
        assert normalize_item_name("Organic Bananas 3 lb") == "organic bananas"

    def test_unit_word_kept_without_size(self):
        """A unit word only counts as a size after a number."""
        assert normalize_item_name("Canned Ham") == "canned ham"

    def test_only_fillers_falls_back(self):
        """Names made only of filler keep their collapsed lowercase form."""
        assert normalize_item_name("The Box") == "the box"


class TestDisplayName:
    """Tests for display_name."""

    def test_title_cases(self):
        assert display_name("  whole   milk ") == "Whole Milk"

    def test_keeps_acronyms(self):
        assert display_name("BBQ sauce") == "BBQ Sauce"
