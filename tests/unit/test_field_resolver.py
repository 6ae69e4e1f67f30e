"""Tests for logical field resolution and value coercion."""

from datetime import UTC, datetime

import pytest

from creative_export.core.helpers.field_resolver import (
    FieldResolver,
    ResolutionContext,
    canonical_field_name,
    normalize_field_value,
    parse_angle,
    parse_recipe_number,
)
from creative_export.core.helpers.values import (
    MISSING,
    coerce_value,
    format_date,
    get_path,
    parse_date,
    to_display_string,
)


@pytest.fixture
def resolver():
    return FieldResolver()


class TestValueCoercion:
    """Test primitive coercion over wrapped values."""

    def test_strings_are_trimmed(self):
        assert coerce_value("  spring  ") == "spring"
        assert coerce_value("   ") is None

    def test_booleans_become_strings(self):
        assert coerce_value(True) == "true"
        assert coerce_value(False) == "false"

    def test_wrapped_values_are_unwrapped(self):
        assert coerce_value({"value": " 12 "}) == "12"
        assert coerce_value({"label": "", "name": "Acme"}) == "Acme"
        assert coerce_value([None, "", {"text": "first"}]) == "first"

    def test_firestore_timestamp_map(self):
        result = coerce_value({"seconds": 1700000000, "nanoseconds": 0})

        assert result == datetime(2023, 11, 14, 22, 13, 20, tzinfo=UTC)

    def test_display_string_drops_integral_float(self):
        assert to_display_string(12.0) == "12"
        assert to_display_string({"value": None}) is None


class TestDottedPaths:
    def test_nested_mappings(self):
        assert get_path({"recipe": {"fields": {"Recipe Number": 7}}}, "recipe.fields.Recipe Number") == 7

    def test_numeric_segment_indexes_list(self):
        assert get_path({"assets": [{"url": "a"}, {"url": "b"}]}, "assets.1.url") == "b"

    def test_non_numeric_segment_searches_list(self):
        assert get_path({"assets": [{"name": "x"}, {"url": "b"}]}, "assets.url") == "b"

    def test_missing_path(self):
        assert get_path({"a": {}}, "a.b.c") is MISSING


class TestDateHandling:
    @pytest.mark.parametrize(
        "value",
        ["2024-03-15", "2024-03-15T09:30:00Z", "03/15/2024", "March 15, 2024", "20240315"],
    )
    def test_parse_common_formats(self, value):
        assert parse_date(value).date().isoformat() == "2024-03-15"

    def test_epoch_milliseconds(self):
        assert parse_date(1700000000000).date().isoformat() == "2023-11-14"

    def test_unparseable(self):
        assert parse_date("next tuesday") is None
        assert parse_date(True) is None

    def test_token_format(self):
        value = datetime(2024, 3, 5)

        assert format_date(value, "MM/dd/yyyy") == "03/05/2024"
        assert format_date(value, "d.M.yy") == "5.3.24"
        assert format_date(value, "%Y%m%d") == "20240305"


class TestFieldParsers:
    """Test field-specific normalization."""

    @pytest.mark.parametrize("value,expected", [("12", 12), (" #7 ", 7), (42.0, 42), ({"value": "3"}, 3)])
    def test_recipe_numbers(self, value, expected):
        assert parse_recipe_number(value) == expected

    @pytest.mark.parametrize("value", ["0", 0, "abc", "12a", None, 1.5])
    def test_invalid_recipe_numbers(self, value):
        assert parse_recipe_number(value) is None

    @pytest.mark.parametrize("value,expected", [("1", 1), ("Angle 4", 4), ("#32", 32), (7, 7)])
    def test_angles(self, value, expected):
        assert parse_angle(value) == expected

    @pytest.mark.parametrize("value", ["0", 33, "angle", None])
    def test_out_of_range_angles(self, value):
        assert parse_angle(value) is None

    def test_aliases_fold_to_canonical_names(self):
        assert canonical_field_name("Recipe Number") == "recipe_no"
        assert canonical_field_name("goLiveDate") == "go_live_date"
        assert canonical_field_name("PRIMARY_TEXT") == "primary_text"
        assert canonical_field_name("unknown") is None

    def test_normalize_by_partner_field(self):
        assert normalize_field_value("recipeNumber", "0012") == 12
        assert normalize_field_value("go_live_date", "03/15/2024") == "2024-03-15"
        assert normalize_field_value("go_live_date", "2024-03-15", "dd.MM.yyyy") == "15.03.2024"
        assert normalize_field_value("image_1x1", "https://drive.google.com/drive/folders/x") is None
        assert normalize_field_value("headline", "  Fresh  ") == "Fresh"


class TestFieldResolver:
    """Test resolution order across overrides, ad containers and the job."""

    def test_field_override_wins_over_ad(self, resolver):
        ad = {"recipeNo": "5"}
        job = {"fieldOverrides": {"ad-1": {"recipe_no": "9"}}}

        assert resolver.resolve("recipe_no", ResolutionContext(ad, job, "ad-1")) == 9

    def test_overrides_for_other_ads_ignored(self, resolver):
        ad = {"recipeNo": "5"}
        job = {"fieldOverrides": {"ad-2": {"recipe_no": "9"}}}

        assert resolver.resolve("recipe_no", ResolutionContext(ad, job, "ad-1")) == 5

    def test_alias_in_recipe_fields(self, resolver):
        ad = {"recipe": {"fields": {"Recipe Number": "12"}}}

        assert resolver.resolve("recipe_no", ResolutionContext(ad)) == 12

    def test_case_insensitive_lookup(self, resolver):
        assert resolver.resolve("headline", ResolutionContext({"HEADLINE": "Hello"})) == "Hello"

    def test_partner_container(self, resolver):
        ad = {"compass": {"shop": "north"}, "metadata": {"shop": "south"}}

        assert resolver.resolve("shop", ResolutionContext(ad, partner_key="compass")) == "north"
        assert resolver.resolve("shop", ResolutionContext(ad)) == "south"

    def test_job_is_last_resort(self, resolver):
        ad = {"headline": "Ad headline"}
        job = {"metadata": {"shop": "job-shop", "headline": "Job headline"}}
        ctx = ResolutionContext(ad, job, "ad-1")

        assert resolver.resolve("headline", ctx) == "Ad headline"
        assert resolver.resolve("shop", ctx) == "job-shop"

    def test_timestamp_go_live_date(self, resolver):
        ad = {"goLiveDate": {"seconds": 1700000000, "nanoseconds": 0}}

        assert resolver.resolve("go_live_date", ResolutionContext(ad)) == "2023-11-14"
        assert resolver.resolve("go_live_date", ResolutionContext(ad), format="MM/dd/yyyy") == "11/14/2023"

    def test_angle_out_of_range_is_missing(self, resolver):
        assert resolver.resolve("angle", ResolutionContext({"angle": 40})) is None

    def test_dotted_logical_key(self, resolver):
        ad = {"metadata": {"campaign": {"name": "Spring"}}}

        assert resolver.resolve("campaign.name", ResolutionContext(ad)) == "Spring"

    def test_missing_field(self, resolver):
        assert resolver.resolve("persona", ResolutionContext({"headline": "x"})) is None

    def test_asset_override_precedes_ad_assets(self, resolver):
        ad = {"assets": [{"url": "https://cdn.example.com/ad.png", "aspectRatio": "1x1"}]}
        job = {"assetOverrides": {"ad-1": {"assetUrl": "https://cdn.example.com/override.png"}}}

        result = resolver.resolve("image_1x1", ResolutionContext(ad, job, "ad-1"))

        assert result == "https://cdn.example.com/override.png"

    def test_asset_slot_from_ad_assets(self, resolver):
        ad = {
            "assets": [
                {"url": "https://cdn.example.com/s1.png", "aspectRatio": "9x16"},
                {"url": "https://cdn.example.com/s2.png", "aspectRatio": "9x16"},
            ]
        }

        assert resolver.resolve("image_9x16_2", ResolutionContext(ad)) == "https://cdn.example.com/s2.png"

    def test_missing_asset_slot(self, resolver):
        ad = {"assets": [{"url": "https://cdn.example.com/s1.png", "aspectRatio": "9x16"}]}

        assert resolver.resolve("image_1x1", ResolutionContext(ad)) is None
