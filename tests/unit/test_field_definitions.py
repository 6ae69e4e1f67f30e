"""Tests for partner field catalogues."""

import pytest
from pydantic import ValidationError

from creative_export.core.field_definitions import (
    COMPASS_REQUIRED_FIELDS,
    FieldDefinition,
    get_integration_field_definitions,
    get_standard_source_fields,
    list_integrations_with_field_definitions,
)


class TestFieldDefinitions:
    def test_compass_catalogue(self):
        definitions = get_integration_field_definitions(" Compass ")

        assert [d.key for d in definitions if d.required] == list(COMPASS_REQUIRED_FIELDS)
        assert [d.key for d in definitions if not d.required] == ["moment", "description", "status"]
        assert definitions[0].label == "Shop"

    @pytest.mark.parametrize("key", ["unknown", "", None, 3])
    def test_unknown_partner(self, key):
        assert get_integration_field_definitions(key) == []

    def test_returned_list_is_a_copy(self):
        get_integration_field_definitions("compass").clear()

        assert get_integration_field_definitions("compass")

    def test_label_defaults_to_key(self):
        assert FieldDefinition(key=" sku ").model_dump() == {"key": "sku", "label": "sku", "required": False}

    def test_blank_key_rejected(self):
        with pytest.raises(ValidationError):
            FieldDefinition(key="  ")

    def test_listing(self):
        listing = list_integrations_with_field_definitions()

        assert [entry["key"] for entry in listing] == ["compass"]
        assert listing[0]["fields"][0] == {"key": "shop", "label": "Shop", "required": True}

    def test_standard_source_fields(self):
        keys = [d.key for d in get_standard_source_fields()]

        assert "recipe.fields.recipe_no" in keys
        assert len(keys) == len(set(keys))
