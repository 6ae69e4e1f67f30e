"""Partner field catalogues shown to admins when configuring mappings."""

from typing import Any

from pydantic import BaseModel, field_validator

COMPASS_REQUIRED_FIELDS = (
    "shop",
    "group_desc",
    "recipe_no",
    "product",
    "product_url",
    "go_live_date",
    "funnel",
    "angle",
    "persona",
    "primary_text",
    "headline",
    "image_1x1",
    "image_9x16",
)

COMPASS_OPTIONAL_FIELDS = ("moment", "description", "status")

COMPASS_FIELD_LABELS = {
    "shop": "Shop",
    "group_desc": "Group description",
    "recipe_no": "Recipe number",
    "product": "Product",
    "product_url": "Product URL",
    "go_live_date": "Go live date",
    "funnel": "Funnel",
    "angle": "Angle",
    "persona": "Persona",
    "primary_text": "Primary text",
    "headline": "Headline",
    "image_1x1": "1×1 creative",
    "image_9x16": "9×16 creative",
    "moment": "Moment",
    "description": "Description",
    "status": "Status",
}


class FieldDefinition(BaseModel):
    key: str
    label: str = ""
    required: bool = False

    @field_validator("key")
    @classmethod
    def validate_key(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("field key cannot be empty")
        return v

    def model_post_init(self, __context: Any) -> None:
        if not self.label.strip():
            self.label = self.key
        else:
            self.label = self.label.strip()


def _compass_definitions() -> list[FieldDefinition]:
    required = [
        FieldDefinition(key=key, label=COMPASS_FIELD_LABELS.get(key, key), required=True)
        for key in COMPASS_REQUIRED_FIELDS
    ]
    optional = [FieldDefinition(key=key, label=COMPASS_FIELD_LABELS.get(key, key)) for key in COMPASS_OPTIONAL_FIELDS]
    return required + optional


INTEGRATION_FIELD_DEFINITIONS: dict[str, list[FieldDefinition]] = {
    "compass": _compass_definitions(),
}

# Source fields a mapping can read from an ad or job
STANDARD_SOURCE_FIELDS = [
    FieldDefinition(key=key, label=label)
    for key, label in (
        ("brand.id", "Brand ID"),
        ("brand.code", "Brand code"),
        ("brandCode", "Brand code (legacy)"),
        ("brand.name", "Brand name"),
        ("storeId", "Store ID"),
        ("store.id", "Store ID (nested)"),
        ("assetUrl", "Primary asset URL"),
        ("group_desc", "Group description (Compass)"),
        ("group.description", "Group description"),
        ("group.name", "Group name"),
        ("recipeNumber", "Recipe number"),
        ("recipe_no", "Recipe number (Compass)"),
        ("recipe.recipe_no", "Recipe number (Recipe data)"),
        ("recipe.fields.recipe_no", "Recipe number (Recipe fields)"),
        ("product", "Product (Compass)"),
        ("product_name", "Product name (Recipe data)"),
        ("productName", "Product name (metadata)"),
        ("product_url", "Product URL (Compass)"),
        ("productUrl", "Product URL (metadata)"),
        ("go_live_date", "Go live date (Compass)"),
        ("funnel", "Funnel"),
        ("angle", "Angle"),
        ("persona", "Persona"),
        ("primary_text", "Primary text"),
        ("headline", "Headline"),
        ("moment", "Moment"),
        ("description", "Description"),
        ("status", "Status"),
    )
]


def get_integration_field_definitions(partner_key: str | None) -> list[FieldDefinition]:
    """Partner field definitions for ``partner_key`` (case-insensitive); empty when unknown."""
    if not isinstance(partner_key, str):
        return []
    normalized = partner_key.strip().lower()
    if not normalized:
        return []
    return list(INTEGRATION_FIELD_DEFINITIONS.get(normalized, []))


def list_integrations_with_field_definitions() -> list[dict[str, Any]]:
    return [
        {"key": key, "fields": [definition.model_dump() for definition in definitions]}
        for key, definitions in INTEGRATION_FIELD_DEFINITIONS.items()
    ]


def get_standard_source_fields() -> list[FieldDefinition]:
    return list(STANDARD_SOURCE_FIELDS)
