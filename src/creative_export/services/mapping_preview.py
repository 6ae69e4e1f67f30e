"""Side-effect-free previews of transform specs and integration mappings."""

from collections.abc import Mapping
from typing import Any

from pydantic import TypeAdapter, ValidationError

from creative_export.core.errors import MappingError, TransformSpecError
from creative_export.core.mapping.engine import MappingEngine
from creative_export.core.mapping.transform import TransformInput, build_transform_input, transform_review
from creative_export.core.schema_validation import SchemaValidator
from creative_export.core.schemas import MappingConfig

MAPPING_ENGINE_TYPES = frozenset({"literal", "handlebars", "jsonata", "fields"})

_mapping_adapter = TypeAdapter(MappingConfig)


def _record(value: Any) -> Mapping[str, Any] | None:
    return value if isinstance(value, Mapping) else None


def _records(value: Any) -> list[Mapping[str, Any]]:
    return [item for item in value if isinstance(item, Mapping)] if isinstance(value, list) else []


def transform_input_from_body(body: Mapping[str, Any]) -> TransformInput:
    context = body.get("context")
    if isinstance(context, Mapping):
        return build_transform_input(context)
    return TransformInput(
        brand=_record(body.get("brand")),
        ad_group=_record(body.get("adGroup")),
        recipes=_records(body.get("recipes")),
        ads=_records(body.get("ads")),
    )


def is_mapping_spec(spec: Any) -> bool:
    return isinstance(spec, Mapping) and spec.get("type") in MAPPING_ENGINE_TYPES


class MappingPreviewService:
    def __init__(self, mapping_engine: MappingEngine | None = None, schema_validator: SchemaValidator | None = None):
        self.mapping_engine = mapping_engine or MappingEngine()
        self.schema_validator = schema_validator or SchemaValidator()

    def preview_rows(self, body: Any) -> dict[str, Any]:
        """``{rows}`` for a transform spec; raises ``TransformSpecError`` on bad input."""
        if not isinstance(body, Mapping):
            raise TransformSpecError("Invalid request body.")
        spec = body.get("spec")
        if spec is None:
            raise TransformSpecError("Transform spec is required.")
        return {"rows": transform_review(spec, transform_input_from_body(body))}

    def preview_mapping(
        self, mapping: Any, context: Mapping[str, Any], schema_ref: str | Mapping[str, Any] | None = None
    ) -> dict[str, Any]:
        """Render a mapping config against a caller-supplied context."""
        try:
            config = _mapping_adapter.validate_python(mapping)
        except ValidationError as e:
            raise MappingError(
                "Mapping configuration is invalid",
                code="mapping/invalid_config",
                details={"errors": e.errors(include_url=False, include_context=False)},
            ) from e
        payload = self.mapping_engine.render(config, context)
        self.schema_validator.validate(schema_ref, payload)
        return {"payload": payload, "warnings": []}

    def preview(self, body: Any) -> dict[str, Any]:
        """Dispatch on the shape of ``spec``: engine mappings render a payload, anything else renders rows."""
        if isinstance(body, Mapping) and is_mapping_spec(body.get("spec")):
            context = body.get("context")
            return self.preview_mapping(
                body["spec"], dict(context) if isinstance(context, Mapping) else {}, body.get("schemaRef")
            )
        return self.preview_rows(body)
