"""JSONata expression engine."""

import json
import logging
from collections.abc import Mapping
from typing import Any

import jsonata

from creative_export.core.errors import MappingError
from creative_export.core.mapping.positions import offset_to_position
from creative_export.core.schemas import JsonataMapping

logger = logging.getLogger(__name__)


def _error_offset(exc: Exception) -> int | None:
    for attr in ("location", "position"):
        value = getattr(exc, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


def _error_code(exc: Exception) -> str | None:
    value = getattr(exc, "error", None) or getattr(exc, "code", None)
    return value if isinstance(value, str) else None


def _translate(exc: Exception, expression: str, stage: str) -> MappingError:
    line, column = offset_to_position(expression, _error_offset(exc))
    details: dict[str, Any] = {"stage": stage}
    engine_code = _error_code(exc)
    if engine_code:
        details["engineCode"] = engine_code
    return MappingError(
        f"JSONata expression failed to {stage}: {exc}",
        code="mapping/jsonata_error",
        details=details,
        line=line,
        column=column,
    )


def render_jsonata(mapping: JsonataMapping, context: Mapping[str, Any]) -> dict[str, Any]:
    try:
        expression = jsonata.Jsonata(mapping.expression)
    except Exception as exc:
        raise _translate(exc, mapping.expression, "compile") from exc

    try:
        result = expression.evaluate(json.loads(json.dumps(dict(context), default=str)))
    except Exception as exc:
        raise _translate(exc, mapping.expression, "evaluate") from exc

    if result is None:
        if mapping.allow_undefined:
            return {}
        raise MappingError("JSONata expression evaluated to undefined", code="mapping/jsonata_undefined")
    if not isinstance(result, dict):
        raise MappingError(
            "JSONata expression must evaluate to a JSON object",
            code="mapping/invalid_result",
            details={"resultType": type(result).__name__},
        )
    # Normalize engine-specific sequence types to plain JSON
    return json.loads(json.dumps(result, default=str))
