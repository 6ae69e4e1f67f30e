"""Literal-token template engine.

Walks a JSON template and substitutes ``{{path}}`` placeholders from the
mapping context. A string that is exactly one placeholder takes the referenced
value's native type; placeholders embedded in longer strings are stringified.
"""

import copy
import json
import re
from collections.abc import Mapping
from typing import Any

from creative_export.core.errors import MappingError
from creative_export.core.helpers.values import MISSING, get_path
from creative_export.core.schemas import LiteralMapping


def _placeholder_pattern(delimiters: tuple[str, str]) -> re.Pattern[str]:
    start, end = delimiters
    # A token never spans a closing delimiter, so "{{a}}{{b}}" is two tokens
    token = r"((?:(?!" + re.escape(end) + r").)+?)"
    return re.compile(re.escape(start) + r"\s*" + token + r"\s*" + re.escape(end))


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, dict | list):
        return json.dumps(value, default=str)
    return str(value)


def _lookup(context: Mapping[str, Any], token: str, path: str) -> Any:
    value = get_path(context, token)
    if value is MISSING:
        raise MappingError(
            f"Template token '{token}' at {path} is not present in the mapping context",
            code="mapping/missing_token",
            details={"token": token, "path": path},
        )
    return value


def _render_string(text: str, context: Mapping[str, Any], pattern: re.Pattern[str], path: str) -> Any:
    exact = pattern.fullmatch(text)
    if exact:
        return copy.deepcopy(_lookup(context, exact.group(1), path))
    return pattern.sub(lambda match: _stringify(_lookup(context, match.group(1), path)), text)


def _walk(node: Any, context: Mapping[str, Any], pattern: re.Pattern[str], path: str) -> Any:
    if isinstance(node, Mapping):
        return {key: _walk(value, context, pattern, f"{path}.{key}") for key, value in node.items()}
    if isinstance(node, list):
        return [_walk(item, context, pattern, f"{path}[{index}]") for index, item in enumerate(node)]
    if isinstance(node, str):
        return _render_string(node, context, pattern, path)
    return node


def render_literal(mapping: LiteralMapping, context: Mapping[str, Any]) -> dict[str, Any]:
    template = mapping.template
    if isinstance(template, str):
        try:
            template = json.loads(template)
        except json.JSONDecodeError as exc:
            raise MappingError(
                f"Literal template is not valid JSON: {exc.msg}",
                code="mapping/invalid_json",
                line=exc.lineno,
                column=exc.colno,
            ) from exc

    result = _walk(template, context, _placeholder_pattern(mapping.delimiters), "$")
    if not isinstance(result, dict):
        raise MappingError(
            "Literal template must render to a JSON object",
            code="mapping/invalid_result",
            details={"resultType": type(result).__name__},
        )
    return result
