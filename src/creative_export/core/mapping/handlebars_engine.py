"""Handlebars template engine producing JSON payloads.

Handlebars escapes for HTML, which corrupts JSON. Before compiling, every
plain ``{{path}}`` expression is rewritten to ``{{{json_escape path}}}`` so the
value is emitted as the inside of a JSON string literal, and helper calls are
rendered raw (the built-in helpers produce JSON-safe output themselves).
"""

import json
import logging
import re
from collections.abc import Callable, Mapping
from typing import Any

from pybars import Compiler, PybarsError

from creative_export.core.errors import MappingError
from creative_export.core.helpers.values import format_date, is_empty, parse_date
from creative_export.core.schemas import HandlebarsMapping

logger = logging.getLogger(__name__)

_MUSTACHE = re.compile(r"(?<!\{)\{\{(?!\{)(?P<body>.*?)\}\}(?!\})", re.DOTALL)
_PATH = re.compile(r"^(?:\.\./)*[@A-Za-z_][\w@.\-/\[\]]*$|^this$|^\.$")
_POSITION = re.compile(r"character (\d+) of line (\d+)")
_CONTROL_PREFIXES = ("#", "/", "!", ">", "^", "&", "else")


def json_fragment(value: Any) -> str:
    """Text that can sit between the quotes of a JSON string literal.

    Numbers and booleans are emitted bare so ``"{{count}}"`` and ``{{count}}``
    both stay valid JSON.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int | float):
        return json.dumps(value)
    if isinstance(value, dict | list):
        return json.dumps(json.dumps(value, default=str))[1:-1]
    return json.dumps(str(value))[1:-1]


def _json_escape(this, value=None, *args, **kwargs):
    return json_fragment(value)


def _json(this, value=None, *args, **kwargs):
    return json.dumps(value, default=str)


def _uppercase(this, value=None, *args, **kwargs):
    return json_fragment(None if value is None else str(value).upper())


def _lowercase(this, value=None, *args, **kwargs):
    return json_fragment(None if value is None else str(value).lower())


def _default(this, value=None, fallback="", *args, **kwargs):
    return json_fragment(fallback if is_empty(value) else value)


def _join(this, value=None, separator=", ", *args, **kwargs):
    if not isinstance(value, list | tuple):
        return json_fragment(value)
    return json_fragment(separator.join(str(item) for item in value if item is not None))


def _date(this, value=None, pattern="yyyy-MM-dd", *args, **kwargs):
    parsed = parse_date(value)
    return json_fragment(format_date(parsed, pattern) if parsed else None)


BUILTIN_HELPERS: dict[str, Callable[..., str]] = {
    "json": _json,
    "uppercase": _uppercase,
    "lowercase": _lowercase,
    "default": _default,
    "join": _join,
    "date": _date,
}


def _rewrite(template: str, helper_names: frozenset[str]) -> str:
    def replace(match: re.Match[str]) -> str:
        body = match.group("body").strip()
        if not body or body.startswith(_CONTROL_PREFIXES):
            return match.group(0)
        head = body.split()[0]
        if " " not in body and _PATH.match(body) and body not in helper_names:
            return "{{{json_escape " + body + "}}}"
        if head in helper_names:
            return "{{{" + body + "}}}"
        return match.group(0)

    return _MUSTACHE.sub(replace, template)


def _position_from_message(message: str) -> tuple[int | None, int | None]:
    match = _POSITION.search(message)
    if not match:
        return None, None
    return int(match.group(2)), int(match.group(1))


class HandlebarsRenderer:
    """Compiles Handlebars mappings and renders them to JSON objects."""

    def __init__(self, compiler: Compiler | None = None):
        self._compiler = compiler or Compiler()

    def _helpers(self, requested: list[str]) -> dict[str, Callable[..., str]]:
        unknown = sorted(set(requested) - set(BUILTIN_HELPERS))
        if unknown:
            raise MappingError(
                f"Unknown Handlebars helpers: {', '.join(unknown)}",
                code="mapping/handlebars_error",
                details={"helpers": unknown},
            )
        helpers = {name: BUILTIN_HELPERS[name] for name in requested}
        helpers["json_escape"] = _json_escape
        return helpers

    def _compile(self, source: str, helper_names: frozenset[str], name: str):
        try:
            return self._compiler.compile(_rewrite(source, helper_names))
        except PybarsError as exc:
            line, column = _position_from_message(str(exc))
            raise MappingError(
                f"Handlebars template '{name}' failed to compile: {exc}",
                code="mapping/handlebars_error",
                line=line,
                column=column,
            ) from exc

    def render(self, mapping: HandlebarsMapping, context: Mapping[str, Any]) -> dict[str, Any]:
        helpers = self._helpers(mapping.helpers)
        helper_names = frozenset(helpers)
        template = self._compile(mapping.template, helper_names, "template")
        partials = {
            name: self._compile(source, helper_names, f"partial:{name}") for name, source in mapping.partials.items()
        }

        try:
            rendered = template(dict(context), helpers=helpers, partials=partials)
        except (PybarsError, TypeError, ValueError, KeyError, AttributeError) as exc:
            raise MappingError(
                f"Handlebars template failed to render: {exc}", code="mapping/handlebars_error"
            ) from exc

        output = rendered if isinstance(rendered, str) else "".join(rendered)
        try:
            payload = json.loads(output)
        except json.JSONDecodeError as exc:
            raise MappingError(
                f"Handlebars output is not valid JSON: {exc.msg}",
                code="mapping/invalid_json",
                details={"output": output},
                line=exc.lineno,
                column=exc.colno,
            ) from exc

        if not isinstance(payload, dict):
            raise MappingError(
                "Handlebars output must be a JSON object",
                code="mapping/invalid_result",
                details={"output": output},
            )
        return payload
