"""
JSON Schema validation for rendered partner payloads.

A ``schemaRef`` may be an inline JSON document, a base64 ``data:`` URI, or a
pointer into the ``schemas`` collection of the config store. Resolved schemas
are compiled once and cached by reference for the life of the cache object.
"""

import base64
import binascii
import hashlib
import json
import logging
from collections.abc import Mapping
from typing import Any
from urllib.parse import unquote

from jsonschema import Draft7Validator
from jsonschema.exceptions import SchemaError as JsonSchemaError
from jsonschema.validators import validator_for

from creative_export.core.cache import TTLCache
from creative_export.core.database.document_store import SCHEMAS, DocumentStore
from creative_export.core.errors import SchemaError, SchemaValidationError

logger = logging.getLogger(__name__)

SCHEMA_DOCUMENT_KEYS = ("schema", "definition", "jsonSchema")


def _cache_key(schema_ref: str | Mapping[str, Any]) -> str:
    if isinstance(schema_ref, str):
        return schema_ref.strip()
    return "inline:" + hashlib.sha256(json.dumps(schema_ref, sort_keys=True, default=str).encode()).hexdigest()


def _describe(schema_ref: str | Mapping[str, Any]) -> str:
    if isinstance(schema_ref, str):
        text = schema_ref.strip()
        return text if len(text) <= 80 else text[:77] + "..."
    return "<inline schema>"


def _json_safe(value: Any) -> Any:
    return json.loads(json.dumps(value, default=str))


def _instance_path(error) -> str:
    return "".join(f"/{part}" for part in error.absolute_path)


class SchemaValidator:
    """Resolves, compiles and applies JSON Schemas."""

    def __init__(self, store: DocumentStore | None = None, cache: TTLCache | None = None):
        self.store = store
        self.cache = cache if cache is not None else TTLCache(default_ttl_seconds=None)

    def _parse_json(self, text: str, schema_ref: str | Mapping[str, Any]) -> Any:
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise SchemaError(
                f"Schema {_describe(schema_ref)} is not valid JSON: {exc.msg}",
                code="schema/invalid",
                details={"line": exc.lineno, "column": exc.colno},
            ) from exc

    def _decode_data_uri(self, uri: str) -> Any:
        header, separator, payload = uri.partition(",")
        if not separator:
            raise SchemaError("Schema data URI has no payload", code="schema/unresolvable")
        if header.endswith(";base64"):
            try:
                text = base64.b64decode(payload, validate=False).decode("utf-8")
            except (binascii.Error, UnicodeDecodeError) as exc:
                raise SchemaError("Schema data URI is not valid base64", code="schema/unresolvable") from exc
        else:
            text = unquote(payload)
        return self._parse_json(text, uri)

    def _load_from_store(self, pointer: str) -> Any:
        if self.store is None:
            raise SchemaError(
                f"Schema {pointer} cannot be resolved without a config store", code="schema/unresolvable"
            )
        doc_id = pointer[len(SCHEMAS) + 1 :] if pointer.startswith(f"{SCHEMAS}/") else pointer
        document = self.store.get(SCHEMAS, doc_id)
        if document is None:
            raise SchemaError(
                f"Schema {pointer} was not found", code="schema/unresolvable", details={"schemaRef": pointer}
            )
        for key in SCHEMA_DOCUMENT_KEYS:
            embedded = document.get(key)
            if isinstance(embedded, str):
                return self._parse_json(embedded, pointer)
            if isinstance(embedded, Mapping):
                return dict(embedded)
        return document

    def resolve(self, schema_ref: str | Mapping[str, Any]) -> dict[str, Any]:
        """Load the schema document a reference points at."""
        if isinstance(schema_ref, Mapping):
            schema: Any = dict(schema_ref)
        else:
            text = schema_ref.strip()
            if not text:
                raise SchemaError("Schema reference is empty", code="schema/unresolvable")
            if text.startswith("{"):
                schema = self._parse_json(text, schema_ref)
            elif text.startswith("data:"):
                schema = self._decode_data_uri(text)
            else:
                schema = self._load_from_store(text)

        if not isinstance(schema, dict):
            raise SchemaError(f"Schema {_describe(schema_ref)} must be a JSON object", code="schema/invalid")
        return schema

    def compile(self, schema_ref: str | Mapping[str, Any]):
        """Compiled validator for a reference, cached by reference."""
        key = _cache_key(schema_ref)
        validator = self.cache.get(key)
        if validator is not None:
            return validator

        schema = self.resolve(schema_ref)
        validator_cls = validator_for(schema, default=Draft7Validator)
        try:
            validator_cls.check_schema(schema)
        except JsonSchemaError as exc:
            raise SchemaError(
                f"Schema {_describe(schema_ref)} is invalid: {exc.message}",
                code="schema/invalid",
                details={"keyword": exc.validator, "schemaPath": "/".join(str(p) for p in exc.schema_path)},
            ) from exc

        validator = validator_cls(schema)
        self.cache.set(key, validator, ttl_seconds=None)
        logger.debug(f"Compiled schema {_describe(schema_ref)} with {validator_cls.__name__}")
        return validator

    def validate(self, schema_ref: str | Mapping[str, Any] | None, payload: Any) -> None:
        """Raise ``SchemaValidationError`` listing every violation; no-op without a reference."""
        if schema_ref is None or (isinstance(schema_ref, str) and not schema_ref.strip()):
            return

        validator = self.compile(schema_ref)
        violations = sorted(validator.iter_errors(payload), key=lambda error: [str(p) for p in error.absolute_path])
        if not violations:
            return

        errors = [
            {
                "instancePath": _instance_path(error),
                "message": error.message,
                "keyword": error.validator,
                "params": _json_safe({error.validator: error.validator_value}),
            }
            for error in violations
        ]
        raise SchemaValidationError(
            f"Payload does not match schema {_describe(schema_ref)} ({len(errors)} violation(s))",
            errors,
            details={"schemaRef": _describe(schema_ref)},
        )
