"""Pydantic models for integrations, mapping configuration and export jobs.

Documents arrive from the config store in camelCase; every model accepts both
the camelCase alias and the Python field name, and dumps back to camelCase.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

AuthStrategy = Literal["none", "api_key", "basic", "oauth2", "signed_payload"]
HttpMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore", frozen=True)

    def to_document(self) -> dict[str, Any]:
        """Dump to the camelCase shape stored in the config store."""
        return self.model_dump(by_alias=True, exclude_none=True)


class RetryPolicy(CamelModel):
    """Delivery retry configuration for transient failures."""

    max_attempts: int = Field(3, ge=1, description="Attempts before a delivery is reported as failed")
    initial_interval_ms: int = Field(1000, ge=0, description="Delay before the first retry")
    max_interval_ms: int = Field(30000, ge=0, description="Upper bound for any retry delay")
    backoff_multiplier: float = Field(2.0, ge=1.0, description="Growth factor between retries")
    jitter: bool = Field(False, description="Draw each delay uniformly from [0, computed delay]")

    @model_validator(mode="after")
    def validate_interval_bounds(self) -> "RetryPolicy":
        if self.max_interval_ms < self.initial_interval_ms:
            raise ValueError("maxIntervalMs must be greater than or equal to initialIntervalMs")
        return self


class SecretReference(CamelModel):
    """Reference to a credential held by the secret store."""

    name: str
    version: str = "latest"

    @model_validator(mode="before")
    @classmethod
    def accept_bare_name(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"name": data}
        return data


class AuthConfig(CamelModel):
    strategy: AuthStrategy = "none"
    secret: SecretReference | None = None
    scopes: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class LiteralMapping(CamelModel):
    """Recursive ``{{token}}`` substitution over a JSON template."""

    type: Literal["literal"] = "literal"
    template: Any
    delimiters: tuple[str, str] = ("{{", "}}")

    @field_validator("delimiters", mode="before")
    @classmethod
    def validate_delimiters(cls, v: Any) -> Any:
        if isinstance(v, dict):
            v = (v.get("start") or v.get("open"), v.get("end") or v.get("close"))
        if not isinstance(v, list | tuple) or len(v) != 2 or not all(isinstance(d, str) and d for d in v):
            raise ValueError("delimiters must be a pair of non-empty strings")
        return tuple(v)


class HandlebarsMapping(CamelModel):
    type: Literal["handlebars"] = "handlebars"
    template: str
    partials: dict[str, str] = Field(default_factory=dict)
    helpers: list[str] = Field(default_factory=list)


class JsonataMapping(CamelModel):
    type: Literal["jsonata"] = "jsonata"
    expression: str
    allow_undefined: bool = False


class FieldMappingEntry(CamelModel):
    """One declarative ``partner field <- source field`` binding."""

    partner_field: str
    source: str
    format: str | None = None


class FieldMapping(CamelModel):
    """Declarative field mapping.

    ``direction`` states which side of each entry names the partner field:
    ``partnerKeyed`` maps ``{partnerField: {source, format?}}`` and
    ``sourceKeyed`` maps ``{sourceField: {target, format?}}``. Plain string
    values are shorthand for ``{source}`` / ``{target}`` respectively.
    """

    type: Literal["fields"] = "fields"
    direction: Literal["partnerKeyed", "sourceKeyed"] = "partnerKeyed"
    fields: dict[str, Any] = Field(default_factory=dict)

    def entries(self) -> list[FieldMappingEntry]:
        result = []
        for key, value in self.fields.items():
            spec = value if isinstance(value, dict) else {"value": value}
            other = spec.get("value")
            if self.direction == "partnerKeyed":
                source = spec.get("source", other)
                partner_field = key
            else:
                source = key
                partner_field = spec.get("target") or spec.get("partnerField") or other
            if not isinstance(source, str) or not source.strip():
                raise ValueError(f"mapping for {key!r} has no source field")
            if not isinstance(partner_field, str) or not partner_field.strip():
                raise ValueError(f"mapping for {key!r} has no partner field")
            result.append(
                FieldMappingEntry(
                    partner_field=partner_field.strip(), source=source.strip(), format=spec.get("format") or None
                )
            )
        return result


MappingConfig = Annotated[
    Union[LiteralMapping, HandlebarsMapping, JsonataMapping, FieldMapping],
    Field(discriminator="type"),
]


class Integration(CamelModel):
    """Immutable snapshot of a configured partner connection."""

    id: str
    name: str = ""
    partner_key: str | None = None
    slug: str | None = None
    version: str = "1"
    base_url: str = ""
    endpoint_path: str = ""
    method: HttpMethod = "POST"
    auth: AuthConfig = Field(default_factory=AuthConfig)
    mapping: MappingConfig | None = None
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)
    schema_ref: str | dict[str, Any] | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    enabled: bool = Field(True, validation_alias=AliasChoices("enabled", "active"))
    idempotency_key_prefix: str | None = None
    timeout_ms: int | None = Field(None, ge=1)
    required_fields: list[str] = Field(default_factory=list)
    webhook_secret: SecretReference | None = None

    @model_validator(mode="before")
    @classmethod
    def accept_single_endpoint(cls, data: Any) -> Any:
        # Older documents store the full URL as ``endpoint``
        if isinstance(data, dict) and data.get("endpoint") and not (data.get("baseUrl") or data.get("base_url")):
            data = {**data, "baseUrl": data["endpoint"]}
        return data

    @field_validator("version", mode="before")
    @classmethod
    def stringify_version(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int | float) and not isinstance(v, bool) else v

    @field_validator("method", mode="before")
    @classmethod
    def normalize_method(cls, v: Any) -> Any:
        return v.strip().upper() if isinstance(v, str) else v

    @field_validator("mapping", mode="before")
    @classmethod
    def wrap_flat_mapping(cls, v: Any) -> Any:
        # A bare {partnerField: {source, format}} object is a declarative mapping
        if isinstance(v, dict) and v and "type" not in v:
            return {"type": "fields", "fields": v}
        return v

    @property
    def label(self) -> str:
        return self.name or self.partner_key or self.id

    @property
    def url(self) -> str:
        """``baseUrl`` joined to ``endpointPath`` with exactly one slash."""
        base = self.base_url.strip()
        path = self.endpoint_path.strip()
        if not base:
            return path
        base = base.rstrip("/")
        if not path:
            return base
        return f"{base}{path if path.startswith('/') else '/' + path}"


SyncState = Literal["pending", "sending", "sent", "received", "duplicate", "error"]
JobStatus = Literal["pending", "processing", "success", "partial", "failed"]

SUCCESS_STATES: frozenset[str] = frozenset({"sent", "received", "duplicate"})
TERMINAL_JOB_STATUSES: frozenset[str] = frozenset({"success", "partial", "failed"})

# Allowed job status transitions within one attempt
JOB_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"processing"}),
    "processing": TERMINAL_JOB_STATUSES,
    "success": frozenset(),
    "partial": frozenset(),
    "failed": frozenset(),
}


def can_transition(current: str | None, new: str) -> bool:
    """True if a job may move from ``current`` to ``new`` within one attempt."""
    if current is None:
        return new in ("pending", "processing")
    return new in JOB_TRANSITIONS.get(current, frozenset())


class SyncStatusEntry(CamelModel):
    state: SyncState
    message: str = ""
    asset_url: str | None = None
    attempted_at: str | None = None
    response_status: int | None = None


class SummaryCounts(CamelModel):
    total: int = 0
    sent: int = 0
    received: int = 0
    duplicate: int = 0
    error: int = 0
    success: int = 0

    @classmethod
    def from_states(cls, states: list[str]) -> "SummaryCounts":
        sent = states.count("sent")
        received = states.count("received")
        duplicate = states.count("duplicate")
        return cls(
            total=len(states),
            sent=sent,
            received=received,
            duplicate=duplicate,
            error=sum(1 for state in states if state not in SUCCESS_STATES),
            success=sent + received + duplicate,
        )

    def summary_status(self) -> JobStatus:
        if self.error == 0:
            return "success"
        if self.error >= self.total:
            return "failed"
        return "partial"


class JobSummary(CamelModel):
    status: JobStatus
    counts: SummaryCounts = Field(default_factory=SummaryCounts)
    message: str | None = None


class ExportJobResult(CamelModel):
    """What the orchestrator reports back for one run of a job."""

    job_id: str
    status: JobStatus
    integration_key: str | None = None
    attempt: int = 1
    summary: JobSummary
    sync_status: dict[str, SyncStatusEntry] = Field(default_factory=dict)
    error: str | None = None
