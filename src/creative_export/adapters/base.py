from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from creative_export.core.helpers.field_resolver import ResolutionContext
from creative_export.core.helpers.values import get_path, to_display_string
from creative_export.core.http_dispatch import DispatchResponse
from creative_export.core.schemas import Integration


@dataclass(frozen=True)
class ExportItem:
    """One ad being exported as part of a job."""

    ad: Mapping[str, Any]
    job: Mapping[str, Any]
    job_id: str
    asset_url: str | None = None
    partner_key: str | None = None

    @property
    def ad_id(self) -> str | None:
        ad_id = self.ad.get("id")
        return str(ad_id) if ad_id is not None else None

    @property
    def resolution(self) -> ResolutionContext:
        return ResolutionContext(ad=self.ad, job=self.job, ad_id=self.ad_id, partner_key=self.partner_key)


@dataclass
class AdValidation:
    errors: list[str] = field(default_factory=list)
    asset_url: str | None = None


@dataclass(frozen=True)
class ResponseOutcome:
    state: str
    message: str


def normalize_string(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def partner_message(response: DispatchResponse) -> str:
    """Best human-readable message in a partner response."""
    body = response.body
    if isinstance(body, Mapping):
        for key in ("message", "detail", "error"):
            value = to_display_string(body.get(key))
            if value:
                return value
    return (response.text or "").strip() or response.reason


class PartnerAdapter(ABC):
    """Abstract base class for partner export adapters."""

    key: str = ""
    label: str = ""
    aliases: tuple[str, ...] = ()
    required_fields: tuple[str, ...] = ()

    def __init__(self, integration: Integration | None = None):
        self.integration = integration or Integration(id=self.key, name=self.label, partner_key=self.key)

    @abstractmethod
    def get_endpoint(self, job: Mapping[str, Any]) -> str | None:
        """Endpoint URL for a job, or ``None`` when none is configured."""

    @abstractmethod
    def build_payload(self, item: ExportItem) -> dict[str, Any]:
        """Partner request body for one ad."""

    def validate_ad(self, item: ExportItem) -> AdValidation:
        """Partner-specific checks run before anything is sent."""
        return AdValidation(asset_url=item.asset_url)

    def build_headers(self, item: ExportItem) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        headers.update({key: value for key, value in self.integration.headers.items() if value is not None})
        return headers

    def handle_response(self, response: DispatchResponse, item: ExportItem) -> ResponseOutcome:
        if response.ok:
            return ResponseOutcome("received", response.reason or "Delivered to partner")
        return ResponseOutcome("error", response.reason or f"HTTP {response.status}")

    def required_field_value(self, field_name: str, item: ExportItem) -> str:
        """Dotted lookup on the ad, then the job."""
        for source in (item.ad, item.job):
            value = get_path(source, field_name)
            text = to_display_string(value)
            if text:
                return text
        return ""

    def idempotency_key(self, item: ExportItem) -> str | None:
        prefix = self.integration.idempotency_key_prefix
        if not prefix:
            return None
        return f"{prefix}{item.job_id}-{item.ad_id}"

    def matches(self, key: str) -> bool:
        normalized = key.strip().lower()
        return normalized == self.key or normalized in self.aliases
