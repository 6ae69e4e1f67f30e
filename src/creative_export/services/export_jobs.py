"""
Export job orchestration.

A job moves ``pending -> processing -> success | partial | failed`` within one
attempt. Ads are exported one at a time; a failure on one ad is recorded in
that ad's sync status and never stops the rest of the job. Only a job whose
integration cannot be resolved (unknown key, no endpoint) fails as a whole.

Every write to the job document merges, so concurrent readers never observe
fields dropped by a partial update.
"""

import logging
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

from creative_export.adapters.base import ExportItem, PartnerAdapter, normalize_string
from creative_export.core.database.document_store import AD_ASSETS, EXPORT_JOBS, DocumentStore
from creative_export.core.errors import DataError, DispatchError, IntegrationError
from creative_export.core.helpers.asset_resolver import resolve_asset_url, validate_asset_url
from creative_export.core.helpers.field_resolver import ResolutionContext
from creative_export.core.helpers.values import get_key, to_display_string
from creative_export.core.http_dispatch import HttpDispatcher, build_outbound_request
from creative_export.core.metrics import export_ad_total
from creative_export.core.schemas import (
    ExportJobResult,
    JobSummary,
    SummaryCounts,
    SyncStatusEntry,
    can_transition,
)
from creative_export.services.integration_registry import IntegrationRegistry

logger = logging.getLogger(__name__)

INTEGRATION_KEY_FIELDS = ("integrationKey", "targetIntegration", "partnerKey", "partner", "destination")
SYNC_STATES = frozenset({"pending", "sending", "sent", "received", "duplicate", "error"})


def _now() -> str:
    return datetime.now(UTC).isoformat()


def unique_ids(values: Any) -> list[str]:
    """Trimmed, de-duplicated ids from strings or ``{id}`` objects, order preserved."""
    if not isinstance(values, list | tuple):
        return []
    result: list[str] = []
    for value in values:
        raw = value.get("id") if isinstance(value, Mapping) else value
        normalized = normalize_string(raw) if isinstance(raw, str) else ("" if raw is None else str(raw).strip())
        if normalized and normalized not in result:
            result.append(normalized)
    return result


def resolve_integration_key(job: Mapping[str, Any]) -> str:
    for field in INTEGRATION_KEY_FIELDS:
        key = normalize_string(job.get(field))
        if key:
            return key
    return ""


def collect_ad_ids(job: Mapping[str, Any]) -> list[str]:
    """Union of ``approvedAdIds``, ``adIds`` and any embedded ``ads`` list."""
    return unique_ids(
        [*unique_ids(job.get("approvedAdIds")), *unique_ids(job.get("adIds")), *unique_ids(job.get("ads"))]
    )


def _error_message(errors: Iterable[str]) -> str:
    return "; ".join(dict.fromkeys(error for error in errors if error))


class ExportJobOrchestrator:
    """Runs export jobs stored in the ``exportJobs`` collection."""

    def __init__(self, store: DocumentStore, registry: IntegrationRegistry, dispatcher: HttpDispatcher):
        self.store = store
        self.registry = registry
        self.dispatcher = dispatcher

    async def run_job(self, job_id: str) -> ExportJobResult:
        """Load a job by id and execute it.

        Raises:
            DataError: if the job document does not exist
        """
        job_id = (job_id or "").strip()
        if not job_id:
            raise DataError("A jobId must be provided", code="data/invalid_request")
        job = self.store.get(EXPORT_JOBS, job_id)
        if job is None:
            raise DataError(f"Export job {job_id} not found", code="data/job_not_found", details={"jobId": job_id})
        return await self.execute(job_id, job)

    def _write(self, job_id: str, fields: Mapping[str, Any]) -> None:
        self.store.set(EXPORT_JOBS, job_id, fields, merge=True)

    def _transition(self, job_id: str, current: str | None, new: str, fields: Mapping[str, Any]) -> str:
        if not can_transition(current, new):
            raise RuntimeError(f"Export job {job_id} cannot move from {current} to {new}")
        self._write(job_id, {"status": new, **fields})
        return new

    def _fail(self, job_id: str, status: str, attempt: int, integration_key: str, message: str, extra=None):
        now = _now()
        summary = JobSummary(status="failed", counts=SummaryCounts(), message=message)
        self._transition(
            job_id,
            status,
            "failed",
            {"summary": summary.to_document(), "completedAt": now, "updatedAt": now, **(extra or {})},
        )
        logger.warning(f"Export job {job_id} failed: {message}")
        return ExportJobResult(
            job_id=job_id,
            status="failed",
            integration_key=integration_key or None,
            attempt=attempt,
            summary=summary,
            error=message,
        )

    async def execute(self, job_id: str, job: Mapping[str, Any]) -> ExportJobResult:
        attempt = int(job.get("attempt") or 0) + 1
        started_at = _now()
        status = self._transition(
            job_id, None, "processing", {"attempt": attempt, "startedAt": started_at, "updatedAt": started_at}
        )

        integration_key = resolve_integration_key(job)
        try:
            adapter = self.registry.get(integration_key) if integration_key else None
        except IntegrationError as e:
            return self._fail(job_id, status, attempt, integration_key, e.message)
        if adapter is None:
            return self._fail(
                job_id, status, attempt, integration_key, f"Unknown integration: {integration_key or 'unspecified'}"
            )

        integration_info = {"key": adapter.key, "label": adapter.label}
        endpoint = adapter.get_endpoint(job)
        if not endpoint:
            return self._fail(
                job_id, status, attempt, adapter.key, "Missing integration endpoint", {"integration": integration_info}
            )
        self._write(job_id, {"integration": {**integration_info, "endpoint": endpoint}})

        ad_ids = collect_ad_ids(job)
        if not ad_ids:
            now = _now()
            summary = JobSummary(status="success", counts=SummaryCounts(), message="No approved ads to export")
            self._transition(
                job_id,
                status,
                "success",
                {"summary": summary.to_document(), "syncStatus": {}, "completedAt": now, "updatedAt": now},
            )
            logger.info(f"Export job {job_id} completed without ads ({adapter.key})")
            return ExportJobResult(
                job_id=job_id, status="success", integration_key=adapter.key, attempt=attempt, summary=summary
            )

        sync_status: dict[str, SyncStatusEntry] = {}
        for ad_id in ad_ids:
            entry = await self.process_ad(adapter, endpoint, job_id, job, ad_id)
            sync_status[ad_id] = entry
            self._write(job_id, {"syncStatus": {ad_id: entry.to_document()}, "updatedAt": _now()})

        counts = SummaryCounts.from_states([entry.state for entry in sync_status.values()])
        summary = JobSummary(status=counts.summary_status(), counts=counts)
        completed_at = _now()
        self._transition(
            job_id,
            status,
            summary.status,
            {
                "summary": summary.to_document(),
                "syncStatus": {ad_id: entry.to_document() for ad_id, entry in sync_status.items()},
                "completedAt": completed_at,
                "updatedAt": completed_at,
            },
        )
        logger.info(
            f"Export job {job_id} completed via {adapter.key}: {summary.status} "
            f"({counts.success}/{counts.total} succeeded)"
        )
        return ExportJobResult(
            job_id=job_id,
            status=summary.status,
            integration_key=adapter.key,
            attempt=attempt,
            summary=summary,
            sync_status=sync_status,
        )

    def _asset_url(self, ad: Mapping[str, Any], job: Mapping[str, Any], ad_id: str) -> str | None:
        overrides = ResolutionContext(ad=ad, job=job, ad_id=ad_id).asset_overrides
        if overrides:
            override = get_key(overrides, "assetUrl")
            if isinstance(override, str) and override.strip():
                return override.strip()
        return resolve_asset_url(ad)

    async def process_ad(
        self, adapter: PartnerAdapter, endpoint: str, job_id: str, job: Mapping[str, Any], ad_id: str
    ) -> SyncStatusEntry:
        """Validate, build and send one ad. Never raises."""
        entry = await self._export_ad(adapter, endpoint, job_id, job, ad_id)
        export_ad_total.labels(integration_key=adapter.key, state=entry.state).inc()
        return entry

    async def _export_ad(
        self, adapter: PartnerAdapter, endpoint: str, job_id: str, job: Mapping[str, Any], ad_id: str
    ) -> SyncStatusEntry:
        asset_url: str | None = None
        try:
            ad = self.store.get(AD_ASSETS, ad_id)
            if ad is None:
                return self._entry("error", "Ad asset not found", None)
            ad = {**ad, "id": ad_id}

            asset_url = self._asset_url(ad, job, ad_id)
            item = ExportItem(ad=ad, job=job, job_id=job_id, asset_url=asset_url, partner_key=adapter.key)

            validation = adapter.validate_ad(item)
            errors = list(validation.errors)
            if validation.asset_url:
                asset_url = validation.asset_url

            checked = validate_asset_url(asset_url)
            if not checked.valid and checked.reason:
                errors.append(checked.reason)

            for field in adapter.required_fields:
                if field == "assetUrl":
                    value = asset_url
                else:
                    value = adapter.required_field_value(field, item)
                if not to_display_string(value):
                    errors.append("Missing asset URL" if field == "assetUrl" else f"Missing {field}")

            if errors:
                return self._entry("error", _error_message(errors), asset_url)

            asset_url = checked.url or asset_url
            item = ExportItem(ad=ad, job=job, job_id=job_id, asset_url=asset_url, partner_key=adapter.key)
            payload = adapter.build_payload(item)
            if not isinstance(payload, dict) or not payload:
                return self._entry("error", "Integration payload could not be built", asset_url)

            request = build_outbound_request(
                adapter.integration,
                payload,
                headers=adapter.build_headers(item),
                idempotency_key=adapter.idempotency_key(item),
                url=endpoint,
            )
            try:
                response = await self.dispatcher.dispatch(request, adapter.integration)
            except DispatchError as e:
                logger.warning(f"Dispatch failed for job {job_id} ad {ad_id}: {e.message}")
                return self._entry("error", f"Network error: {e.message}", asset_url)

            outcome = adapter.handle_response(response, item)
            state = outcome.state.strip().lower() if outcome.state else ""
            if not state:
                state = "received" if response.ok else "error"
            message = outcome.message or ("Delivered to partner" if response.ok else f"HTTP {response.status}")
            if state not in SYNC_STATES:
                message = f"{message} (unrecognized state {state})"
                state = "error"
            return self._entry(state, message, asset_url, response.status)
        except IntegrationError as e:
            logger.info(f"Export of ad {ad_id} in job {job_id} failed: {e.code}")
            return self._entry("error", e.message, asset_url)
        except Exception as e:
            logger.error(f"Unexpected error exporting ad {ad_id} in job {job_id}: {e}", exc_info=True)
            return self._entry("error", str(e) or "Unexpected error", asset_url)

    @staticmethod
    def _entry(state: str, message: str, asset_url: str | None, response_status: int | None = None) -> SyncStatusEntry:
        return SyncStatusEntry(
            state=state,
            message=message,
            asset_url=asset_url or None,
            attempted_at=_now(),
            response_status=response_status,
        )
