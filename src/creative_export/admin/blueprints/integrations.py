"""Integrations API blueprint."""

import asyncio
import logging
from datetime import UTC, datetime

from flask import Blueprint, current_app, jsonify, request

from creative_export.admin.utils import bad_request, json_body, require_shared_secret
from creative_export.core.database.document_store import INTEGRATION_FAILURES, INTEGRATIONS, REVIEWS
from creative_export.core.field_definitions import get_integration_field_definitions, get_standard_source_fields
from creative_export.core.integration_auth import verify_signature
from creative_export.services.integration_runtime import failure_doc_id

logger = logging.getLogger(__name__)

integrations_bp = Blueprint("integrations", __name__)

QUEUE_MODES = ("default", "priority")
DEFAULT_SIGNATURE_HEADER = "X-Signature"


def _pipeline():
    return current_app.pipeline


def _integration_argument(body: dict):
    integration = body.get("integration")
    if isinstance(integration, dict):
        return integration
    integration_id = body.get("integrationId")
    if isinstance(integration_id, str) and integration_id.strip():
        return integration_id.strip()
    return None


def _review_id(body: dict) -> str | None:
    review_id = body.get("reviewId")
    return review_id.strip() if isinstance(review_id, str) and review_id.strip() else None


@integrations_bp.route("/integrations", methods=["GET"])
def list_integrations():
    return jsonify({"integrations": _pipeline().registry.list()})


@integrations_bp.route("/integrations/<key>/fields", methods=["GET"])
def integration_fields(key):
    """Partner and standard source field catalogues for the mapping editor."""
    return jsonify(
        {
            "key": key.strip().lower(),
            "fields": [definition.model_dump() for definition in get_integration_field_definitions(key)],
            "standardFields": [definition.model_dump() for definition in get_standard_source_fields()],
        }
    )


@integrations_bp.route("/integrations/transform-preview", methods=["POST"])
def transform_preview():
    return jsonify(_pipeline().preview.preview(request.get_json(silent=True)))


@integrations_bp.route("/integrations/test", methods=["POST"])
def test_integration():
    body = json_body()
    integration = _integration_argument(body)
    review_id = _review_id(body)
    if integration is None or review_id is None:
        return bad_request()
    mode = "live" if body.get("mode") == "live" else "dry-run"
    payload = body.get("payload") if isinstance(body.get("payload"), dict) else {}
    result = asyncio.run(_pipeline().runtime.test_integration(integration, review_id, payload, mode))
    return jsonify(result)


@integrations_bp.route("/integrations/sample-data", methods=["POST"])
def sample_data():
    body = json_body()
    integration = _integration_argument(body)
    review_id = _review_id(body)
    if integration is None or review_id is None:
        return bad_request()
    payload = body.get("payload") if isinstance(body.get("payload"), dict) else {}
    return jsonify(_pipeline().runtime.sample_context(integration, review_id, payload))


@integrations_bp.route("/integrations/worker", methods=["POST"])
def integration_worker():
    """Render and deliver one review export (queue worker entry point)."""
    body = json_body()
    integration = _integration_argument(body)
    review_id = _review_id(body)
    attempt = body.get("attempt", 1)
    if integration is None or review_id is None or not isinstance(attempt, int) or isinstance(attempt, bool):
        return bad_request()
    payload = body.get("payload") if isinstance(body.get("payload"), dict) else {}
    history = body.get("history") if isinstance(body.get("history"), list) else []
    result = asyncio.run(
        _pipeline().runtime.export_review(
            integration,
            review_id,
            payload,
            dry_run=bool(body.get("dryRun", False)),
            attempt=attempt,
            history=history,
        )
    )
    return jsonify(result)


@integrations_bp.route("/integrations/<integration_id>/webhook", methods=["POST"])
def integration_webhook(integration_id):
    """Receive a partner callback, verifying its HMAC when the integration has a signing secret."""
    pipeline = _pipeline()
    raw_body = request.get_data(as_text=True)
    integration = pipeline.registry.get_integration(integration_id)

    if integration is not None and integration.webhook_secret is not None:
        metadata = integration.auth.metadata
        signature = request.headers.get(metadata.get("signatureHeader", DEFAULT_SIGNATURE_HEADER))
        if not signature:
            return jsonify({"error": "Missing webhook signature", "code": "auth/invalid_signature", "details": {}}), 401
        secret = asyncio.run(pipeline.secret_store.fetch_secret(integration.webhook_secret))
        timestamp_header = metadata.get("timestampHeader")
        valid = verify_signature(
            raw_body,
            signature,
            secret,
            timestamp=request.headers.get(timestamp_header) if timestamp_header else None,
            algorithm=metadata.get("algorithm", "sha256"),
            encoding=metadata.get("encoding", "hex"),
        )
        if not valid:
            logger.warning(f"Rejected webhook for {integration_id}: invalid signature")
            return jsonify({"error": "Invalid webhook signature", "code": "auth/invalid_signature", "details": {}}), 401

    payload = request.get_json(silent=True)
    return jsonify(
        {
            "message": "Webhook received.",
            "integrationId": integration_id,
            "integrationPath": f"{INTEGRATIONS}/{integration_id}",
            "receivedAt": datetime.now(UTC).isoformat(),
            "payload": payload if payload is not None else {},
        }
    )


@integrations_bp.route("/export-jobs/<job_id>/run", methods=["POST"])
@require_shared_secret()
def run_export_job(job_id):
    result = asyncio.run(_pipeline().orchestrator.run_job(job_id))
    return jsonify({"jobId": result.job_id, "status": result.status, "counts": result.summary.counts.to_document()})


@integrations_bp.route("/export-review", methods=["POST"])
def export_review():
    """Describe the queue message for a review export; the worker consumes it later."""
    body = json_body()
    review_id = _review_id(body)
    integration_id = body.get("integrationId")
    if review_id is None or not isinstance(integration_id, str) or not integration_id.strip():
        return bad_request()
    integration_id = integration_id.strip()
    mode = body.get("mode") if body.get("mode") in QUEUE_MODES else "default"
    queue_payload = {
        "reviewPath": f"{REVIEWS}/{review_id}",
        "integrationPath": f"{INTEGRATIONS}/{integration_id}",
        "deadLetterPath": f"{INTEGRATION_FAILURES}/{failure_doc_id(review_id, integration_id)}",
        "mode": mode,
        "dryRun": bool(body.get("dryRun", False)),
        "triggeredBy": body.get("triggeredBy") or "api",
        "enqueuedAt": datetime.now(UTC).isoformat(),
    }
    return jsonify({"message": "Review export enqueued.", "queuePayload": queue_payload}), 202
