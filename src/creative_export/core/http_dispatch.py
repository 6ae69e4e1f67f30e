"""
Outbound HTTP delivery to partner endpoints.

Live dispatch retries 408/425/429 and 5xx responses plus network failures
with geometric backoff. Any other 4xx is handed back to the caller as
partner feedback rather than raised. Dry runs never touch the network.
"""

import asyncio
import json
import logging
import random
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

import httpx

from creative_export.core.config import DispatchConfig, get_config
from creative_export.core.errors import DispatchError, OAuthTokenError
from creative_export.core.integration_auth import AuthStrategyResolver, OutboundRequest, PreparedRequest
from creative_export.core.logging_config import dispatch_structured_logger
from creative_export.core.metrics import dispatch_attempts, dispatch_attempts_total, dispatch_duration, dispatch_total
from creative_export.core.retry_utils import compute_backoff_delay, is_retryable_status
from creative_export.core.schemas import Integration

logger = logging.getLogger(__name__)


def diagnostic_headers(integration: Integration, mode: str, attempt: int) -> dict[str, str]:
    return {
        "x-integration-id": integration.id,
        "x-integration-version": str(integration.version),
        "x-dispatch-mode": mode,
        "x-dispatch-attempt": str(attempt),
    }


@dataclass
class DispatchResponse:
    """Normalized partner response."""

    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None
    text: str = ""
    reason: str = ""
    duration_ms: float = 0.0
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "ok": self.ok,
            "headers": dict(self.headers),
            "body": self.body,
            "durationMs": round(self.duration_ms, 2),
            "attempts": self.attempts,
        }


def _parse_body(response: httpx.Response) -> Any:
    text = response.text
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return text


class HttpDispatcher:
    """Sends prepared partner requests with auth, retries and timeouts."""

    def __init__(
        self,
        auth_resolver: AuthStrategyResolver,
        config: DispatchConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Callable[[float, float], float] = random.uniform,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.auth_resolver = auth_resolver
        self.config = config or get_config().dispatch
        self.transport = transport
        self._sleep = sleep
        self._rng = rng
        self._clock = clock

    def dry_run_response(self, request: OutboundRequest, integration: Integration) -> DispatchResponse:
        body = {
            "message": f"Dry run: request to {integration.label} was not sent",
            "request": request.to_dict(),
        }
        return DispatchResponse(
            status=202,
            headers=diagnostic_headers(integration, "dry-run", 0),
            body=body,
            text=json.dumps(body, default=str),
            reason="Accepted",
            attempts=0,
        )

    async def dispatch(
        self, request: OutboundRequest, integration: Integration, dry_run: bool = False
    ) -> DispatchResponse:
        """Deliver ``request`` for ``integration``.

        Credential injection, including any OAuth token fetch, happens inside
        each attempt, so transient token endpoint failures are retried too.

        Raises:
            DispatchError: network failure, timeout or token failure on the final attempt
            AuthError: credentials missing or misconfigured
        """
        if dry_run:
            logger.info(f"Dry run dispatch for integration {integration.id} to {request.url}")
            dispatch_structured_logger.log_dispatch_attempt(integration.id, 0, "dry-run", status=202)
            dispatch_total.labels(integration_id=integration.id, mode="dry-run", result="dry_run").inc()
            return self.dry_run_response(request, integration)

        if not request.url:
            raise DispatchError(
                f"Integration {integration.id} has no endpoint URL",
                code="dispatch/invalid_request",
                integration_id=integration.id,
                attempts=0,
            )

        secret = await self.auth_resolver.resolve_secret(integration)
        policy = integration.retry_policy
        timeout_ms = request.timeout_ms or integration.timeout_ms or self.config.timeout_ms
        timeout_seconds = timeout_ms / 1000

        for attempt in range(1, policy.max_attempts + 1):
            has_more = attempt < policy.max_attempts
            prepared = PreparedRequest.from_outbound(request, self.config.user_agent)
            if request.idempotency_key:
                prepared.set_header("Idempotency-Key", request.idempotency_key)

            try:
                await self.auth_resolver.apply(prepared, integration, secret)
            except OAuthTokenError as e:
                retry = has_more and e.retryable
                dispatch_structured_logger.log_dispatch_attempt(
                    integration.id, attempt, "live", error=e.code, will_retry=retry
                )
                dispatch_attempts_total.labels(integration_id=integration.id, outcome="oauth_error").inc()
                if retry:
                    await self._backoff(integration, attempt)
                    continue
                self._record_failure(integration, attempt)
                raise OAuthTokenError(
                    e.message,
                    details={k: v for k, v in e.details.items() if k != "integrationId"},
                    integration_id=integration.id,
                    attempts=attempt,
                    cause=e.cause or e,
                    retryable=e.retryable,
                ) from e

            for name, value in diagnostic_headers(integration, "live", attempt).items():
                prepared.set_header(name, value)

            started = self._clock()
            try:
                response = await self._send(prepared, timeout_seconds)
            except (httpx.RequestError, TimeoutError) as e:
                duration_ms = (self._clock() - started) * 1000
                error_name = "timeout" if isinstance(e, TimeoutError | httpx.TimeoutException) else type(e).__name__
                dispatch_structured_logger.log_dispatch_attempt(
                    integration.id, attempt, "live", error=error_name, duration_ms=duration_ms, will_retry=has_more
                )
                dispatch_attempts_total.labels(integration_id=integration.id, outcome="network_error").inc()
                dispatch_duration.labels(integration_id=integration.id).observe(duration_ms / 1000)
                if has_more:
                    await self._backoff(integration, attempt)
                    continue
                self._record_failure(integration, attempt)
                raise DispatchError(
                    f"Dispatch to {integration.label} failed after {attempt} attempt(s): {error_name}",
                    code="dispatch/network_error",
                    details={"reason": error_name},
                    integration_id=integration.id,
                    attempts=attempt,
                    cause=e,
                ) from e

            duration_ms = (self._clock() - started) * 1000
            retry = has_more and is_retryable_status(response.status_code)
            dispatch_structured_logger.log_dispatch_attempt(
                integration.id,
                attempt,
                "live",
                status=response.status_code,
                duration_ms=duration_ms,
                will_retry=retry,
            )
            dispatch_attempts_total.labels(
                integration_id=integration.id, outcome="success" if response.is_success else "http_error"
            ).inc()
            dispatch_duration.labels(integration_id=integration.id).observe(duration_ms / 1000)
            if retry:
                await self._backoff(integration, attempt)
                continue

            dispatch_total.labels(
                integration_id=integration.id, mode="live", result="delivered" if response.is_success else "rejected"
            ).inc()
            dispatch_attempts.labels(integration_id=integration.id).observe(attempt)

            headers = dict(response.headers)
            headers.update(diagnostic_headers(integration, "live", attempt))
            return DispatchResponse(
                status=response.status_code,
                headers=headers,
                body=_parse_body(response),
                text=response.text,
                reason=response.reason_phrase,
                duration_ms=duration_ms,
                attempts=attempt,
            )

        # max_attempts >= 1 guarantees the loop returns or raises
        raise AssertionError("unreachable")

    @staticmethod
    def _record_failure(integration: Integration, attempts: int) -> None:
        dispatch_total.labels(integration_id=integration.id, mode="live", result="failed").inc()
        dispatch_attempts.labels(integration_id=integration.id).observe(attempts)

    async def _send(self, prepared: PreparedRequest, timeout_seconds: float) -> httpx.Response:
        async with httpx.AsyncClient(transport=self.transport, timeout=timeout_seconds) as client:
            return await asyncio.wait_for(
                client.request(
                    prepared.method,
                    prepared.url,
                    headers=prepared.headers,
                    params=prepared.params or None,
                    content=prepared.content,
                ),
                timeout=timeout_seconds,
            )

    async def _backoff(self, integration: Integration, attempt: int) -> None:
        delay_ms = compute_backoff_delay(integration.retry_policy, attempt - 1, self._rng)
        logger.info(f"Retrying {integration.id} in {delay_ms:.0f}ms (attempt {attempt + 1})")
        await self._sleep(delay_ms / 1000)


def build_outbound_request(
    integration: Integration,
    body: Any,
    headers: Mapping[str, str] | None = None,
    idempotency_key: str | None = None,
    url: str | None = None,
) -> OutboundRequest:
    """Request for an integration's endpoint with its static headers merged under ``headers``."""
    merged = dict(integration.headers)
    merged.update(headers or {})
    return OutboundRequest(
        url=url or integration.url,
        method=integration.method,
        headers=merged,
        body=body,
        timeout_ms=integration.timeout_ms,
        idempotency_key=idempotency_key,
    )
