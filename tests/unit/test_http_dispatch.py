"""Tests for outbound dispatch, retries and auth strategies."""

import base64
import hashlib
import hmac
import json
from urllib.parse import parse_qs

import httpx
import pytest
from freezegun import freeze_time

from creative_export.core.cache import TTLCache
from creative_export.core.config import DispatchConfig
from creative_export.core.errors import AuthError, DispatchError
from creative_export.core.http_dispatch import HttpDispatcher, build_outbound_request
from creative_export.core.integration_auth import AuthStrategyResolver, compute_signature, verify_signature
from creative_export.core.schemas import Integration
from tests.fixtures import IntegrationFactory, PartnerTransport

TOKEN_URL = "https://auth.acme.example/oauth/token"
BODY = {"recipe_no": 12, "image_1x1": "https://cdn.example.com/a1.png"}


def make_integration(**overrides) -> Integration:
    return Integration.model_validate({"id": "int-1", **IntegrationFactory.create(**overrides)})


def make_dispatcher(partner, secret_store, sleep, token_cache=None, clock=None) -> HttpDispatcher:
    resolver_kwargs = {"clock": clock} if clock is not None else {}
    resolver = AuthStrategyResolver(
        secret_store, token_cache if token_cache is not None else TTLCache(), transport=partner.transport, **resolver_kwargs
    )
    return HttpDispatcher(resolver, DispatchConfig(), transport=partner.transport, sleep=sleep)


async def send(dispatcher, integration, body=None, dry_run=False):
    request = build_outbound_request(integration, body if body is not None else dict(BODY), idempotency_key="rev-1:int-1")
    return await dispatcher.dispatch(request, integration, dry_run=dry_run)


class TestDispatchRetries:
    """Test retry behaviour for transient and permanent failures."""

    @pytest.mark.asyncio
    async def test_dry_run_never_sends(self, partner, secret_store, sleep):
        response = await send(make_dispatcher(partner, secret_store, sleep), make_integration(), dry_run=True)

        assert partner.call_count == 0
        assert response.status == 202
        assert response.attempts == 0
        assert response.headers["x-dispatch-mode"] == "dry-run"
        assert response.body["request"]["url"] == "https://api.acme.example/v1/ads"
        assert response.body["request"]["body"] == BODY

    @pytest.mark.asyncio
    async def test_retries_server_error_then_succeeds(self, secret_store, sleep):
        partner = PartnerTransport(503, (200, {"id": "remote-1"}))

        response = await send(make_dispatcher(partner, secret_store, sleep), make_integration())

        assert response.status == 200
        assert response.ok
        assert response.attempts == 2
        assert response.body == {"id": "remote-1"}
        assert sleep.delays == [0.1]
        assert [r.headers["x-dispatch-attempt"] for r in partner.requests] == ["1", "2"]

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, secret_store, sleep):
        partner = PartnerTransport((400, {"error": "bad field"}))

        response = await send(make_dispatcher(partner, secret_store, sleep), make_integration())

        assert response.status == 400
        assert not response.ok
        assert response.attempts == 1
        assert response.body == {"error": "bad field"}
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_rate_limit_retried_until_exhausted(self, secret_store, sleep):
        partner = PartnerTransport(429)

        response = await send(make_dispatcher(partner, secret_store, sleep), make_integration())

        assert response.status == 429
        assert response.attempts == 3
        assert partner.call_count == 3
        assert sleep.delays == [0.1, 0.2]

    @pytest.mark.asyncio
    async def test_network_error_raised_after_final_attempt(self, secret_store, sleep):
        partner = PartnerTransport(httpx.ConnectError)

        with pytest.raises(DispatchError) as exc_info:
            await send(make_dispatcher(partner, secret_store, sleep), make_integration())

        assert exc_info.value.code == "dispatch/network_error"
        assert exc_info.value.attempts == 3
        assert exc_info.value.details["reason"] == "ConnectError"
        assert partner.call_count == 3
        assert sleep.delays == [0.1, 0.2]

    @pytest.mark.asyncio
    async def test_network_error_then_success(self, secret_store, sleep):
        partner = PartnerTransport(httpx.ConnectError, 204)

        response = await send(make_dispatcher(partner, secret_store, sleep), make_integration())

        assert response.status == 204
        assert response.body is None
        assert response.attempts == 2

    @pytest.mark.asyncio
    async def test_timeout_retried_then_raised(self, secret_store, sleep):
        partner = PartnerTransport(httpx.ReadTimeout)

        with pytest.raises(DispatchError) as exc_info:
            await send(make_dispatcher(partner, secret_store, sleep), make_integration())

        assert exc_info.value.code == "dispatch/network_error"
        assert exc_info.value.details["reason"] == "timeout"
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.__cause__, httpx.ReadTimeout)
        assert partner.call_count == 3
        assert sleep.delays == [0.1, 0.2]

    @pytest.mark.asyncio
    async def test_timeout_then_success(self, secret_store, sleep):
        partner = PartnerTransport(httpx.ReadTimeout, (201, {"id": "remote-2"}))

        response = await send(make_dispatcher(partner, secret_store, sleep), make_integration())

        assert response.status == 201
        assert response.attempts == 2
        assert sleep.delays == [0.1]

    @pytest.mark.asyncio
    async def test_missing_endpoint(self, partner, secret_store, sleep):
        integration = make_integration(baseUrl="", endpointPath="")

        with pytest.raises(DispatchError) as exc_info:
            await send(make_dispatcher(partner, secret_store, sleep), integration)

        assert exc_info.value.code == "dispatch/invalid_request"
        assert partner.call_count == 0


class TestDispatchRequest:
    """Test what goes on the wire."""

    @pytest.mark.asyncio
    async def test_headers_and_body(self, partner, secret_store, sleep):
        integration = make_integration(headers={"X-Partner": "acme"})

        await send(make_dispatcher(partner, secret_store, sleep), integration)

        request = partner.requests[0]
        assert request.method == "POST"
        assert str(request.url) == "https://api.acme.example/v1/ads"
        assert request.headers["Idempotency-Key"] == "rev-1:int-1"
        assert request.headers["Content-Type"] == "application/json"
        assert request.headers["X-Partner"] == "acme"
        assert request.headers["x-integration-id"] == "int-1"
        assert request.headers["x-dispatch-mode"] == "live"
        assert request.headers["User-Agent"].startswith("CreativeExport/")
        assert json.loads(request.content) == BODY

    @pytest.mark.asyncio
    async def test_api_key_header(self, partner, secret_store, sleep):
        integration = make_integration(
            auth={"strategy": "api_key", "secret": "partner-api-key", "metadata": {"headerName": "X-Api-Key", "prefix": "Key "}}
        )

        await send(make_dispatcher(partner, secret_store, sleep), integration)

        assert partner.requests[0].headers["X-Api-Key"] == "Key s3cret"

    @pytest.mark.asyncio
    async def test_api_key_query(self, partner, secret_store, sleep):
        integration = make_integration(
            auth={"strategy": "api_key", "secret": "partner-api-key", "metadata": {"location": "query"}}
        )

        await send(make_dispatcher(partner, secret_store, sleep), integration)

        assert partner.requests[0].url.params["api_key"] == "s3cret"

    @pytest.mark.asyncio
    async def test_api_key_body(self, partner, secret_store, sleep):
        integration = make_integration(
            auth={"strategy": "api_key", "secret": "partner-api-key", "metadata": {"location": "body", "name": "apiKey"}}
        )

        await send(make_dispatcher(partner, secret_store, sleep), integration)

        assert json.loads(partner.requests[0].content) == {**BODY, "apiKey": "s3cret"}

    @pytest.mark.asyncio
    async def test_basic_auth(self, partner, secret_store, sleep):
        integration = make_integration(
            auth={"strategy": "basic", "secret": "partner-api-key", "metadata": {"username": "svc"}}
        )

        await send(make_dispatcher(partner, secret_store, sleep), integration)

        expected = base64.b64encode(b"svc:s3cret").decode()
        assert partner.requests[0].headers["Authorization"] == f"Basic {expected}"

    @pytest.mark.asyncio
    async def test_signed_payload_covers_sent_bytes(self, partner, secret_store, sleep):
        integration = make_integration(
            auth={"strategy": "signed_payload", "secret": "webhook-signing-key", "metadata": {"timestampHeader": "X-Timestamp"}}
        )
        dispatcher = make_dispatcher(partner, secret_store, sleep, clock=lambda: 1700000000.0)

        await send(dispatcher, integration)

        request = partner.requests[0]
        body = request.content.decode()
        expected = hmac.new(b"whsec_test", f"1700000000.{body}".encode(), hashlib.sha256).hexdigest()
        assert request.headers["X-Timestamp"] == "1700000000"
        assert request.headers["X-Signature"] == expected
        assert verify_signature(body, expected, "whsec_test", timestamp="1700000000", now=1700000000)

    @pytest.mark.asyncio
    async def test_unknown_secret(self, partner, secret_store, sleep):
        integration = make_integration(auth={"strategy": "api_key", "secret": "does-not-exist"})

        with pytest.raises(AuthError) as exc_info:
            await send(make_dispatcher(partner, secret_store, sleep), integration)

        assert exc_info.value.code == "auth/missing_secret"
        assert partner.call_count == 0

    @pytest.mark.asyncio
    async def test_strategy_without_secret_reference(self, partner, secret_store, sleep):
        integration = make_integration(auth={"strategy": "signed_payload"})

        with pytest.raises(AuthError) as exc_info:
            await send(make_dispatcher(partner, secret_store, sleep), integration)

        assert exc_info.value.code == "auth/invalid_config"


class OAuthPartner:
    """Token endpoint plus partner endpoint on one transport.

    ``token_failures`` are served by the token endpoint before it starts
    issuing tokens: a status code, or an ``httpx.RequestError`` subclass to raise.
    """

    def __init__(self, token_status: int = 200, expires_in: int = 3600, token_failures=()):
        self.token_requests: list[httpx.Request] = []
        self.token_status = token_status
        self.expires_in = expires_in
        self.token_failures = list(token_failures)
        self.partner = PartnerTransport(handler=self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        if str(request.url) == TOKEN_URL:
            self.token_requests.append(request)
            if self.token_failures:
                failure = self.token_failures.pop(0)
                if isinstance(failure, type):
                    raise failure("token endpoint unreachable", request=request)
                return httpx.Response(failure, json={"error": "temporarily_unavailable"})
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"error": "invalid_client"})
            return httpx.Response(
                200, json={"access_token": f"tok-{len(self.token_requests)}", "expires_in": self.expires_in}
            )
        return httpx.Response(200, json={"received": True})

    def partner_requests(self) -> list[httpx.Request]:
        return [request for request in self.partner.requests if str(request.url) != TOKEN_URL]


def oauth_integration() -> Integration:
    return make_integration(
        auth={
            "strategy": "oauth2",
            "secret": "partner-oauth-client",
            "scopes": ["ads.write"],
            "metadata": {"tokenUrl": TOKEN_URL},
        }
    )


class TestOAuthClientCredentials:
    """Test token acquisition and caching."""

    @pytest.mark.asyncio
    async def test_token_fetched_once_and_reused(self, secret_store, sleep):
        oauth = OAuthPartner()
        dispatcher = make_dispatcher(oauth.partner, secret_store, sleep)
        integration = oauth_integration()

        await send(dispatcher, integration)
        await send(dispatcher, integration)

        assert len(oauth.token_requests) == 1
        assert [r.headers["Authorization"] for r in oauth.partner_requests()] == ["Bearer tok-1", "Bearer tok-1"]

    @pytest.mark.asyncio
    async def test_token_request_shape(self, secret_store, sleep):
        oauth = OAuthPartner()

        await send(make_dispatcher(oauth.partner, secret_store, sleep), oauth_integration())

        token_request = oauth.token_requests[0]
        form = parse_qs(token_request.content.decode())
        assert form["grant_type"] == ["client_credentials"]
        assert form["scope"] == ["ads.write"]
        expected = base64.b64encode(b"client-1:shh").decode()
        assert token_request.headers["Authorization"] == f"Basic {expected}"

    @pytest.mark.asyncio
    async def test_token_refreshed_after_expiry(self, secret_store, sleep, clock):
        oauth = OAuthPartner(expires_in=60)
        dispatcher = make_dispatcher(oauth.partner, secret_store, sleep, token_cache=TTLCache(clock=clock))
        integration = oauth_integration()

        await send(dispatcher, integration)
        clock.advance(50)
        await send(dispatcher, integration)
        clock.advance(10)
        await send(dispatcher, integration)

        assert len(oauth.token_requests) == 2
        assert [r.headers["Authorization"] for r in oauth.partner_requests()] == [
            "Bearer tok-1",
            "Bearer tok-1",
            "Bearer tok-2",
        ]

    @pytest.mark.asyncio
    async def test_rejected_credentials(self, secret_store, sleep):
        oauth = OAuthPartner(token_status=401)

        with pytest.raises(DispatchError) as exc_info:
            await send(make_dispatcher(oauth.partner, secret_store, sleep), oauth_integration())

        assert exc_info.value.code == "dispatch/oauth_token_error"
        assert exc_info.value.details["status"] == 401
        assert oauth.partner_requests() == []
        assert exc_info.value.attempts == 1
        assert len(oauth.token_requests) == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_token_network_error_retried(self, secret_store, sleep):
        oauth = OAuthPartner(token_failures=[httpx.ConnectError])

        response = await send(make_dispatcher(oauth.partner, secret_store, sleep), oauth_integration())

        assert response.status == 200
        assert response.attempts == 2
        assert sleep.delays == [0.1]
        assert len(oauth.token_requests) == 2
        assert [r.headers["Authorization"] for r in oauth.partner_requests()] == ["Bearer tok-2"]

    @pytest.mark.asyncio
    async def test_token_server_error_retried(self, secret_store, sleep):
        oauth = OAuthPartner(token_failures=[503, 429])

        response = await send(make_dispatcher(oauth.partner, secret_store, sleep), oauth_integration())

        assert response.ok
        assert response.attempts == 3
        assert sleep.delays == [0.1, 0.2]
        assert len(oauth.partner_requests()) == 1

    @pytest.mark.asyncio
    async def test_token_failures_exhaust_attempts(self, secret_store, sleep):
        oauth = OAuthPartner(token_failures=[httpx.ConnectTimeout] * 3)

        with pytest.raises(DispatchError) as exc_info:
            await send(make_dispatcher(oauth.partner, secret_store, sleep), oauth_integration())

        assert exc_info.value.code == "dispatch/oauth_token_error"
        assert exc_info.value.attempts == 3
        assert exc_info.value.details["reason"] == "ConnectTimeout"
        assert exc_info.value.integration_id == "int-1"
        assert sleep.delays == [0.1, 0.2]
        assert oauth.partner_requests() == []


class TestSignatureVerification:
    """Test inbound HMAC verification."""

    PAYLOAD = '{"event":"ad.received"}'

    def test_accepts_prefixed_signature(self):
        signature = compute_signature(self.PAYLOAD, "whsec_test")

        assert verify_signature(self.PAYLOAD, f"sha256={signature}", "whsec_test")

    def test_rejects_tampered_payload(self):
        signature = compute_signature(self.PAYLOAD, "whsec_test")

        assert not verify_signature(self.PAYLOAD + " ", signature, "whsec_test")

    def test_base64_encoding(self):
        signature = compute_signature(self.PAYLOAD, "whsec_test", "sha512", "base64")

        assert verify_signature(self.PAYLOAD, signature, "whsec_test", algorithm="sha512", encoding="base64")

    @freeze_time("2023-11-14 22:13:20")
    def test_timestamp_within_tolerance(self):
        signature = compute_signature(f"1699999900.{self.PAYLOAD}", "whsec_test")

        assert verify_signature(self.PAYLOAD, signature, "whsec_test", timestamp="1699999900")

    @freeze_time("2023-11-14 22:13:20")
    def test_stale_timestamp_rejected(self):
        signature = compute_signature(f"1699999000.{self.PAYLOAD}", "whsec_test")

        assert not verify_signature(self.PAYLOAD, signature, "whsec_test", timestamp="1699999000")

    def test_malformed_timestamp_rejected(self):
        assert not verify_signature(self.PAYLOAD, "abc", "whsec_test", timestamp="yesterday")

    def test_unsupported_algorithm(self):
        with pytest.raises(AuthError):
            compute_signature(self.PAYLOAD, "whsec_test", "md5")
