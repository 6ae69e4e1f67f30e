"""Credential injection for outbound integration requests.

Strategies: ``none``, ``api_key`` (header, query or body), ``basic``,
``oauth2`` client credentials with token caching, and ``signed_payload``
HMAC signing.

The request body is serialized exactly once per attempt, after any body
credential is injected and before any signature is computed, so the
signature always covers the bytes that go on the wire.
"""

import base64
import hashlib
import hmac
import json
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlencode

import httpx

from creative_export.core.cache import TTLCache
from creative_export.core.config import get_config
from creative_export.core.errors import AuthError, OAuthTokenError
from creative_export.core.logging_config import oauth_structured_logger
from creative_export.core.retry_utils import is_retryable_status
from creative_export.core.schemas import Integration
from creative_export.core.secrets import SecretStore

logger = logging.getLogger(__name__)

SUPPORTED_ALGORITHMS = ("sha1", "sha256", "sha384", "sha512")
DEFAULT_API_KEY_NAMES = {"header": "X-API-Key", "query": "api_key", "body": "api_key"}


@dataclass
class OutboundRequest:
    """Caller-visible request: what the mapping produced, before credentials."""

    url: str
    method: str = "POST"
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None
    timeout_ms: int | None = None
    idempotency_key: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "url": self.url,
            "method": self.method,
            "headers": dict(self.headers),
            "body": self.body,
        }
        if self.timeout_ms is not None:
            data["timeoutMs"] = self.timeout_ms
        if self.idempotency_key:
            data["idempotencyKey"] = self.idempotency_key
        return data


def _header(headers: Mapping[str, str], name: str) -> str | None:
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return None


@dataclass
class PreparedRequest:
    """One attempt's wire request. Rebuilt from the ``OutboundRequest`` every attempt."""

    method: str
    url: str
    headers: dict[str, str]
    body: Any = None
    params: dict[str, str] = field(default_factory=dict)
    content: str | bytes | None = None
    encoded: bool = False

    @classmethod
    def from_outbound(cls, request: OutboundRequest, user_agent: str | None = None) -> "PreparedRequest":
        headers = dict(request.headers)
        if user_agent and _header(headers, "user-agent") is None:
            headers["User-Agent"] = user_agent
        body = json.loads(json.dumps(request.body, default=str)) if isinstance(request.body, dict | list) else request.body
        return cls(method=request.method.upper(), url=request.url, headers=headers, body=body)

    def set_header(self, name: str, value: str) -> None:
        for key in list(self.headers):
            if key.lower() == name.lower():
                del self.headers[key]
        self.headers[name] = value

    def encode(self) -> None:
        """Serialize the body and settle the content type. Idempotent."""
        if self.encoded:
            return
        content_type = _header(self.headers, "content-type")
        body = self.body
        if body is None:
            self.content = None
        elif isinstance(body, bytes):
            self.content = body
            if content_type is None:
                self.set_header("Content-Type", "application/octet-stream")
        elif isinstance(body, str):
            self.content = body
            if content_type is None:
                self.set_header("Content-Type", "text/plain; charset=utf-8")
        elif content_type and "x-www-form-urlencoded" in content_type.lower() and isinstance(body, Mapping):
            self.content = urlencode({key: _form_value(value) for key, value in body.items()}, doseq=True)
        else:
            self.content = json.dumps(body, separators=(",", ":"), default=str)
            if content_type is None:
                self.set_header("Content-Type", "application/json")
        self.encoded = True

    @property
    def body_text(self) -> str:
        if self.content is None:
            return ""
        if isinstance(self.content, bytes):
            return self.content.decode("utf-8", errors="replace")
        return self.content


def _form_value(value: Any) -> Any:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, list | tuple):
        return [_form_value(item) for item in value]
    if isinstance(value, dict):
        return json.dumps(value, separators=(",", ":"), default=str)
    return "" if value is None else value


def _structured_secret(secret: str | None) -> dict[str, Any]:
    if not secret:
        return {}
    text = secret.strip()
    if text.startswith("{"):
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def compute_signature(message: str | bytes, secret: str, algorithm: str = "sha256", encoding: str = "hex") -> str:
    """HMAC of ``message`` under ``secret``, hex or base64 encoded."""
    algorithm = algorithm.lower().replace("-", "")
    if algorithm not in SUPPORTED_ALGORITHMS:
        raise AuthError(f"Unsupported signing algorithm: {algorithm}", code="auth/invalid_config")
    data = message.encode("utf-8") if isinstance(message, str) else message
    digest = hmac.new(secret.encode("utf-8"), data, getattr(hashlib, algorithm))
    if encoding.lower() == "base64":
        return base64.b64encode(digest.digest()).decode("ascii")
    if encoding.lower() != "hex":
        raise AuthError(f"Unsupported signature encoding: {encoding}", code="auth/invalid_config")
    return digest.hexdigest()


def verify_signature(
    payload: str,
    signature: str,
    secret: str,
    timestamp: str | None = None,
    algorithm: str = "sha256",
    encoding: str = "hex",
    tolerance_seconds: int = 300,
    now: float | None = None,
) -> bool:
    """
    Verify an HMAC signature over a raw payload.

    Args:
        payload: The raw payload string exactly as received
        signature: The signature header value, with or without an ``<algorithm>=`` prefix
        secret: The shared secret key
        timestamp: Timestamp header value; when given it is part of the signed message
        tolerance_seconds: Max age of a timestamped message to accept (default 5 minutes)

    Returns:
        True if signature is valid, False otherwise
    """
    if timestamp is not None:
        try:
            sent_at = int(timestamp)
        except (ValueError, TypeError):
            return False
        if abs((now if now is not None else time.time()) - sent_at) > tolerance_seconds:
            return False
        message = f"{timestamp}.{payload}"
    else:
        message = payload

    prefix = f"{algorithm.lower()}="
    if signature.lower().startswith(prefix):
        signature = signature[len(prefix) :]

    expected = compute_signature(message, secret, algorithm, encoding)
    # Constant-time comparison
    return hmac.compare_digest(signature.strip().encode(), expected.encode())


class AuthStrategyResolver:
    """Applies an integration's auth strategy to prepared requests."""

    def __init__(
        self,
        secret_store: SecretStore,
        token_cache: TTLCache | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
        expiry_skew_seconds: float | None = None,
        timeout_seconds: float | None = None,
    ):
        config = get_config()
        self.secret_store = secret_store
        self.token_cache = token_cache if token_cache is not None else TTLCache()
        self.transport = transport
        self.clock = clock
        self.expiry_skew_seconds = (
            expiry_skew_seconds if expiry_skew_seconds is not None else config.cache.oauth_expiry_skew_seconds
        )
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else config.dispatch.timeout_ms / 1000

    async def resolve_secret(self, integration: Integration) -> str | None:
        """Fetch the referenced secret once per dispatch call."""
        auth = integration.auth
        if auth.strategy == "none":
            return None
        if auth.secret is None:
            if auth.strategy == "basic" and auth.metadata.get("username") and auth.metadata.get("password"):
                return None
            raise AuthError(
                f"Integration {integration.id} uses {auth.strategy} auth but has no secret reference",
                code="auth/invalid_config",
                integration_id=integration.id,
            )
        return await self.secret_store.fetch_secret(auth.secret)

    async def apply(self, request: PreparedRequest, integration: Integration, secret: str | None) -> None:
        """Inject credentials into ``request``; leaves it encoded."""
        auth = integration.auth
        metadata = auth.metadata

        if auth.strategy == "api_key" and metadata.get("location", "header") == "body":
            self._inject_api_key_body(request, metadata, secret, integration)

        request.encode()

        if auth.strategy == "none":
            return
        if auth.strategy == "api_key":
            self._apply_api_key(request, metadata, secret, integration)
        elif auth.strategy == "basic":
            self._apply_basic(request, metadata, secret, integration)
        elif auth.strategy == "oauth2":
            token = await self.get_oauth_token(integration, secret)
            header = metadata.get("tokenHeader", "Authorization")
            request.set_header(header, f"{metadata.get('tokenPrefix', 'Bearer ')}{token}")
        elif auth.strategy == "signed_payload":
            self._apply_signature(request, metadata, secret, integration)
        else:
            raise AuthError(f"Unsupported auth strategy: {auth.strategy}", code="auth/invalid_config")

    @staticmethod
    def _require(secret: str | None, integration: Integration) -> str:
        if not secret:
            raise AuthError(
                f"Integration {integration.id} requires a secret value",
                code="auth/missing_secret",
                integration_id=integration.id,
            )
        return secret

    def _inject_api_key_body(
        self, request: PreparedRequest, metadata: Mapping[str, Any], secret: str | None, integration: Integration
    ) -> None:
        value = f"{metadata.get('prefix', '')}{self._require(secret, integration)}"
        name = metadata.get("name") or metadata.get("field") or DEFAULT_API_KEY_NAMES["body"]
        if request.body is None:
            request.body = {}
        if not isinstance(request.body, dict):
            raise AuthError(
                "api_key body placement requires a JSON object body",
                code="auth/invalid_config",
                integration_id=integration.id,
            )
        request.body = {**request.body, name: value}

    def _apply_api_key(
        self, request: PreparedRequest, metadata: Mapping[str, Any], secret: str | None, integration: Integration
    ) -> None:
        location = metadata.get("location", "header")
        value = f"{metadata.get('prefix', '')}{self._require(secret, integration)}"
        if location == "header":
            request.set_header(metadata.get("headerName") or metadata.get("name") or DEFAULT_API_KEY_NAMES["header"], value)
        elif location == "query":
            request.params[metadata.get("paramName") or metadata.get("name") or DEFAULT_API_KEY_NAMES["query"]] = value
        elif location != "body":
            raise AuthError(
                f"Unsupported api_key location: {location}", code="auth/invalid_config", integration_id=integration.id
            )

    def _apply_basic(
        self, request: PreparedRequest, metadata: Mapping[str, Any], secret: str | None, integration: Integration
    ) -> None:
        structured = _structured_secret(secret)
        username = metadata.get("username") or structured.get("username")
        password = metadata.get("password") or structured.get("password")
        if not structured and secret:
            if username and not password:
                password = secret
            elif ":" in secret:
                username, password = secret.split(":", 1)
        if not username or password is None:
            raise AuthError(
                "Basic auth requires a username and password",
                code="auth/invalid_config",
                integration_id=integration.id,
            )
        token = base64.b64encode(f"{username}:{password}".encode()).decode("ascii")
        request.set_header("Authorization", f"Basic {token}")

    def _apply_signature(
        self, request: PreparedRequest, metadata: Mapping[str, Any], secret: str | None, integration: Integration
    ) -> None:
        signing_key = self._require(secret, integration)
        body_text = request.body_text
        timestamp_header = metadata.get("timestampHeader")
        if timestamp_header:
            timestamp = str(int(self.clock()))
            request.set_header(timestamp_header, timestamp)
            message = f"{timestamp}.{body_text}"
        else:
            message = body_text
        signature = compute_signature(
            message, signing_key, metadata.get("algorithm", "sha256"), metadata.get("encoding", "hex")
        )
        request.set_header(
            metadata.get("signatureHeader", "X-Signature"), f"{metadata.get('signaturePrefix', '')}{signature}"
        )

    def _oauth_parameters(self, integration: Integration, secret: str | None) -> dict[str, str | None]:
        auth = integration.auth
        metadata = auth.metadata
        structured = _structured_secret(secret)
        token_url = metadata.get("tokenUrl")
        client_id = metadata.get("clientId") or structured.get("clientId") or structured.get("client_id")
        client_secret = structured.get("clientSecret") or structured.get("client_secret") or (
            secret if not structured else None
        )
        if not token_url or not client_id or not client_secret:
            raise AuthError(
                "OAuth2 client credentials require tokenUrl, clientId and a client secret",
                code="auth/invalid_config",
                integration_id=integration.id,
            )
        scope = " ".join(auth.scopes) if auth.scopes else metadata.get("scope")
        return {
            "token_url": token_url,
            "client_id": client_id,
            "client_secret": client_secret,
            "scope": scope or None,
            "audience": metadata.get("audience") or None,
        }

    @staticmethod
    def token_cache_key(params: Mapping[str, str | None]) -> str:
        parts = [params.get(name) or "" for name in ("token_url", "client_id", "client_secret", "scope", "audience")]
        return "oauth2:" + hashlib.sha256("\n".join(parts).encode("utf-8")).hexdigest()

    async def get_oauth_token(self, integration: Integration, secret: str | None) -> str:
        """Cached client-credentials access token for the integration."""
        params = self._oauth_parameters(integration, secret)
        cache_key = self.token_cache_key(params)
        cached = self.token_cache.get(cache_key)
        if cached:
            return cached

        form = {"grant_type": "client_credentials"}
        if params["scope"]:
            form["scope"] = params["scope"]
        if params["audience"]:
            form["audience"] = params["audience"]
        headers = {"Accept": "application/json"}
        if integration.auth.metadata.get("clientAuthentication", "basic") == "body":
            form["client_id"] = params["client_id"]
            form["client_secret"] = params["client_secret"]
        else:
            credentials = f"{params['client_id']}:{params['client_secret']}".encode()
            headers["Authorization"] = f"Basic {base64.b64encode(credentials).decode('ascii')}"

        started = time.monotonic()
        try:
            async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout_seconds) as client:
                response = await client.post(params["token_url"], data=form, headers=headers)
        except httpx.RequestError as e:
            oauth_structured_logger.log_oauth_operation(
                operation="client_credentials_token",
                success=False,
                details={"integration_id": integration.id},
                error=type(e).__name__,
            )
            raise OAuthTokenError(
                f"OAuth token request for {integration.id} failed: {e}",
                details={"reason": type(e).__name__},
                integration_id=integration.id,
                cause=e,
                retryable=True,
            ) from e

        duration_ms = (time.monotonic() - started) * 1000
        try:
            token_payload = response.json()
        except ValueError:
            token_payload = {}
        access_token = token_payload.get("access_token") if isinstance(token_payload, dict) else None
        if response.status_code >= 400 or not access_token:
            oauth_structured_logger.log_oauth_operation(
                operation="client_credentials_token",
                success=False,
                details={"integration_id": integration.id, "status": response.status_code},
                error="token endpoint rejected the request",
                duration_ms=duration_ms,
            )
            raise OAuthTokenError(
                f"OAuth token endpoint returned {response.status_code} for {integration.id}",
                details={"status": response.status_code},
                integration_id=integration.id,
                retryable=is_retryable_status(response.status_code),
            )

        expires_in = token_payload.get("expires_in", 3600)
        try:
            ttl = max(float(expires_in) - self.expiry_skew_seconds, 0.0)
        except (TypeError, ValueError):
            ttl = 3600 - self.expiry_skew_seconds
        self.token_cache.set(cache_key, access_token, ttl_seconds=ttl)
        oauth_structured_logger.log_oauth_operation(
            operation="client_credentials_token",
            success=True,
            details={"integration_id": integration.id, "expires_in": expires_in},
            duration_ms=duration_ms,
        )
        return access_token
