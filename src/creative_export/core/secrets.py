"""Secret resolution for integration credentials.

Credentials are referenced from integration configs by Secret Manager style
names. ``EnvSecretStore`` maps those names onto environment variables, and
Fernet-encrypted values are decrypted transparently when a key is configured.
"""

import logging
import os
import re
from collections.abc import Mapping
from typing import Protocol

from creative_export.core.config import get_config
from creative_export.core.errors import AuthError
from creative_export.core.schemas import SecretReference
from creative_export.core.utils.encryption import decrypt_secret, looks_encrypted

logger = logging.getLogger(__name__)

SECRET_NAMES = {
    "oauth_client": "integrations-oauth-client",
    "webhook_signing_secret": "integrations-webhook-signing-key",
    "api_key": "integrations-shared-api-key",
}

_RESOURCE_NAME = re.compile(r"^projects/[^/]+/secrets/(?P<id>[^/]+)(?:/versions/(?P<version>[^/]+))?$")


def to_secret_manager_name(secret_id: str, version: str = "latest", project: str | None = None) -> str:
    """Fully-qualified ``projects/<p>/secrets/<id>/versions/<v>`` name."""
    if secret_id.startswith("projects/"):
        return secret_id if "/versions/" in secret_id else f"{secret_id}/versions/{version}"
    project = project or get_config().secrets.project
    return f"{project}/secrets/{secret_id}/versions/{version}"


def split_secret_name(name: str) -> tuple[str, str]:
    """``(secret_id, version)`` from a bare id or a fully-qualified name."""
    match = _RESOURCE_NAME.match(name)
    if match:
        return match.group("id"), match.group("version") or "latest"
    return name, "latest"


class SecretStore(Protocol):
    async def fetch_secret(self, ref: SecretReference) -> str: ...


def _missing(ref: SecretReference) -> AuthError:
    return AuthError(
        f"Secret '{ref.name}' could not be resolved",
        code="auth/missing_secret",
        details={"secret": ref.name, "version": ref.version},
    )


class StaticSecretStore:
    """Secrets served from a dict keyed by secret id (tests, dry runs)."""

    def __init__(self, secrets: Mapping[str, str] | None = None):
        self._secrets = dict(secrets or {})

    async def fetch_secret(self, ref: SecretReference) -> str:
        secret_id, version = split_secret_name(ref.name)
        for key in (f"{secret_id}@{ref.version}", f"{secret_id}@{version}", secret_id, ref.name):
            if key in self._secrets:
                return self._secrets[key]
        raise _missing(ref)


class EnvSecretStore:
    """Reads ``<prefix><SECRET_ID>`` (optionally ``_V<version>``) from the environment."""

    def __init__(self, prefix: str | None = None, encryption_key: str | None = None, environ=None):
        settings = get_config().secrets
        self.prefix = prefix if prefix is not None else settings.env_prefix
        self._encryption_key = encryption_key or settings.encryption_key
        self._environ = environ if environ is not None else os.environ

    def variable_names(self, ref: SecretReference) -> list[str]:
        secret_id, version = split_secret_name(ref.name)
        version = ref.version if ref.version != "latest" else version
        base = self.prefix + re.sub(r"[^A-Za-z0-9]", "_", secret_id).upper()
        names = [base]
        if version != "latest":
            names.insert(0, f"{base}_V{re.sub(r'[^A-Za-z0-9]', '_', version).upper()}")
        return names

    async def fetch_secret(self, ref: SecretReference) -> str:
        for name in self.variable_names(ref):
            value = self._environ.get(name)
            if not value:
                continue
            if self._encryption_key and looks_encrypted(value):
                try:
                    return decrypt_secret(value, self._encryption_key)
                except ValueError as e:
                    raise AuthError(
                        f"Secret '{ref.name}' could not be decrypted",
                        code="auth/invalid_config",
                        details={"secret": ref.name},
                    ) from e
            return value
        logger.warning(f"Secret {ref.name} not found in environment")
        raise _missing(ref)
