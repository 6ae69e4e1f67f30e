"""Request helpers shared by admin blueprints."""

import hmac
import logging
from functools import wraps

from flask import current_app, jsonify, request

logger = logging.getLogger(__name__)

SHARED_SECRET_HEADER = "x-export-worker-secret"
SHARED_SECRET_BODY_FIELDS = ("secret", "sharedSecret", "token")


def json_body() -> dict:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


def bad_request(message: str = "Invalid request body."):
    return jsonify({"error": message, "code": "http/bad_request", "details": {}}), 400


def presented_secrets() -> list[str]:
    """Secret candidates from the worker header and the JSON body."""
    candidates = request.headers.getlist(SHARED_SECRET_HEADER)
    body = json_body()
    candidates.extend(str(body[field]) for field in SHARED_SECRET_BODY_FIELDS if body.get(field) is not None)
    return [candidate.strip() for candidate in candidates if candidate and candidate.strip()]


def require_shared_secret():
    """Decorator enforcing the export worker secret when one is configured."""

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            required = current_app.pipeline.config.export_worker.secret
            if not required:
                return f(*args, **kwargs)
            expected = required.encode()
            if not any(hmac.compare_digest(candidate.encode(), expected) for candidate in presented_secrets()):
                logger.warning(f"{request.path} denied due to invalid shared secret")
                return (
                    jsonify({"error": "Invalid authentication secret", "code": "auth/permission_denied", "details": {}}),
                    403,
                )
            return f(*args, **kwargs)

        return decorated_function

    return decorator
