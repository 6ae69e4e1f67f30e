"""Tests for the error taxonomy and HTTP status mapping."""

import pytest

from creative_export.core.errors import (
    AuthError,
    DataError,
    DispatchError,
    IntegrationError,
    MappingError,
    OAuthTokenError,
    SchemaValidationError,
    TransformSpecError,
    error_status_code,
)


class TestErrorPayloads:
    def test_default_codes(self):
        assert DataError("x").code == "data/not_found"
        assert MappingError("x").code == "mapping/error"
        assert TransformSpecError("x").code == "transform/invalid_spec"
        assert DispatchError("x").code == "dispatch/network_error"
        assert AuthError("x").code == "auth/invalid_config"

    def test_to_dict(self):
        error = MappingError("Bad token", code="mapping/missing_token", details={"token": "a"}, line=2, column=5)

        assert error.to_dict() == {
            "error": "Bad token",
            "code": "mapping/missing_token",
            "details": {"token": "a", "line": 2, "column": 5},
        }
        assert error.line == 2

    def test_details_are_read_only(self):
        error = IntegrationError("x", details={"a": 1})

        with pytest.raises(TypeError):
            error.details["a"] = 2

    def test_dispatch_details(self):
        error = DispatchError("down", integration_id="int-1", attempts=3)

        assert error.details == {"integrationId": "int-1", "attempts": 3}
        assert isinstance(AuthError("x"), DispatchError)

    def test_oauth_token_error(self):
        error = OAuthTokenError("token down", details={"status": 503}, integration_id="int-1", retryable=True)

        assert error.code == "dispatch/oauth_token_error"
        assert error.retryable
        assert error.details == {"status": 503, "integrationId": "int-1"}
        assert error_status_code(error) == 502
        assert not OAuthTokenError("rejected").retryable

    def test_validation_errors_listed(self):
        error = SchemaValidationError("bad", [{"instancePath": "/a", "message": "m"}])

        assert error.errors[0]["instancePath"] == "/a"
        assert error.to_dict()["details"]["errors"] == [{"instancePath": "/a", "message": "m"}]


class TestStatusCodes:
    @pytest.mark.parametrize(
        "code,status",
        [
            ("mapping/review_not_found", 404),
            ("data/job_not_found", 404),
            ("data/integration_not_found", 404),
            ("transform/invalid_spec", 400),
            ("mapping/missing_token", 422),
            ("schema/validation_failed", 422),
            ("data/invalid_integration", 422),
            ("dispatch/network_error", 502),
            ("auth/missing_secret", 502),
            ("integration/error", 400),
        ],
    )
    def test_mapping(self, code, status):
        assert error_status_code(IntegrationError("x", code=code)) == status
