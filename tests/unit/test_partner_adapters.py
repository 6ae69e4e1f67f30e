"""Tests for the built-in and config-driven partner adapters."""

import pytest

from creative_export.adapters import CompassAdapter, ConfiguredIntegrationAdapter, get_adapter_class
from creative_export.adapters.base import ExportItem, partner_message
from creative_export.core.config import reset_config
from creative_export.core.http_dispatch import DispatchResponse
from creative_export.core.schemas import Integration
from tests.fixtures import IntegrationFactory, ReviewFactory


@pytest.fixture
def compass():
    return CompassAdapter()


def make_item(ad=None, job=None, asset_url="https://cdn.example.com/a1.png") -> ExportItem:
    return ExportItem(
        ad=ad if ad is not None else {"id": "a1", "name": " Spring ", "tags": ["hero"]},
        job=job if job is not None else {"brandCode": "NW", "groupDesc": "Launch"},
        job_id="job-1",
        asset_url=asset_url,
        partner_key="compass",
    )


class TestCompassResponses:
    """Test Compass status code interpretation."""

    @pytest.mark.parametrize(
        "status,state",
        [
            (202, "sent"),
            (200, "received"),
            (201, "received"),
            (204, "received"),
            (208, "duplicate"),
            (409, "duplicate"),
            (400, "error"),
            (500, "error"),
        ],
    )
    def test_status_table(self, compass, status, state):
        outcome = compass.handle_response(DispatchResponse(status=status), make_item())

        assert outcome.state == state

    def test_message_from_body(self, compass):
        response = DispatchResponse(status=409, body={"detail": "Already exported"})

        assert compass.handle_response(response, make_item()).message == "Already exported"

    def test_default_messages(self, compass):
        assert compass.handle_response(DispatchResponse(status=202), make_item()).message == "Accepted by partner"
        assert compass.handle_response(DispatchResponse(status=418), make_item()).message == "Unexpected status 418"

    def test_partner_message_falls_back_to_text(self):
        assert partner_message(DispatchResponse(status=500, text=" upstream down ")) == "upstream down"
        assert partner_message(DispatchResponse(status=500, reason="Internal Server Error")) == "Internal Server Error"


class TestCompassRequests:
    def test_endpoint_override_wins(self, compass, monkeypatch):
        monkeypatch.setenv("COMPASS_EXPORT_ENDPOINT", "https://compass.example/export")
        reset_config()

        assert compass.get_endpoint({"endpointOverride": " https://override.example/x "}) == "https://override.example/x"
        assert compass.get_endpoint({}) == "https://compass.example/export"

    def test_legacy_adlog_variables(self, compass, monkeypatch):
        monkeypatch.setenv("ADLOG_EXPORT_ENDPOINT_STAGING", "https://adlog.example/staging")
        reset_config()

        assert compass.get_endpoint({"targetEnv": "Staging"}) == "https://adlog.example/staging"
        assert compass.get_endpoint({"targetEnv": "prod"}) is None

    def test_validation_errors(self, compass):
        result = compass.validate_ad(make_item(ad={"id": "a1"}, job={}, asset_url="not a url"))

        assert result.errors == ["Missing brandCode", "Invalid assetUrl"]

    def test_asset_url_resolved_from_ad(self, compass):
        item = make_item(ad={"id": "a1", "brandCode": "NW", "exportUrl": "https://cdn.example.com/e.png"}, asset_url=None)

        result = compass.validate_ad(item)

        assert result.errors == []
        assert result.asset_url == "https://cdn.example.com/e.png"

    def test_payload_shape(self, compass):
        payload = compass.build_payload(make_item())

        assert payload["job"]["id"] == "job-1"
        assert payload["job"]["label"] == "Compass AdLog"
        assert payload["job"]["groupDesc"] == "Launch"
        assert payload["ad"] == {
            "id": "a1",
            "adGroupId": None,
            "brandCode": "NW",
            "name": "Spring",
            "type": "",
            "status": "",
            "groupDesc": "Launch",
            "assetUrl": "https://cdn.example.com/a1.png",
            "tags": ["hero"],
            "metadata": {},
        }


class TestAdapterLookup:
    def test_alias_lookup(self):
        assert get_adapter_class("AdLog") is CompassAdapter

    def test_unknown_adapter(self):
        with pytest.raises(ValueError):
            get_adapter_class("unknown")

    def test_matches_is_case_insensitive(self, compass):
        assert compass.matches(" COMPASS ")
        assert not compass.matches("acme")


class TestConfiguredAdapter:
    """Test adapters built from stored integration documents."""

    @pytest.fixture
    def integration(self):
        return Integration.model_validate(
            {
                "id": "int-1",
                **IntegrationFactory.create(
                    slug="acme-ads",
                    requiredFields=["recipe_no"],
                    idempotencyKeyPrefix="acme-",
                    headers={"X-Partner": "acme"},
                    mapping={
                        "type": "fields",
                        "fields": {"recipe_no": {"source": "recipe_no"}, "image_1x1": {"source": "image_1x1"}},
                    },
                ),
            }
        )

    def test_keys_and_aliases(self, integration):
        adapter = ConfiguredIntegrationAdapter(integration)

        assert adapter.key == "acme"
        assert adapter.label == "Acme Ads"
        assert adapter.aliases == ("int-1", "acme-ads")
        assert adapter.matches("acme-ads")

    def test_endpoint_from_integration(self, integration):
        assert ConfiguredIntegrationAdapter(integration).get_endpoint({}) == "https://api.acme.example/v1/ads"

    def test_payload_from_mapping(self, integration):
        adapter = ConfiguredIntegrationAdapter(integration)
        item = ExportItem(ad=ReviewFactory.create_ad("a1"), job={}, job_id="job-1", partner_key="acme")

        assert adapter.build_payload(item) == {"recipe_no": 12, "image_1x1": "https://cdn.example.com/a1.png"}
        assert adapter.required_field_value("recipe_no", item) == "12"

    def test_headers_and_idempotency_key(self, integration):
        adapter = ConfiguredIntegrationAdapter(integration)
        item = ExportItem(ad={"id": "a1"}, job={}, job_id="job-1")

        assert adapter.build_headers(item) == {"Content-Type": "application/json", "X-Partner": "acme"}
        assert adapter.idempotency_key(item) == "acme-job-1-a1"
