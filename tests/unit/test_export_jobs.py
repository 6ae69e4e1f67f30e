"""Tests for export job orchestration."""

import json

import httpx
import pytest

from creative_export.core.config import reset_config
from creative_export.core.database.document_store import AD_ASSETS, EXPORT_JOBS, INTEGRATIONS
from creative_export.core.errors import DataError
from creative_export.core.schemas import SummaryCounts, can_transition
from creative_export.services.export_jobs import collect_ad_ids, resolve_integration_key, unique_ids
from tests.fixtures import AdFactory, IntegrationFactory, JobFactory, PartnerTransport

A1_URL = "https://cdn.example.com/creatives/a1.png"


@pytest.fixture
def seeded_store(store):
    store.set(INTEGRATIONS, "acme", IntegrationFactory.create())
    store.set(AD_ASSETS, "a1", AdFactory.create(url=A1_URL))
    return store


class TestJobHelpers:
    """Test job document parsing."""

    def test_unique_ids_trims_and_dedupes(self):
        assert unique_ids([" a1 ", "a2", "a1", {"id": "a3"}, None, "", 7]) == ["a1", "a2", "a3", "7"]

    def test_unique_ids_ignores_non_lists(self):
        assert unique_ids("a1") == []

    def test_ad_ids_collected_from_every_field(self):
        job = {"approvedAdIds": ["a1"], "adIds": ["a2", "a1"], "ads": [{"id": "a3"}]}

        assert collect_ad_ids(job) == ["a1", "a2", "a3"]

    def test_integration_key_fallbacks(self):
        assert resolve_integration_key({"integrationKey": " ", "partner": "acme"}) == "acme"
        assert resolve_integration_key({}) == ""


class TestJobStatus:
    def test_transitions(self):
        assert can_transition(None, "processing")
        assert can_transition("pending", "processing")
        assert can_transition("processing", "partial")
        assert not can_transition("success", "processing")
        assert not can_transition("pending", "success")

    @pytest.mark.parametrize(
        "states,expected",
        [
            (["received", "sent"], "success"),
            (["received", "error"], "partial"),
            (["error", "pending"], "failed"),
            (["duplicate"], "success"),
        ],
    )
    def test_summary_status(self, states, expected):
        assert SummaryCounts.from_states(states).summary_status() == expected


class TestRunJob:
    """Test end-to-end job execution against a scripted partner."""

    @pytest.mark.asyncio
    async def test_successful_export(self, seeded_store, make_pipeline):
        seeded_store.set(EXPORT_JOBS, "job-1", JobFactory.create())
        partner = PartnerTransport()

        result = await make_pipeline(partner).orchestrator.run_job("job-1")

        assert result.status == "success"
        assert result.attempt == 1
        assert result.summary.counts.to_document() == {
            "total": 1,
            "sent": 0,
            "received": 1,
            "duplicate": 0,
            "error": 0,
            "success": 1,
        }
        assert json.loads(partner.requests[0].content) == {"image_1x1": A1_URL}

        job = seeded_store.get(EXPORT_JOBS, "job-1")
        assert job["status"] == "success"
        assert job["attempt"] == 1
        assert job["integration"]["endpoint"] == "https://api.acme.example/v1/ads"
        assert job["syncStatus"]["a1"]["state"] == "received"
        assert job["syncStatus"]["a1"]["responseStatus"] == 200
        assert job["syncStatus"]["a1"]["assetUrl"] == A1_URL
        assert job["triggeredBy"] == "tests@example.com"
        assert "completedAt" in job

    @pytest.mark.asyncio
    async def test_missing_required_slot_fails_without_request(self, store, make_pipeline):
        store.set(INTEGRATIONS, "acme", IntegrationFactory.create())
        store.set(AD_ASSETS, "a1", AdFactory.create(aspect_ratio="9x16"))
        store.set(EXPORT_JOBS, "job-1", JobFactory.create())
        partner = PartnerTransport()

        result = await make_pipeline(partner).orchestrator.run_job("job-1")

        assert result.status == "failed"
        assert result.sync_status["a1"].state == "error"
        assert result.sync_status["a1"].message == "Missing image_1x1"
        assert partner.call_count == 0

    @pytest.mark.asyncio
    async def test_attempt_counter_increments(self, seeded_store, make_pipeline):
        seeded_store.set(EXPORT_JOBS, "job-1", JobFactory.create(attempt=2, status="failed"))

        result = await make_pipeline().orchestrator.run_job("job-1")

        assert result.attempt == 3
        assert seeded_store.get(EXPORT_JOBS, "job-1")["attempt"] == 3

    @pytest.mark.asyncio
    async def test_unknown_integration(self, store, make_pipeline):
        store.set(EXPORT_JOBS, "job-1", JobFactory.create(integration_key="nope"))

        result = await make_pipeline().orchestrator.run_job("job-1")

        assert result.status == "failed"
        assert result.error == "Unknown integration: nope"
        job = store.get(EXPORT_JOBS, "job-1")
        assert job["status"] == "failed"
        assert job["summary"]["message"] == "Unknown integration: nope"

    @pytest.mark.asyncio
    async def test_builtin_without_endpoint(self, store, make_pipeline):
        store.set(EXPORT_JOBS, "job-1", JobFactory.create(integration_key="compass"))

        result = await make_pipeline().orchestrator.run_job("job-1")

        assert result.status == "failed"
        assert result.error == "Missing integration endpoint"
        assert store.get(EXPORT_JOBS, "job-1")["integration"]["key"] == "compass"

    @pytest.mark.asyncio
    async def test_no_ads_is_success(self, seeded_store, make_pipeline):
        seeded_store.set(EXPORT_JOBS, "job-1", JobFactory.create(approved_ad_ids=[]))
        partner = PartnerTransport()

        result = await make_pipeline(partner).orchestrator.run_job("job-1")

        assert result.status == "success"
        assert result.summary.message == "No approved ads to export"
        assert partner.call_count == 0

    @pytest.mark.asyncio
    async def test_missing_job(self, make_pipeline):
        with pytest.raises(DataError) as exc_info:
            await make_pipeline().orchestrator.run_job("ghost")

        assert exc_info.value.code == "data/job_not_found"

    @pytest.mark.asyncio
    async def test_missing_ad_does_not_stop_job(self, seeded_store, make_pipeline):
        seeded_store.set(EXPORT_JOBS, "job-1", JobFactory.create(approved_ad_ids=["ghost", "a1", " a1 "]))

        result = await make_pipeline().orchestrator.run_job("job-1")

        assert result.status == "partial"
        assert list(result.sync_status) == ["ghost", "a1"]
        assert result.sync_status["ghost"].message == "Ad asset not found"
        assert result.sync_status["a1"].state == "received"

    @pytest.mark.asyncio
    async def test_network_error_recorded_per_ad(self, seeded_store, make_pipeline, sleep):
        seeded_store.set(EXPORT_JOBS, "job-1", JobFactory.create())
        partner = PartnerTransport(httpx.ConnectError)

        result = await make_pipeline(partner).orchestrator.run_job("job-1")

        assert result.status == "failed"
        assert result.sync_status["a1"].message.startswith("Network error: ")
        assert partner.call_count == 3
        assert sleep.delays == [0.1, 0.2]

    @pytest.mark.asyncio
    async def test_partner_rejection(self, seeded_store, make_pipeline):
        seeded_store.set(EXPORT_JOBS, "job-1", JobFactory.create())

        result = await make_pipeline(PartnerTransport((422, {"error": "bad"}))).orchestrator.run_job("job-1")

        assert result.sync_status["a1"].state == "error"
        assert result.sync_status["a1"].response_status == 422

    @pytest.mark.asyncio
    async def test_asset_override(self, seeded_store, make_pipeline):
        override = "https://cdn.example.com/creatives/override.png"
        seeded_store.set(EXPORT_JOBS, "job-1", JobFactory.create(assetOverrides={"a1": {"assetUrl": override}}))
        partner = PartnerTransport()

        result = await make_pipeline(partner).orchestrator.run_job("job-1")

        assert result.sync_status["a1"].asset_url == override
        assert json.loads(partner.requests[0].content) == {"image_1x1": override}


class TestCompassJobs:
    """Test jobs routed to the built-in Compass adapter."""

    @pytest.fixture(autouse=True)
    def compass_endpoint(self, monkeypatch):
        monkeypatch.setenv("COMPASS_EXPORT_ENDPOINT", "https://compass.example/api/export")
        monkeypatch.setenv("COMPASS_EXPORT_ENDPOINT_PROD", "https://compass.example/prod/export")
        reset_config()

    @pytest.mark.asyncio
    async def test_partial_job_via_alias(self, store, make_pipeline):
        store.set(AD_ASSETS, "a1", AdFactory.create(url=A1_URL))
        store.set(AD_ASSETS, "a2", AdFactory.create(url="https://cdn.example.com/creatives/"))
        store.set(
            EXPORT_JOBS,
            "job-1",
            JobFactory.create(integration_key="adlog", approved_ad_ids=["a1", "a2"], brandCode="NW"),
        )
        partner = PartnerTransport((202, {"message": "queued"}))

        result = await make_pipeline(partner).orchestrator.run_job("job-1")

        assert result.status == "partial"
        assert result.integration_key == "compass"
        assert result.sync_status["a1"].state == "sent"
        assert result.sync_status["a1"].message == "queued"
        assert result.sync_status["a2"].state == "error"
        assert result.sync_status["a2"].message == "Asset URL looks like a folder, not a file"
        assert result.summary.counts.sent == 1
        assert result.summary.counts.error == 1

        request = partner.requests[0]
        assert str(request.url) == "https://compass.example/api/export"
        body = json.loads(request.content)
        assert body["job"]["integrationKey"] == "compass"
        assert body["ad"]["assetUrl"] == A1_URL
        assert body["ad"]["brandCode"] == "NW"

    @pytest.mark.asyncio
    async def test_missing_brand_code(self, store, make_pipeline):
        store.set(AD_ASSETS, "a1", AdFactory.create(url=A1_URL))
        store.set(EXPORT_JOBS, "job-1", JobFactory.create(integration_key="compass"))
        partner = PartnerTransport()

        result = await make_pipeline(partner).orchestrator.run_job("job-1")

        assert result.status == "failed"
        assert result.sync_status["a1"].message == "Missing brandCode"
        assert partner.call_count == 0

    @pytest.mark.asyncio
    async def test_target_env_selects_endpoint(self, store, make_pipeline):
        store.set(AD_ASSETS, "a1", AdFactory.create(url=A1_URL, brandCode="NW"))
        store.set(EXPORT_JOBS, "job-1", JobFactory.create(integration_key="compass", targetEnv="production"))
        partner = PartnerTransport()

        await make_pipeline(partner).orchestrator.run_job("job-1")

        assert str(partner.requests[0].url) == "https://compass.example/prod/export"
