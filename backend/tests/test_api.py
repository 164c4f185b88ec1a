"""
Tests for the operator API: campaigns, deployment, recommendations, conflicts and platforms.
"""

import pytest
from unittest.mock import patch
from httpx import AsyncClient, ASGITransport

from adpilot.config import Settings
from adpilot.database import get_db
from adpilot.main import app
from adpilot.models import (
    CampaignStatus, ConflictStatus, Platform, Recommendation, RecommendationType, RecommendationStatus,
)
from adpilot.platform_client import CAMPAIGN
from adpilot.routers.campaigns import get_platform_clients, get_asset_storage, get_store


@pytest.fixture
async def api(session_factory, clients, storage, breaker_store):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_platform_clients] = lambda: clients
    app.dependency_overrides[get_asset_storage] = lambda: storage
    app.dependency_overrides[get_store] = lambda: breaker_store
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


async def _pending_recommendation(db, campaign, rec_type=RecommendationType.PAUSE_CAMPAIGN.value):
    rec = Recommendation(
        campaign_id=campaign.id,
        type=rec_type,
        target_entity={"type": "campaign", "id": str(campaign.id)},
        parameters={"new_status": "paused"},
        rationale="ROAS of 0.40 is below the pause threshold of 0.8.",
        requires_approval=True,
        status=RecommendationStatus.PENDING.value,
    )
    db.add(rec)
    await db.commit()
    return rec


# ── Auth ──────────────────────────────────────────────────────────────

@pytest.mark.anyio
async def test_api_key_required_when_configured(api):
    with patch("adpilot.auth.get_settings", return_value=Settings(api_key="secret-key")):
        response = await api.get("/api/campaigns")
        assert response.status_code == 401
        response = await api.get("/api/campaigns", headers={"Authorization": "Bearer wrong"})
        assert response.status_code == 401
        response = await api.get("/api/campaigns", headers={"Authorization": "Bearer secret-key"})
        assert response.status_code == 200


# ── Campaigns ─────────────────────────────────────────────────────────

@pytest.mark.anyio
async def test_list_and_get_campaign(api, factory):
    customer = await factory.customer()
    campaign = await factory.campaign(customer)
    await factory.strategy(campaign)
    await factory.strategy(campaign, active=False)

    response = await api.get("/api/campaigns", params={"customer_id": str(customer.id)})
    assert response.status_code == 200
    assert [c["id"] for c in response.json()] == [str(campaign.id)]

    response = await api.get(f"/api/campaigns/{campaign.id}")
    data = response.json()
    assert data["name"] == "Spring Sale"
    assert len(data["strategies"]) == 1
    assert data["strategies"][0]["active"] is True


@pytest.mark.anyio
async def test_invalid_and_unknown_ids(api):
    assert (await api.get("/api/campaigns/not-a-uuid")).status_code == 400
    assert (await api.get("/api/campaigns/00000000-0000-0000-0000-000000000000")).status_code == 404


@pytest.mark.anyio
async def test_activate_strategies_and_versions(api, factory):
    customer = await factory.customer()
    campaign = await factory.campaign(customer)
    body = {"strategies": [{"platform": "google_ads", "campaign_type": "search", "daily_budget": 40}]}

    first = await api.post(f"/api/campaigns/{campaign.id}/strategies", json=body)
    assert first.status_code == 200
    assert first.json()["snapshot"] is None
    assert first.json()["strategies"][0]["active"] is True

    body["strategies"][0]["daily_budget"] = 60
    second = await api.post(f"/api/campaigns/{campaign.id}/strategies", json=body)
    assert second.json()["snapshot"] is not None

    versions = (await api.get(f"/api/campaigns/{campaign.id}/versions")).json()
    assert len(versions) == 1
    assert versions[0]["strategies"][0]["daily_budget"] == 40

    response = await api.post(f"/api/campaigns/{campaign.id}/rollback")
    assert response.status_code == 200
    strategies = response.json()["strategies"]
    assert [s["daily_budget"] for s in strategies] == [40]


@pytest.mark.anyio
async def test_activate_rejects_duplicate_platform(api, factory):
    customer = await factory.customer()
    campaign = await factory.campaign(customer)
    body = {"strategies": [{"platform": "google_ads"}, {"platform": "google_ads", "campaign_type": "video"}]}
    response = await api.post(f"/api/campaigns/{campaign.id}/strategies", json=body)
    assert response.status_code == 400


@pytest.mark.anyio
async def test_rollback_without_versions_conflicts(api, factory):
    customer = await factory.customer()
    campaign = await factory.campaign(customer)
    response = await api.post(f"/api/campaigns/{campaign.id}/rollback")
    assert response.status_code == 409


@pytest.mark.anyio
async def test_snapshot_endpoint(api, factory):
    customer = await factory.customer()
    campaign = await factory.campaign(customer)
    assert (await api.post(f"/api/campaigns/{campaign.id}/snapshot")).status_code == 400
    await factory.strategy(campaign)
    response = await api.post(f"/api/campaigns/{campaign.id}/snapshot")
    assert response.status_code == 200
    assert len((await api.get(f"/api/campaigns/{campaign.id}/versions")).json()) == 1


@pytest.mark.anyio
async def test_deploy_campaign_endpoint(api, factory, google_client):
    customer = await factory.customer()
    campaign = await factory.campaign(customer)
    await factory.deployable(campaign)

    response = await api.post(f"/api/campaigns/{campaign.id}/deploy")
    assert response.status_code == 200
    report = response.json()
    assert report["success"] is True
    assert report["results"]["google_ads"]["resources"]["ad"]

    data = (await api.get(f"/api/campaigns/{campaign.id}")).json()
    assert data["google_ads_campaign_id"] == report["results"]["google_ads"]["resources"]["campaign"]
    assert data["strategies"][0]["deployment_status"] == "deployed"


@pytest.mark.anyio
async def test_deploy_single_strategy_endpoint(api, factory):
    customer = await factory.customer()
    campaign = await factory.campaign(customer)
    active = await factory.deployable(campaign, platform=Platform.FACEBOOK_ADS.value)
    inactive = await factory.strategy(campaign, active=False)

    response = await api.post(f"/api/campaigns/{campaign.id}/strategies/{inactive.id}/deploy")
    assert response.status_code == 400

    response = await api.post(f"/api/campaigns/{campaign.id}/strategies/{active.id}/deploy")
    assert response.status_code == 200
    assert response.json()["target"] == "facebook_display"
    assert response.json()["success"] is True


@pytest.mark.anyio
async def test_delete_campaign(api, factory, google_client):
    customer = await factory.customer()
    draft = await factory.campaign(customer, name="Draft", status=CampaignStatus.DRAFT.value)
    live = await factory.campaign(customer, name="Live", google_ads_campaign_id="g-1")

    response = await api.delete(f"/api/campaigns/{draft.id}")
    assert response.json()["deleted"] is True
    assert (await api.get(f"/api/campaigns/{draft.id}")).status_code == 404

    response = await api.delete(f"/api/campaigns/{live.id}")
    assert response.json() == {"id": str(live.id), "deleted": False, "status": "removed"}
    assert (await api.get(f"/api/campaigns/{live.id}")).json()["status"] == "removed"

    # A deploy that failed after the budget step still left a remote budget behind
    partial = await factory.campaign(customer, name="Partial")
    await factory.deployable(partial)
    google_client.fail("create", CAMPAIGN, code="policy_violation", retryable=False)
    report = (await api.post(f"/api/campaigns/{partial.id}/deploy")).json()
    assert report["results"]["google_ads"]["failed_step"] == "campaign"
    assert report["results"]["google_ads"]["resources"]["budget"]

    response = await api.delete(f"/api/campaigns/{partial.id}")
    assert response.json() == {"id": str(partial.id), "deleted": False, "status": "removed"}
    assert (await api.get(f"/api/campaigns/{partial.id}")).status_code == 200


# ── Recommendations & Conflicts ───────────────────────────────────────

@pytest.mark.anyio
async def test_review_and_apply_recommendation(api, db, factory):
    customer = await factory.customer()
    campaign = await factory.campaign(customer)
    rec = await _pending_recommendation(db, campaign)

    listed = (await api.get("/api/recommendations", params={"status": "pending"})).json()
    assert [r["id"] for r in listed] == [str(rec.id)]

    assert (await api.post(f"/api/recommendations/{rec.id}/review", json={"action": "maybe"})).status_code == 400
    assert (await api.post(f"/api/recommendations/{rec.id}/apply")).status_code == 409

    response = await api.post(f"/api/recommendations/{rec.id}/review", json={"action": "approve", "review_note": "ok"})
    assert response.json()["status"] == "approved"
    assert (await api.post(f"/api/recommendations/{rec.id}/review", json={"action": "reject"})).status_code == 409

    response = await api.post(f"/api/recommendations/{rec.id}/apply")
    assert response.status_code == 200
    outcome = response.json()
    assert outcome["status"] == "conflict"

    summary = (await api.get("/api/recommendations/summary")).json()
    assert summary == {"approved": 1}

    conflicts = (await api.get("/api/conflicts", params={"status": "unresolved"})).json()
    assert [c["id"] for c in conflicts] == [outcome["conflict_id"]]
    assert (await api.get(f"/api/campaigns/{campaign.id}")).json()["status"] == "active"


@pytest.mark.anyio
async def test_resolve_conflict_applies_change(api, db, factory):
    customer = await factory.customer()
    campaign = await factory.campaign(customer)
    rec = await _pending_recommendation(db, campaign)
    await api.post(f"/api/recommendations/{rec.id}/review", json={"action": "approve"})
    conflict_id = (await api.post(f"/api/recommendations/{rec.id}/apply")).json()["conflict_id"]

    response = await api.post(f"/api/conflicts/{conflict_id}/resolve", json={"note": "go", "apply_change": True})
    assert response.status_code == 200
    assert response.json()["status"] == ConflictStatus.RESOLVED.value
    assert response.json()["recommendation_status"] == "applied"

    assert (await api.get(f"/api/campaigns/{campaign.id}")).json()["status"] == "paused"
    assert (await api.get(f"/api/conflicts/{conflict_id}")).json()["resolution_note"] == "go"
    assert (await api.post(f"/api/conflicts/{conflict_id}/resolve", json={})).status_code == 409


# ── Platforms ─────────────────────────────────────────────────────────

@pytest.mark.anyio
async def test_platform_breakers(api, breaker_store):
    from adpilot.services.circuit_breaker import breaker_for
    breaker = breaker_for("google_ads", breaker_store)
    for _ in range(3):
        await breaker.record_failure()

    platforms = {p["platform"]: p for p in (await api.get("/api/platforms")).json()}
    assert platforms["google_ads"]["available"] is False
    assert platforms["google_ads"]["configured"] is True
    assert platforms["facebook_ads"]["available"] is True

    assert (await api.get("/api/platforms/google_ads/breaker")).json()["tripped"] is True
    reset = (await api.post("/api/platforms/google_ads/breaker/reset")).json()
    assert reset["tripped"] is False
    assert (await api.get("/api/platforms/tiktok_ads/breaker")).status_code == 404
