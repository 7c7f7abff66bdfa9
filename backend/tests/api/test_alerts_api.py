"""Tests for alert API endpoints."""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from hostguard.alerts.models import AlertCategory, AlertSeverity, create_alert
from hostguard.config import Settings
from hostguard.main import app
from hostguard.setup import build_engine


@pytest.fixture
def engine(tmp_path):
    return build_engine(Settings(audit_source_root=tmp_path), probes=[], scanners=[])


@pytest_asyncio.fixture
async def alerts_client(engine):
    with patch("hostguard.api.alerts.get_engine", return_value=engine):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac


def raise_alert(engine, severity=AlertSeverity.WARNING, source_key="cpu", **kwargs):
    return engine.alert_manager.raise_alert(
        create_alert(
            severity=severity,
            category=kwargs.pop("category", AlertCategory.HEALTH_THRESHOLD),
            source_key=source_key,
            message=f"{source_key} above threshold",
            **kwargs,
        )
    )


class TestListAlerts:
    """Tests for GET /api/alerts."""

    @pytest.mark.asyncio
    async def test_engine_not_initialized(self, client):
        response = await client.get("/api/alerts")

        assert response.status_code == 503

    @pytest.mark.asyncio
    async def test_list_most_recent_first_with_counts(self, alerts_client, engine):
        raise_alert(engine, source_key="cpu")
        raise_alert(engine, severity=AlertSeverity.CRITICAL, source_key="memory")

        response = await alerts_client.get("/api/alerts")

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 2
        assert [a["source_key"] for a in data["alerts"]] == ["memory", "cpu"]
        assert data["counts"]["active"] == 2
        assert data["counts"]["critical"] == 1

    @pytest.mark.asyncio
    async def test_filters(self, alerts_client, engine):
        raise_alert(engine, source_key="cpu")
        raise_alert(engine, severity=AlertSeverity.CRITICAL, source_key="memory")
        raise_alert(
            engine,
            severity=AlertSeverity.CRITICAL,
            source_key="203.0.113.7",
            category=AlertCategory.RATELIMIT_BLOCK,
        )

        response = await alerts_client.get(
            "/api/alerts", params={"severity": "critical", "category": "health.threshold"}
        )

        assert [a["source_key"] for a in response.json()["alerts"]] == ["memory"]

    @pytest.mark.asyncio
    async def test_window_filter(self, alerts_client, engine):
        old = datetime.now(tz=timezone.utc) - timedelta(hours=2)
        raise_alert(engine, source_key="disk", timestamp=old)
        raise_alert(engine, source_key="cpu")

        response = await alerts_client.get("/api/alerts", params={"window_seconds": 3600})

        assert [a["source_key"] for a in response.json()["alerts"]] == ["cpu"]

    @pytest.mark.asyncio
    async def test_duplicate_alert_deduped(self, alerts_client, engine):
        raise_alert(engine, source_key="cpu")
        raise_alert(engine, source_key="cpu")

        response = await alerts_client.get("/api/alerts")

        data = response.json()
        assert data["count"] == 1
        assert data["alerts"][0]["occurrences"] == 2

    @pytest.mark.asyncio
    async def test_invalid_severity(self, alerts_client):
        response = await alerts_client.get("/api/alerts", params={"severity": "fatal"})

        assert response.status_code == 422


class TestAlertById:
    """Tests for GET /api/alerts/{id} and POST /api/alerts/{id}/resolve."""

    @pytest.mark.asyncio
    async def test_get_alert(self, alerts_client, engine):
        alert = raise_alert(engine)

        response = await alerts_client.get(f"/api/alerts/{alert.id}")

        assert response.status_code == 200
        assert response.json()["message"] == "cpu above threshold"

    @pytest.mark.asyncio
    async def test_get_unknown_alert(self, alerts_client):
        response = await alerts_client.get("/api/alerts/missing")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_resolve_is_idempotent(self, alerts_client, engine):
        alert = raise_alert(engine)

        first = await alerts_client.post(f"/api/alerts/{alert.id}/resolve")
        second = await alerts_client.post(f"/api/alerts/{alert.id}/resolve")

        assert first.status_code == 200
        assert first.json()["resolved"] is True
        assert second.json()["resolved_at"] == first.json()["resolved_at"]
        assert engine.alert_manager.counts()["active"] == 0

    @pytest.mark.asyncio
    async def test_resolve_unknown_alert(self, alerts_client):
        response = await alerts_client.post("/api/alerts/missing/resolve")

        assert response.status_code == 404
