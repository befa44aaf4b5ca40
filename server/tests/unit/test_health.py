"""Unit tests for health endpoints."""

import pytest


@pytest.mark.asyncio
async def test_health_ping_rpc(test_client):
    """Test the RPC-style health ping endpoint."""
    response = await test_client.post("/v1/health/ping", json={})
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert "timestamp" in data
    assert data["version"] == "1.0.0"


@pytest.mark.asyncio
async def test_health_ping_reports_workers(test_client):
    """Workers are registered but not started in tests."""
    response = await test_client.post("/v1/health/ping", json={})
    workers = response.json()["workers"]
    assert set(workers) == {"expiration", "overdue", "reminders"}
    assert not any(workers.values())


@pytest.mark.asyncio
async def test_metrics_exposed(test_client):
    response = await test_client.get("/metrics")
    assert response.status_code == 200
    assert "equipment_units_released_total" in response.text
