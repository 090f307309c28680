"""
Tests for health check endpoints.
"""

from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

from app.main import app

client = TestClient(app)

HEALTHY_POOL = {
    "healthy": True,
    "connection_time_ms": 3.2,
    "pool_size": 5,
    "pool_available": 4,
    "requests_waiting": 2,
}


def test_healthz_endpoint():
    """Test the basic health check endpoint."""
    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "credit-operations"}


def test_readyz_endpoint_database_healthy():
    with patch("app.routes.health.db_health_check", AsyncMock(return_value=HEALTHY_POOL)):
        response = client.get("/readyz")

    assert response.status_code == 200
    data = response.json()
    assert data["overall_ok"] is True
    assert data["checks"]["database"]["ok"] is True
    assert data["checks"]["database"]["pool_size"] == 5
    assert data["checks"]["database"]["requests_waiting"] == 2
    assert isinstance(data["checks"]["database"]["latency_ms"], (int, float))


def test_readyz_endpoint_database_unhealthy():
    """Still 200, but overall_ok is False."""
    unhealthy = {"healthy": False, "error": "Pool not initialized", "service": "database_pool"}
    with patch("app.routes.health.db_health_check", AsyncMock(return_value=unhealthy)):
        response = client.get("/readyz")

    assert response.status_code == 200
    data = response.json()
    assert data["overall_ok"] is False
    assert data["checks"]["database"]["error"] == "Pool not initialized"


def test_readyz_endpoint_health_check_raises():
    with patch(
        "app.routes.health.db_health_check", AsyncMock(side_effect=RuntimeError("boom"))
    ):
        response = client.get("/readyz")

    data = response.json()
    assert data["overall_ok"] is False
    assert data["checks"]["database"]["error"] == "RuntimeError: boom"


def test_responses_carry_request_id():
    response = client.get("/healthz")

    assert response.headers["X-Request-ID"]
