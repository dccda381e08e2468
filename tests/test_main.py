import pytest


def test_health_check_without_database(client):
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "degraded"
    assert data["database_connected"] is False
    assert data["redis_connected"] is False
    assert "persistence_enabled" in data


@pytest.mark.asyncio
async def test_health_check_with_database(api):
    data = (await api.get("/health")).json()

    assert data["status"] == "healthy"
    assert data["database_connected"] is True


def test_member_endpoint_without_database_returns_503(client):
    # Valid credentials reach the service, which finds no database
    response = client.post("/api/v1/auth/login", json={"email": "m@example.com", "password": "SecurePass123"})

    assert response.status_code == 503
    assert response.json() == {"detail": "Database not available"}


def test_openapi_served_under_api_prefix(client):
    response = client.get("/api/v1/openapi.json")

    assert response.status_code == 200
    paths = response.json()["paths"]
    assert "/api/v1/concierge/messages" in paths
    assert "/api/v1/payments/stripe/webhook" in paths
