"""
Unit tests for the HTTP surface: liveness, request decoding and auth gating.
"""

from fastapi.testclient import TestClient

from conftest import bearer, conversion_payload, make_token


class TestHealthEndpoints:
    """Test cases for health check endpoints."""

    def test_ping_endpoint(self, client: TestClient):
        response = client.get("/ping")
        assert response.status_code == 200
        assert response.json() == {"success": True, "data": "PONG!"}


class TestConvertEndpointGate:
    """Requests that must be turned away before any outbound call."""

    def test_missing_token(self, client: TestClient, fake_cloud):
        response = client.post("/convert", json=conversion_payload())

        assert response.status_code == 401
        data = response.json()
        assert data["status"] == "failed"
        assert data["error"] == "Missing Authorization header"
        assert data["code"] == "UNAUTHORIZED"
        assert "timestamp" in data
        assert "unique_id" not in data
        assert fake_cloud.requests == []

    def test_expired_token(self, client: TestClient):
        response = client.post("/convert", json=conversion_payload(), headers=bearer(make_token(expires_in=-30)))
        assert response.status_code == 401
        assert response.json()["error"] == "Token has expired"

    def test_auth_happens_before_body_decoding(self, client: TestClient):
        response = client.post("/convert", content=b"{not json", headers={"Content-Type": "application/json"})
        assert response.status_code == 401

    def test_invalid_json(self, client: TestClient, auth_headers, fake_cloud):
        response = client.post("/convert", content=b"{not json", headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_JSON"
        assert fake_cloud.requests == []

    def test_empty_body(self, client: TestClient, auth_headers):
        response = client.post("/convert", headers=auth_headers)
        assert response.status_code == 400

    def test_secret_store_outage_is_500(self, client: TestClient, auth_headers, secret_store):
        from pdfconvert.utils.token_authenticator import SecretServiceError
        secret_store.error = SecretServiceError("AWS service error - unavailable")

        response = client.post("/convert", json=conversion_payload(), headers=auth_headers)

        assert response.status_code == 500
        assert response.json()["error"] == "Authentication service unavailable"
        assert response.json()["code"] == "AUTH_SERVICE_UNAVAILABLE"

    def test_secret_recovers_after_outage(self, client: TestClient, auth_headers, secret_store):
        from pdfconvert.utils.token_authenticator import SecretServiceError
        secret_store.error = SecretServiceError("down")
        assert client.post("/convert", json=conversion_payload(), headers=auth_headers).status_code == 500

        secret_store.error = None
        assert client.post("/convert", json=conversion_payload(), headers=auth_headers).status_code == 200

    def test_validation_error_echoes_valid_unique_id(self, client: TestClient, auth_headers):
        response = client.post("/convert", json=conversion_payload(source="https://example.com/a.pdf"),
                               headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["unique_id"] == "job-1"

    def test_invalid_unique_id_not_echoed(self, client: TestClient, auth_headers, fake_cloud):
        response = client.post("/convert", json=conversion_payload(unique_id="../../etc"), headers=auth_headers)

        assert response.status_code == 400
        assert "unique_id" not in response.json()
        assert fake_cloud.requests == []

    def test_deeply_nested_body(self, client: TestClient, auth_headers, fake_cloud):
        body = "[" * 100000 + "]" * 100000
        response = client.post("/convert", content=body.encode(), headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_JSON"
        assert fake_cloud.requests == []
