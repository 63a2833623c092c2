from fastapi.testclient import TestClient


class TestProvidersRouter:
    """Tests for the provider endpoints."""

    def test_list_providers(self, client: TestClient) -> None:
        """Test the configured providers and their capabilities."""
        response = client.get("/api/providers")

        assert response.status_code == 200
        assert response.json() == [
            {"name": "mock", "supported_types": ["email", "mms", "sms"], "enabled": True}
        ]

    def test_validate_active_configuration(self, client: TestClient) -> None:
        """Test validating the configuration the app runs with."""
        response = client.post("/api/providers/validate", json={})

        assert response.status_code == 200
        assert response.json() == {"valid": True, "errors": []}

    def test_validate_submitted_configuration(self, client: TestClient) -> None:
        """Test that every broken provider is reported."""
        response = client.post(
            "/api/providers/validate",
            json={
                "providers": {
                    "twilio": {"enabled": True, "config": {"account_sid": "XX"}},
                    "sendgrid": {
                        "enabled": True,
                        "config": {
                            "api_key": "SG.key",
                            "from_email": "noreply@example.com",
                            "from_name": "Relay",
                        },
                    },
                }
            },
        )

        data = response.json()
        assert data["valid"] is False
        assert data["errors"] == [
            {
                "provider": "twilio",
                "reason": "Missing required configuration keys: auth_token, from_number",
            }
        ]
