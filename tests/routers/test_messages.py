import time

from fastapi.testclient import TestClient

SMS_REQUEST = {"from": "+15551234567", "to": "+15557654321", "body": "Hello from the API"}


class TestMessageDelivery:
    """End-to-end delivery through the API with the background job runner."""

    def wait_for_status(self, client: TestClient, message_id: str, status: str) -> dict:
        data: dict = {}
        for _ in range(200):
            data = client.get(f"/api/messages/{message_id}").json()
            if data["status"] == status:
                break
            time.sleep(0.02)
        return data

    def test_sent_message_is_delivered(self, live_client: TestClient) -> None:
        """Test that a message sent through the API reaches the provider."""
        response = live_client.post("/api/messages/sms", json=SMS_REQUEST)
        assert response.status_code == 202

        data = self.wait_for_status(live_client, response.json()["id"], "sent")

        assert data["status"] == "sent"
        assert data["provider_name"] == "mock"
        assert data["messaging_provider_id"] is not None
        assert data["sent_at"] is not None
        assert data["delivery_attempts"] == 1

        job = live_client.app.state.scheduler.jobs[0]
        for _ in range(200):
            if job.state == "completed":
                break
            time.sleep(0.01)
        assert job.state == "completed"
        assert job.errors == []


class TestMessagesRouter:
    """Tests for the messages endpoints against a sqlite-backed app."""

    def test_send_sms_is_accepted_and_queued(self, client: TestClient) -> None:
        """Test that a send returns 202 with the queued message."""
        response = client.post("/api/messages/sms", json=SMS_REQUEST)

        assert response.status_code == 202
        data = response.json()
        assert data["status"] == "queued"
        assert data["type"] == "sms"
        assert data["direction"] == "outbound"
        assert data["queued_at"] is not None

        scheduler = client.app.state.scheduler
        assert [job.payload["message_id"] for job in scheduler.jobs] == [data["id"]]

    def test_missing_fields_is_422(self, client: TestClient) -> None:
        """Test that request model errors are rejected by FastAPI."""
        response = client.post("/api/messages/sms", json={})
        assert response.status_code == 422

    def test_validation_failure_body(self, client: TestClient) -> None:
        """Test that domain validation failures carry every field error."""
        response = client.post(
            "/api/messages/sms", json={**SMS_REQUEST, "from": "abc", "body": "x" * 161}
        )

        assert response.status_code == 422
        data = response.json()
        assert data["error"] == "VALIDATION_FAILED"
        assert set(data["details"]["errors"]) == {"from", "body"}

    def test_send_mms_with_attachment(self, client: TestClient) -> None:
        """Test that MMS attachments are stored and returned."""
        response = client.post(
            "/api/messages/mms",
            json={
                **SMS_REQUEST,
                "attachments": [
                    {
                        "url": "https://media.example.com/cat.png",
                        "attachment_type": "image",
                        "content_type": "image/png",
                    }
                ],
            },
        )

        assert response.status_code == 202
        attachments = response.json()["attachments"]
        assert len(attachments) == 1
        assert attachments[0]["storage_type"] == "url"

    def test_send_email_scheduled(self, client: TestClient) -> None:
        """Test that a delayed send produces a scheduled job."""
        response = client.post(
            "/api/messages/email",
            json={
                "from": "alice@example.com",
                "to": ["bob@example.com", "carol@example.com"],
                "body": "Team update",
                "delay_seconds": 120,
            },
        )

        assert response.status_code == 202
        assert client.app.state.scheduler.jobs[0].state == "scheduled"

    def test_get_message_and_not_found(self, client: TestClient) -> None:
        """Test fetching a message and the 404 for unknown ids."""
        created = client.post("/api/messages/sms", json=SMS_REQUEST).json()

        response = client.get(f"/api/messages/{created['id']}")
        assert response.status_code == 200
        assert response.json()["body"] == "Hello from the API"

        missing = client.get("/api/messages/00000000-0000-0000-0000-000000000000")
        assert missing.status_code == 404
        assert missing.json()["error"] == "MESSAGE_NOT_FOUND"

    def test_status_before_delivery(self, client: TestClient) -> None:
        """Test that status polling before the send reports a provider error."""
        created = client.post("/api/messages/sms", json=SMS_REQUEST).json()

        response = client.get(f"/api/messages/{created['id']}/status")

        assert response.status_code == 400
        assert response.json()["message"] == "No provider message ID found"

    def test_cancel(self, client: TestClient) -> None:
        """Test cancelling a not-yet-run delivery."""
        created = client.post("/api/messages/sms", json=SMS_REQUEST).json()

        response = client.post(f"/api/messages/{created['id']}/cancel")

        assert response.status_code == 200
        assert response.json() == {"cancelled": 1}
