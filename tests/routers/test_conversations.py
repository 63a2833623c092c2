from fastapi.testclient import TestClient

SMS_REQUEST = {"from": "+15551234567", "to": "+15557654321", "body": "Hi"}


class TestConversationsRouter:
    """Tests for the conversations endpoints against a sqlite-backed app."""

    def test_empty_listing(self, client: TestClient) -> None:
        """Test the listing with no conversations."""
        response = client.get("/api/conversations")

        assert response.status_code == 200
        assert response.json() == {
            "conversations": [],
            "total_count": 0,
            "page": 1,
            "per_page": 20,
            "total_pages": 0,
            "has_next": False,
            "has_prev": False,
        }

    def test_conversation_with_messages(self, client: TestClient) -> None:
        """Test that sends and replies are threaded together."""
        sent = client.post("/api/messages/sms", json=SMS_REQUEST).json()
        client.post(
            "/api/webhooks/sms",
            json={"from": SMS_REQUEST["to"], "to": SMS_REQUEST["from"], "body": "Hi back"},
        )

        conversation = client.get(f"/api/conversations/{sent['conversation_id']}").json()
        assert conversation["message_count"] == 2
        assert conversation["participants"] == sorted([SMS_REQUEST["from"], SMS_REQUEST["to"]])

        messages = client.get(f"/api/conversations/{sent['conversation_id']}/messages").json()
        assert [m["direction"] for m in messages] == ["outbound", "inbound"]

        inbound = client.get(
            f"/api/conversations/{sent['conversation_id']}/messages",
            params={"direction": "inbound"},
        ).json()
        assert len(inbound) == 1

    def test_search_stats_and_most_active(self, client: TestClient) -> None:
        """Test the search, stats and most-active endpoints."""
        client.post("/api/messages/sms", json=SMS_REQUEST)

        search = client.get("/api/conversations/search", params={"q": "555765"})
        assert search.status_code == 200
        assert len(search.json()) == 1

        stats = client.get("/api/conversations/stats").json()
        assert stats == {"total": 1, "active_last_30_days": 1, "average_messages": 1.0}

        most_active = client.get("/api/conversations/most-active").json()
        assert most_active[0]["message_count"] == 1

    def test_unknown_conversation(self, client: TestClient) -> None:
        """Test 404s for unknown conversations and their messages."""
        missing_id = "00000000-0000-0000-0000-000000000000"

        assert client.get(f"/api/conversations/{missing_id}").status_code == 404
        assert client.get(f"/api/conversations/{missing_id}/messages").status_code == 404

    def test_invalid_pagination(self, client: TestClient) -> None:
        """Test that page numbers start at 1."""
        assert client.get("/api/conversations", params={"page": 0}).status_code == 422
