from __future__ import annotations

from fastapi.testclient import TestClient

from agents.llm_runtime import LLMResult
from agents.response_engine import AutomatedResponseEngine
from api.main import create_app
from conversations.router import ConversationRouter
from memory.storage import InMemoryStorage
from models.schemas import AISettings
from settings import SETTINGS


class FakeLLM:
    provider = "fake"
    model = "fake-model"

    def available(self) -> bool:
        return True

    async def generate(self, system_prompt, history, **kwargs):
        return LLMResult(text="Thanks for reaching out!", provider=self.provider, model=self.model, raw={})


def _app(auto_response: bool = False):
    llm = FakeLLM()
    router = ConversationRouter(
        storage=InMemoryStorage(path=""),
        llm=llm,
        engine=AutomatedResponseEngine(llm=llm, settings=AISettings(enable_auto_response=auto_response, response_delay_ms=0)),
    )
    return create_app(router=router)


def _login(client: TestClient, email: str | None = None, password: str | None = None) -> dict:
    resp = client.post(
        "/api/login",
        json={"email": email or SETTINGS.bootstrap_agent_email, "password": password or SETTINGS.bootstrap_agent_password},
    )
    assert resp.status_code == 200, resp.text
    return {"Authorization": f"Bearer {resp.json()['sessionToken']}"}


def test_health_endpoint():
    with TestClient(_app()) as client:
        resp = client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["service"] == "helpboard"
        assert data["connections"]["connections"] == 0
        assert "X-Process-Time-Ms" in resp.headers


def test_login_me_logout_flow():
    with TestClient(_app()) as client:
        bad = client.post("/api/login", json={"email": SETTINGS.bootstrap_agent_email, "password": "wrong-password"})
        assert bad.status_code == 401
        assert bad.json()["code"] == "authentication_error"

        headers = _login(client)
        me = client.get("/api/me", headers=headers)
        assert me.status_code == 200
        assert me.json()["email"] == SETTINGS.bootstrap_agent_email
        assert "passwordHash" not in me.json()

        refreshed = client.post("/api/session/refresh", headers=headers)
        assert refreshed.status_code == 200
        assert "expiresAt" in refreshed.json()

        assert client.post("/api/logout", headers=headers).status_code == 200
        assert client.get("/api/me", headers=headers).status_code == 401
        assert client.get("/api/conversations").status_code == 401


def test_returning_customer_by_email():
    with TestClient(_app()) as client:
        first = client.post("/api/initiate", json={"name": "Ana", "email": "ana@example.com"})
        second = client.post("/api/initiate", json={"email": "ana@example.com"})
        assert first.status_code == 200, first.text
        first_json, second_json = first.json(), second.json()
        assert first_json["isReturningCustomer"] is False
        assert second_json["isReturningCustomer"] is True
        assert second_json["customer"]["id"] == first_json["customer"]["id"]
        assert second_json["conversationId"] != first_json["conversationId"]

        updated = client.post(
            "/api/customers/update",
            json={"phone": "555-0101"},
            headers={"X-Session-Id": second_json["sessionId"]},
        )
        assert updated.status_code == 200
        assert updated.json()["phone"] == "555-0101"
        assert client.post("/api/customers/update", json={"phone": "1"}, headers={"X-Session-Id": "nope"}).status_code == 404


def test_conversation_lifecycle_over_http():
    with TestClient(_app()) as client:
        headers = _login(client)
        conversation_id = client.post("/api/initiate", json={"name": "Bo"}).json()["conversationId"]

        listing = client.get("/api/conversations", headers=headers)
        assert listing.status_code == 200
        assert [c["id"] for c in listing.json()] == [conversation_id]

        assigned = client.patch(f"/api/conversations/{conversation_id}/assign", headers=headers)
        assert assigned.status_code == 200
        assert assigned.json()["status"] == "assigned"

        sent = client.post(f"/api/conversations/{conversation_id}/messages", json={"content": "Hi Bo, I'm here."}, headers=headers)
        assert sent.status_code == 200
        assert sent.json()["senderType"] == "agent"

        detail = client.get(f"/api/conversations/{conversation_id}", headers=headers).json()
        assert [m["content"] for m in detail["messages"]] == ["Hi Bo, I'm here."]

        closed = client.patch(f"/api/conversations/{conversation_id}/close", headers=headers)
        assert closed.json()["status"] == "closed"

        again = client.patch(f"/api/conversations/{conversation_id}/assign", headers=headers)
        assert again.status_code == 409
        assert again.json()["code"] == "invalid_transition"
        late = client.post(f"/api/conversations/{conversation_id}/messages", json={"content": "still there?"}, headers=headers)
        assert late.status_code == 409
        assert client.get("/api/conversations/999", headers=headers).status_code == 404


def test_agent_admin_and_role_checks():
    with TestClient(_app()) as client:
        admin_headers = _login(client)
        created = client.post(
            "/api/agents",
            json={"email": "kim@example.com", "name": "Kim", "password": "secret99", "role": "agent"},
            headers=admin_headers,
        )
        assert created.status_code == 201, created.text
        duplicate = client.post(
            "/api/agents",
            json={"email": "kim@example.com", "name": "Kim", "password": "secret99"},
            headers=admin_headers,
        )
        assert duplicate.status_code == 400

        agent_headers = _login(client, "kim@example.com", "secret99")
        assert client.post(
            "/api/agents", json={"email": "x@example.com", "name": "X", "password": "secret99"}, headers=agent_headers
        ).status_code == 403
        assert client.put("/api/ai/settings", json={"temperature": 0.1}, headers=agent_headers).status_code == 403

        availability = client.patch("/api/agent/availability", json={"isAvailable": False}, headers=agent_headers)
        assert availability.status_code == 200
        assert availability.json()["isAvailable"] is False
        assert len(client.get("/api/agents", headers=agent_headers).json()) == 2


def test_ai_training_and_settings_endpoints():
    with TestClient(_app()) as client:
        headers = _login(client)
        assert client.get("/api/ai/stats", headers=headers).json()["trainingDataCount"] == 5

        added = client.post(
            "/api/ai/training-data",
            json={"question": "Do you ship abroad?", "answer": "Yes, to 40 countries.", "category": "shipping"},
            headers=headers,
        )
        assert added.status_code == 201
        assert len(client.get("/api/ai/training-data", headers=headers).json()) == 6

        updated = client.put(
            "/api/ai/training-data/5",
            json={"question": "Do you ship abroad?", "answer": "Yes, worldwide.", "category": "shipping"},
            headers=headers,
        )
        assert updated.json()["answer"] == "Yes, worldwide."
        assert client.delete("/api/ai/training-data/5", headers=headers).status_code == 200
        assert client.delete("/api/ai/training-data/42", headers=headers).status_code == 404

        settings = client.put("/api/ai/settings", json={"temperature": 0.2, "historyLimit": 6}, headers=headers)
        assert settings.status_code == 200
        assert settings.json()["temperature"] == 0.2
        assert client.get("/api/ai/settings", headers=headers).json()["historyLimit"] == 6
        assert client.put("/api/ai/settings", json={"temperature": 5}, headers=headers).status_code == 422

        retrained = client.post("/api/ai/retrain", json={}, headers=headers)
        assert retrained.status_code == 200
        assert retrained.json()["learned"] == 0
