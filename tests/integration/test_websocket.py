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
        return LLMResult(text="Hello! What can I do for you?", provider=self.provider, model=self.model, raw={})


def _app():
    llm = FakeLLM()
    router = ConversationRouter(
        storage=InMemoryStorage(path=""),
        llm=llm,
        engine=AutomatedResponseEngine(llm=llm, settings=AISettings(response_delay_ms=0)),
    )
    return create_app(router=router)


def _next_of_type(ws, event_type: str) -> dict:
    while True:
        event = ws.receive_json()
        if event["type"] == event_type:
            return event


def test_agent_sees_customer_message_then_automated_reply():
    with TestClient(_app()) as client:
        with client.websocket_connect("/ws") as agent_ws:
            agent_ws.send_json(
                {"type": "agent_auth", "email": SETTINGS.bootstrap_agent_email, "password": SETTINGS.bootstrap_agent_password}
            )
            auth = agent_ws.receive_json()
            assert auth["type"] == "auth_success"
            assert auth["sessionToken"]

            with client.websocket_connect("/ws") as customer_ws:
                customer_ws.send_json({"type": "customer_init", "name": "Ana", "email": "ana@example.com"})
                init = customer_ws.receive_json()
                assert init["type"] == "init_success"
                assert init["isReturningCustomer"] is False
                conversation_id = init["conversationId"]

                customer_ws.send_json({"type": "chat_message", "conversationId": conversation_id, "content": "Hello"})

                first = _next_of_type(agent_ws, "new_message")
                second = _next_of_type(agent_ws, "new_message")
                assert first["message"]["senderType"] == "customer"
                assert first["message"]["content"] == "Hello"
                assert second["message"]["senderType"] == "automated"
                assert second["message"]["content"] == "Hello! What can I do for you?"

                own = _next_of_type(customer_ws, "new_message")
                reply = _next_of_type(customer_ws, "new_message")
                assert own["message"]["id"] == first["message"]["id"]
                assert reply["message"]["id"] == second["message"]["id"]


def test_malformed_frames_do_not_close_connection():
    with TestClient(_app()) as client:
        with client.websocket_connect("/ws") as ws:
            ws.send_text("not json at all")
            assert ws.receive_json()["code"] == "validation_error"

            ws.send_json({"type": "launch_rockets"})
            assert ws.receive_json()["type"] == "error"

            ws.send_json({"type": "chat_message", "conversationId": 1, "content": "hi"})
            assert ws.receive_json()["code"] == "authentication_error"

            ws.send_json({"type": "agent_auth", "sessionToken": "bogus"})
            assert ws.receive_json()["type"] == "auth_error"

            ws.send_json({"type": "customer_init"})
            init = ws.receive_json()
            assert init["type"] == "init_success"
            assert init["customer"]["name"].startswith("Friendly Visitor")


def test_customer_cannot_post_to_another_conversation_or_claim_agent_role():
    with TestClient(_app()) as client:
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "customer_init", "name": "Bo"})
            conversation_id = ws.receive_json()["conversationId"]

            ws.send_json({"type": "chat_message", "conversationId": conversation_id + 100, "content": "hi"})
            assert ws.receive_json()["code"] == "validation_error"

            ws.send_json({"type": "chat_message", "conversationId": conversation_id, "content": "hi", "senderType": "agent"})
            assert ws.receive_json()["code"] == "validation_error"

            ws.send_json({"type": "agent_availability", "isAvailable": False})
            assert ws.receive_json()["code"] == "authentication_error"


def test_typing_is_relayed_to_agents_but_not_back_to_sender():
    with TestClient(_app()) as client:
        headers = {"Authorization": ""}
        login = client.post(
            "/api/login", json={"email": SETTINGS.bootstrap_agent_email, "password": SETTINGS.bootstrap_agent_password}
        )
        headers["Authorization"] = f"Bearer {login.json()['sessionToken']}"
        with client.websocket_connect("/ws") as agent_ws:
            agent_ws.send_json({"type": "agent_auth", "sessionToken": login.json()["sessionToken"]})
            assert agent_ws.receive_json()["type"] == "auth_success"

            with client.websocket_connect("/ws") as customer_ws:
                customer_ws.send_json({"type": "customer_init", "name": "Cy"})
                conversation_id = customer_ws.receive_json()["conversationId"]
                customer_ws.send_json({"type": "typing", "conversationId": conversation_id, "isTyping": True})

                typing = _next_of_type(agent_ws, "typing")
                assert typing["isTyping"] is True
                assert typing["senderType"] == "customer"

                client.patch(f"/api/conversations/{conversation_id}/close", headers=headers)
                closed = _next_of_type(customer_ws, "conversation_closed")
                assert closed["conversationId"] == conversation_id
