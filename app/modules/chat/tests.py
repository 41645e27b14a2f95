import json

import httpx
import pytest

from app.core.config import Settings
from app.main import app
from app.modules.chat.router import get_chat_service
from app.modules.chat.service import ChatService


def mount_chat(settings, handler):
    service = ChatService(settings, client=httpx.Client(transport=httpx.MockTransport(handler)))
    app.dependency_overrides[get_chat_service] = lambda: service
    return service


@pytest.fixture
def messages():
    return [{"role": "user", "content": "¿Cuándo vence mi declaración de IGV?"}]


class TestChat:

    def test_reply_is_trimmed(self, client, settings, auth_headers, messages):
        sent = []

        def handler(request: httpx.Request) -> httpx.Response:
            sent.append(request)
            return httpx.Response(200, json={"choices": [{"message": {"content": "  Según tu RUC, el día 15.\n"}}]})

        mount_chat(settings, handler)
        response = client.post("/chat", json={"messages": messages}, headers=auth_headers)

        assert response.status_code == 200
        assert response.json() == {"reply": "Según tu RUC, el día 15."}

        payload = json.loads(sent[0].content)
        assert payload == {"model": "gpt-4o-mini", "messages": messages, "temperature": 0.3}
        assert str(sent[0].url) == "https://api.openai.com/v1/chat/completions"
        assert sent[0].headers["authorization"] == "Bearer sk-test"

    def test_custom_model(self, client, settings, auth_headers, messages):
        models = []

        def handler(request: httpx.Request) -> httpx.Response:
            models.append(json.loads(request.content)["model"])
            return httpx.Response(200, json={"choices": []})

        mount_chat(settings, handler)
        response = client.post("/chat", json={"messages": messages, "model": "gpt-4o"}, headers=auth_headers)

        assert models == ["gpt-4o"]
        assert response.json() == {"reply": ""}

    def test_missing_messages(self, client, settings, auth_headers):
        mount_chat(settings, lambda request: httpx.Response(200, json={}))
        response = client.post("/chat", json={"messages": []}, headers=auth_headers)
        assert response.status_code == 400
        assert response.json() == {"error": "Missing messages"}

    def test_missing_api_key(self, client, auth_headers, messages):
        mount_chat(Settings(OPENAI_API_KEY=""), lambda request: httpx.Response(200, json={}))
        response = client.post("/chat", json={"messages": messages}, headers=auth_headers)
        assert response.status_code == 400
        assert response.json() == {"error": "Missing OPENAI_API_KEY"}

    def test_provider_error_message(self, client, settings, auth_headers, messages):
        mount_chat(settings, lambda request: httpx.Response(429, json={"error": {"message": "Rate limit reached"}}))
        response = client.post("/chat", json={"messages": messages}, headers=auth_headers)
        assert response.status_code == 429
        assert response.json() == {"error": "Rate limit reached"}

    def test_requires_auth(self, client, messages):
        response = client.post("/chat", json={"messages": messages})
        assert response.status_code == 401
