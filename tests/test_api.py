import json

import httpx
import openai
import pytest
from fastapi.testclient import TestClient
from langchain_core.messages import AIMessage

from agents.chat_agent import StudyAssistant
from app import auth as auth_module
from app.auth import get_current_user_id, verify_token
from app import dependencies
from app.dependencies import get_assistant, get_auth_config, get_configuration
from app.main import app, sse_chunk, sse_events, upstream_error


async def empty_context(user_id):
    return ""


class GatewayError(Exception):
    def __init__(self, status_code):
        super().__init__(f"gateway returned {status_code}")
        self.status_code = status_code


@pytest.fixture()
def client(temp_database, test_config):
    app.dependency_overrides[get_configuration] = lambda: test_config
    app.dependency_overrides[get_auth_config] = lambda: test_config
    yield TestClient(app)
    app.dependency_overrides.clear()


def use_assistant(assistant, user_id="student-1"):
    app.dependency_overrides[get_current_user_id] = lambda: user_id
    app.dependency_overrides[get_assistant] = lambda: assistant


def build_assistant(config, chat_llm, text_llm, search):
    return StudyAssistant(
        config,
        chat_llm=chat_llm,
        text_llm=text_llm,
        search_client=search,
        context_builder=empty_context,
    )


def parse_sse(body):
    events = [block for block in body.split("\n\n") if block]
    assert all(block.startswith("data: ") for block in events)
    return [block[len("data: "):] for block in events]


def test_health(client):
    assert client.get("/").json()["status"] == "ok"
    assert client.get("/api/health").json() == {"status": "healthy", "message": "Backend is operational"}


def test_chat_streams_sse_chunks_then_done(client, test_config, scripted_model, fake_search):
    answer = "Offer plus acceptance makes an agreement."
    use_assistant(build_assistant(test_config, scripted_model(AIMessage(content=answer)), scripted_model(), fake_search()))

    response = client.post(
        "/api/chat",
        json={"messages": [{"role": "user", "content": "What makes a contract?"}]},
        headers={"Authorization": "Bearer token"},
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    payloads = parse_sse(response.text)
    assert payloads[-1] == "[DONE]"
    tokens = [json.loads(p)["choices"][0]["delta"]["content"] for p in payloads[:-1]]
    assert "".join(tokens) == answer


def test_chat_accepts_client_field_aliases(client, test_config, scripted_model, fake_search, sample_results):
    text_llm = scripted_model(
        AIMessage(content='{"topic": "Consideration", "jurisdiction": "Zambia"}'),
        AIMessage(content="Consideration must move from the promisee [1]."),
    )
    search = fake_search(results=sample_results)
    use_assistant(build_assistant(test_config, scripted_model(AIMessage(content="Sure.")), text_llm, search))

    response = client.post(
        "/api/chat",
        json={
            "messages": [{"role": "user", "content": "hi"}],
            "action": "summarise",
            "enableWebSearch": True,
            "hasImages": False,
        },
    )

    assert response.status_code == 200
    assert len(search.calls) == 1


def test_chat_without_token_is_unauthorized(client, test_config, scripted_model, fake_search):
    app.dependency_overrides[get_assistant] = lambda: build_assistant(
        test_config, scripted_model(), scripted_model(), fake_search()
    )
    response = client.post("/api/chat", json={"messages": [{"role": "user", "content": "hi"}]})
    assert response.status_code == 401
    assert "error" in response.json()


def test_missing_token_is_unauthorized_before_model_key_is_set(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.setattr(dependencies, "_CONFIG", None)
    monkeypatch.setattr(dependencies, "_AUTH_CONFIG", None)
    monkeypatch.setattr(dependencies, "_ASSISTANT", None)

    response = TestClient(app).post("/api/chat", json={"messages": [{"role": "user", "content": "hi"}]})

    assert response.status_code == 401
    assert response.json() == {"error": "Missing authorization header"}


def test_invalid_body_is_rejected(client, test_config, scripted_model, fake_search):
    use_assistant(build_assistant(test_config, scripted_model(), scripted_model(), fake_search()))
    response = client.post("/api/chat", json={"messages": []})
    assert response.status_code == 400
    assert response.json()["error"].startswith("Invalid request")


@pytest.mark.parametrize(
    "status, expected",
    [
        (429, "Rate limit exceeded. Please try again in a moment."),
        (402, "AI usage limit reached. Please contact support."),
        (503, "AI service temporarily unavailable"),
    ],
)
def test_upstream_failures_map_to_http_errors(client, test_config, scripted_model, fake_search, status, expected):
    """Model failures before the first token become JSON errors, not broken streams."""
    chat_llm = scripted_model(fail_with=GatewayError(status))
    use_assistant(build_assistant(test_config, chat_llm, scripted_model(), fake_search()))

    response = client.post("/api/chat", json={"messages": [{"role": "user", "content": "hi"}]})

    assert response.status_code == (status if status in (429, 402) else 500)
    assert response.json() == {"error": expected}


def test_openai_rate_limit_error_maps_to_429():
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    exc = openai.RateLimitError("slow down", response=httpx.Response(429, request=request), body=None)
    assert upstream_error(exc) == (429, "Rate limit exceeded. Please try again in a moment.")
    assert upstream_error(ValueError("boom"))[0] == 500


def _mock_auth(monkeypatch, handler):
    real_client = httpx.AsyncClient

    def factory(*args, **kwargs):
        kwargs["transport"] = httpx.MockTransport(handler)
        return real_client(*args, **kwargs)

    monkeypatch.setattr(auth_module.httpx, "AsyncClient", factory)


@pytest.mark.asyncio
async def test_verify_token_returns_user_id(monkeypatch, test_config):
    seen = {}

    def handler(request):
        seen["authorization"] = request.headers.get("authorization")
        return httpx.Response(200, json={"id": "user-123", "email": "student@example.com"})

    _mock_auth(monkeypatch, handler)

    assert await verify_token("abc", test_config) == "user-123"
    assert seen["authorization"] == "Bearer abc"


@pytest.mark.asyncio
@pytest.mark.parametrize("response", [httpx.Response(401, json={"msg": "bad jwt"}), httpx.Response(200, json={})])
async def test_verify_token_rejects_unknown_tokens(monkeypatch, test_config, response):
    from fastapi import HTTPException

    _mock_auth(monkeypatch, lambda request: response)

    with pytest.raises(HTTPException) as excinfo:
        await verify_token("abc", test_config)
    assert excinfo.value.status_code == 401


class DisconnectedRequest:
    async def is_disconnected(self):
        return True


@pytest.mark.asyncio
async def test_stream_stops_when_client_disconnects():
    pending = []
    closed = []

    async def tokens():
        try:
            for token in ("second", "third"):
                pending.append(token)
                yield token
        finally:
            closed.append(True)

    events = [event async for event in sse_events(DisconnectedRequest(), "first", tokens())]

    assert events == [sse_chunk("first")]
    assert pending == ["second"]
    assert closed == [True]
