import importlib
import json
import re
import sys
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional

import pytest
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, AIMessageChunk, BaseMessage
from langchain_core.outputs import ChatGeneration, ChatGenerationChunk, ChatResult
from langchain_core.utils.function_calling import convert_to_openai_tool
from pydantic import Field


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from agents.research.state import SearchResult  # noqa: E402
from shared.config import Configuration  # noqa: E402


@pytest.fixture()
def temp_database(tmp_path, monkeypatch) -> Generator[Path, None, None]:
    """Create a temporary SQLite database and reload connection module."""
    db_path = tmp_path / "test.db"
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setenv("DATABASE_PATH", str(db_path))

    # Reload database.connection so it picks up the new env variable
    from database import connection as connection_module

    importlib.reload(connection_module)
    connection_module.init_db()

    yield db_path

    # Cleanup: remove env, reload to default state
    monkeypatch.delenv("DATABASE_PATH", raising=False)
    importlib.reload(connection_module)


class ScriptedChatModel(BaseChatModel):
    """Replays canned AIMessages and records every message list it receives.

    ``call_tools`` holds the tool names bound for each call (empty when the
    call was made without tools).
    """

    responses: List[AIMessage] = Field(default_factory=list)
    calls: List[List[BaseMessage]] = Field(default_factory=list)
    call_tools: List[List[str]] = Field(default_factory=list)
    fail_with: Optional[Any] = None

    @property
    def _llm_type(self) -> str:
        return "scripted"

    def bind_tools(self, tools, **kwargs):
        return self.bind(tools=[convert_to_openai_tool(t) for t in tools], **kwargs)

    def _next(self, messages: List[BaseMessage], kwargs: Dict[str, Any]) -> AIMessage:
        self.calls.append(list(messages))
        self.call_tools.append([t["function"]["name"] for t in kwargs.get("tools") or []])
        if self.fail_with is not None:
            raise self.fail_with
        if not self.responses:
            return AIMessage(content="")
        return self.responses.pop(0)

    def _generate(self, messages, stop=None, run_manager=None, **kwargs):
        message = self._next(messages, kwargs)
        return ChatResult(generations=[ChatGeneration(message=message)])

    def _stream(self, messages, stop=None, run_manager=None, **kwargs):
        message = self._next(messages, kwargs)
        for piece in re.findall(r"\S+\s*|\s+", message.content or ""):
            yield ChatGenerationChunk(message=AIMessageChunk(content=piece))
        if message.tool_calls:
            yield ChatGenerationChunk(message=AIMessageChunk(
                content="",
                tool_call_chunks=[
                    {
                        "name": call["name"],
                        "args": json.dumps(call["args"]),
                        "id": call["id"],
                        "index": index,
                    }
                    for index, call in enumerate(message.tool_calls)
                ],
            ))


class FakeSearchClient:
    """Stands in for WebSearchClient; counts calls."""

    def __init__(self, results: Optional[List[SearchResult]] = None, available: bool = True, error: Optional[Exception] = None):
        self.results = results or []
        self.available = available
        self.error = error
        self.calls: List[tuple] = []

    async def search(self, topic: str, jurisdiction: str) -> List[SearchResult]:
        self.calls.append((topic, jurisdiction))
        if self.error is not None:
            raise self.error
        return list(self.results)


def tool_call(name: str, args: Dict[str, Any], call_id: str) -> Dict[str, Any]:
    return {"name": name, "args": args, "id": call_id, "type": "tool_call"}


@pytest.fixture()
def scripted_model():
    """Factory for ScriptedChatModel instances."""

    def _make(*responses: AIMessage, fail_with: Optional[Exception] = None) -> ScriptedChatModel:
        return ScriptedChatModel(responses=list(responses), fail_with=fail_with)

    return _make


@pytest.fixture()
def fake_search():
    return FakeSearchClient


@pytest.fixture()
def sample_results() -> List[SearchResult]:
    return [
        SearchResult(
            title="Attorney General v Marcus Kampumba Achiume",
            url="https://zambialii.org/akn/zm/judgment/zmsc/1983/1",
            content="Damages for breach of contract are compensatory...",
        ),
        SearchResult(
            title="Hadley v Baxendale applied in Zambia",
            url="https://zambialii.org/akn/zm/judgment/zmsc/2001/7",
            content="Losses recoverable are those arising naturally...",
        ),
    ]


@pytest.fixture()
def test_config() -> Configuration:
    return Configuration(
        openai_api_key="test-key",
        tavily_api_key=None,
        default_jurisdiction="Zambia",
        research_daily_limit=5,
        research_cache_ttl_days=30,
        max_tool_rounds=3,
        auth_url="https://auth.example.test/user",
    )


@pytest.fixture()
def make_tool_call():
    return tool_call
