"""Lumina orchestrator: classify → research → prompt → model ⇄ tools → stream."""
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from time import perf_counter
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import (
    AIMessage,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
    message_chunk_to_message,
)

from agents.research import (
    ResearchCache,
    ResearchOutcome,
    ResearchPipeline,
    ResearchRateLimiter,
    TopicExtractor,
    WebSearchClient,
    needs_research,
)
from shared.config import Configuration
from shared.utils import get_orchestrator_llm, get_text_llm
from .context import build_context
from .prompts import build_system_prompt
from .tools import ToolDispatcher, ToolResult

_logger = logging.getLogger("chat")

_WORD_CHUNKS = re.compile(r"\S+\s*|\s+")


def _coerce_text(content: Any) -> str:
    """Extract plain text from message content (a string or a list of parts)."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type") == "text" and part.get("text"):
                parts.append(part["text"])
        return "".join(parts)
    return ""


def rechunk(text: str) -> List[str]:
    """Split text into word-sized tokens whose concatenation is exactly ``text``."""
    return _WORD_CHUNKS.findall(text or "")


def enable_chat_logging(level: int = logging.INFO, to_console: bool = True, to_file: bool = True) -> None:
    """Enable chat logging on demand.

    Adds console and file handlers to the 'chat' logger. Safe to call multiple times.
    """
    _logger.setLevel(level)
    if _logger.handlers:
        return
    fmt = logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")
    if to_file:
        log_dir = Path(__file__).parent.parent.parent / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(log_dir / "chat.log", encoding="utf-8")
        fh.setFormatter(fmt)
        _logger.addHandler(fh)
    if to_console:
        sh = logging.StreamHandler()
        sh.setFormatter(fmt)
        _logger.addHandler(sh)


def _safe_preview(text: str, limit: int = 2000) -> str:
    try:
        if text is None:
            return ""
        s = str(text)
        return s if len(s) <= limit else s[:limit] + "... [truncated]"
    except Exception:
        return "[unprintable]"


def to_langchain_messages(turns: Sequence[Dict[str, Any]]) -> List[BaseMessage]:
    """Convert client turns ({role, content}) into LangChain messages.

    Client-supplied system and tool turns are dropped; the system prompt is
    assembled here and tool results only come from this request.
    """
    messages: List[BaseMessage] = []
    for turn in turns:
        role = turn.get("role")
        content = turn.get("content") or ""
        if role == "user":
            messages.append(HumanMessage(content=content))
        elif role == "assistant":
            messages.append(AIMessage(content=_coerce_text(content)))
        else:
            _logger.debug("Dropping client turn with role=%s", role)
    return messages


def latest_user_text(turns: Sequence[Dict[str, Any]]) -> str:
    for turn in reversed(turns):
        if turn.get("role") == "user":
            return _coerce_text(turn.get("content"))
    return ""


@dataclass
class AssistantRun:
    """State of one request, owned by the orchestrator until the stream ends."""
    user_id: str
    system_prompt: str
    conversation: List[BaseMessage]
    research: Optional[ResearchOutcome] = None
    tool_results: List[ToolResult] = field(default_factory=list)
    tool_rounds: int = 0
    _assistant: Optional["StudyAssistant"] = field(default=None, repr=False)

    def tokens(self) -> AsyncIterator[str]:
        """Stream the answer; runs the model/tool loop lazily."""
        return self._assistant._generate(self)


class StudyAssistant:
    """Request pipeline for the study assistant.

    One instance serves many requests; all per-request state lives in
    ``AssistantRun``.
    """

    def __init__(
        self,
        config: Configuration,
        *,
        chat_llm: Optional[BaseChatModel] = None,
        text_llm: Optional[BaseChatModel] = None,
        search_client: Optional[WebSearchClient] = None,
        dispatcher: Optional[ToolDispatcher] = None,
        research: Optional[ResearchPipeline] = None,
        context_builder: Callable[[str], Awaitable[str]] = build_context,
    ):
        self.config = config
        self.chat_llm = chat_llm or get_orchestrator_llm(config)
        self.text_llm = text_llm or get_text_llm(config)
        self.dispatcher = dispatcher or ToolDispatcher()
        self.research = research or ResearchPipeline(
            text_llm=self.text_llm,
            extractor=TopicExtractor(self.text_llm, default_jurisdiction=config.default_jurisdiction),
            cache=ResearchCache(ttl_days=config.research_cache_ttl_days),
            rate_limiter=ResearchRateLimiter(daily_limit=config.research_daily_limit),
            search_client=search_client or WebSearchClient(
                config.tavily_api_key,
                domains=config.research_domains,
                max_results=config.research_max_results,
            ),
        )
        self.context_builder = context_builder
        self.max_tool_rounds = max(1, config.max_tool_rounds)
        _logger.info(
            "Assistant initialized with models - orchestrator=%s, text=%s",
            config.orchestrator_model, config.text_model,
        )

    async def start(
        self,
        user_id: str,
        turns: Sequence[Dict[str, Any]],
        *,
        action: Optional[str] = None,
        deep_search: bool = False,
        has_images: bool = False,
        today: Optional[date] = None,
    ) -> AssistantRun:
        """Classify, research if needed, and assemble the system prompt."""
        query = latest_user_text(turns)
        _logger.info("USER: %s | user_id=%s | action=%s", _safe_preview(query, 300), user_id, action or "chat")

        research: Optional[ResearchOutcome] = None
        if needs_research(query, deep_search):
            _logger.info("ROUTE: research")
            research = await self.research.research(
                query, user_id, config={"run_name": "research", "metadata": {"user_id": user_id}}
            )
            if research.remaining_quota is not None:
                _logger.info("RESEARCH QUOTA | user_id=%s | remaining=%d", user_id, research.remaining_quota)
        else:
            _logger.info("ROUTE: chat")

        user_context = await self.context_builder(user_id)
        system_prompt = build_system_prompt(
            today=today or datetime.utcnow().date(),
            action=action,
            research=research,
            user_context=user_context,
            tool_descriptions=self.dispatcher.describe(),
            has_images=has_images,
        )
        conversation = [SystemMessage(content=system_prompt), *to_langchain_messages(turns)]
        return AssistantRun(
            user_id=user_id,
            system_prompt=system_prompt,
            conversation=conversation,
            research=research,
            _assistant=self,
        )

    async def stream(self, user_id: str, turns: Sequence[Dict[str, Any]], **kwargs: Any) -> AsyncIterator[str]:
        """Convenience wrapper: start a run and yield its tokens."""
        run = await self.start(user_id, turns, **kwargs)
        async for token in run.tokens():
            yield token

    async def _generate(self, run: AssistantRun) -> AsyncIterator[str]:
        start = perf_counter()
        emitted = 0
        bound = self.chat_llm.bind_tools(self.dispatcher.tools)

        # Tool-call detection needs the complete first message.
        response = await bound.ainvoke(run.conversation)
        # Any text sent alongside the first tool calls is part of the answer.
        for token in rechunk(_coerce_text(response.content)):
            emitted += 1
            yield token
        if not response.tool_calls:
            _logger.info("ASSISTANT DONE | tools=0 | tokens=%d | duration=%.2fs", emitted, perf_counter() - start)
            return

        while response.tool_calls:
            run.conversation.append(response)
            for result in await self._execute_tools(run, response.tool_calls):
                run.conversation.append(ToolMessage(
                    content=json.dumps(result.model_dump(exclude={"tool_call_id"}), default=str),
                    tool_call_id=result.tool_call_id,
                ))
            run.tool_rounds += 1

            # The last permitted round gets no tools so the model has to answer.
            final_round = run.tool_rounds >= self.max_tool_rounds
            model = self.chat_llm if final_round else bound
            gathered = None
            async for chunk in model.astream(run.conversation):
                text = _coerce_text(chunk.content)
                if text:
                    emitted += 1
                    yield text
                gathered = chunk if gathered is None else gathered + chunk

            if final_round or gathered is None or not gathered.tool_calls:
                break
            response = message_chunk_to_message(gathered)

        _logger.info(
            "ASSISTANT DONE | tools=%d | rounds=%d | tokens=%d | duration=%.2fs",
            len(run.tool_results), run.tool_rounds, emitted, perf_counter() - start,
        )

    async def _execute_tools(self, run: AssistantRun, tool_calls: List[Dict[str, Any]]) -> List[ToolResult]:
        """Run tool calls one after another, in the order the model issued them."""
        results = []
        for call in tool_calls:
            result = await self.dispatcher.execute(
                run.user_id,
                call.get("name", ""),
                call.get("args") or {},
                tool_call_id=call.get("id") or "",
            )
            results.append(result)
        run.tool_results.extend(results)
        return results
