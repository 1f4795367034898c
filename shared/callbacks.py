"""LangChain callback that traces model requests and tool-call decisions."""
from __future__ import annotations

import json
import logging
from typing import Any, List

from langchain_core.callbacks import BaseCallbackHandler
from langchain_core.messages import BaseMessage
from langchain_core.outputs import LLMResult

_logger = logging.getLogger("chat")


def _clip(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit] + "... [truncated]"


def _summarize(message: BaseMessage) -> dict[str, Any]:
    """Role, tool linkage and a short content preview of one message."""
    summary: dict[str, Any] = {"role": message.type}
    requested = [call.get("name") for call in getattr(message, "tool_calls", None) or []]
    if requested:
        summary["tool_calls"] = requested
    answering = getattr(message, "tool_call_id", None)
    if answering:
        summary["tool_call_id"] = answering
    if isinstance(message.content, str) and message.content:
        summary["content"] = _clip(message.content, 180)
    elif isinstance(message.content, list):
        summary["parts"] = len(message.content)
    return summary


class ChatMessagesLogger(BaseCallbackHandler):
    """Logs what each chat model call was sent and which tools it asked for.

    Quiet unless the ``chat`` logger has been enabled (see
    ``enable_chat_logging``). The system prompt is logged by size only.
    """

    def on_chat_model_start(
        self,
        serialized: dict[str, Any],
        messages: List[List[BaseMessage]],
        run_id: Any,
        parent_run_id: Any = None,
        **kwargs: Any,
    ) -> None:
        if not _logger.handlers:
            return
        batch = messages[0] if messages else []
        summaries = []
        for message in batch:
            if message.type == "system":
                summaries.append({"role": "system", "chars": len(str(message.content))})
            else:
                summaries.append(_summarize(message))
        bound = [t.get("function", {}).get("name") for t in (kwargs.get("invocation_params") or {}).get("tools") or []]
        _logger.info(
            "LLM REQUEST | messages=%s | tools_bound=%d",
            json.dumps(summaries, ensure_ascii=False, default=str), len(bound),
        )

    def on_llm_end(self, response: LLMResult, *, run_id: Any, parent_run_id: Any = None, **kwargs: Any) -> None:
        if not _logger.handlers:
            return
        for generations in response.generations:
            for generation in generations:
                message = getattr(generation, "message", None)
                requested = [call.get("name") for call in getattr(message, "tool_calls", None) or []]
                if requested:
                    _logger.info("LLM REQUESTED TOOLS: %s", ", ".join(requested))
