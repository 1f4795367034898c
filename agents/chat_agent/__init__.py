"""Conversational orchestrator for the study assistant."""
from .agent import AssistantRun, StudyAssistant, enable_chat_logging, rechunk
from .context import build_context
from .tools import STUDY_TOOLS, ToolDispatcher, ToolResult

__all__ = [
    "AssistantRun",
    "StudyAssistant",
    "enable_chat_logging",
    "rechunk",
    "build_context",
    "STUDY_TOOLS",
    "ToolDispatcher",
    "ToolResult",
]
