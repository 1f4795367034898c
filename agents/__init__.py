"""Study assistant orchestrator and research mode."""
from .chat_agent import StudyAssistant

__all__ = ["StudyAssistant"]
