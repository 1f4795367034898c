"""Shared configuration and utilities."""
from .config import Configuration
from .utils import get_orchestrator_llm, get_text_llm

__all__ = ["Configuration", "get_orchestrator_llm", "get_text_llm"]
