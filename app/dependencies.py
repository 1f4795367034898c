"""Process-wide configuration and assistant, created lazily on first use."""
import logging
from typing import Optional

from fastapi import HTTPException

from agents.chat_agent import StudyAssistant
from shared.config import Configuration

logger = logging.getLogger("lumina.api")

_CONFIG: Optional[Configuration] = None
_CONFIG_ERROR: Optional[str] = None
_AUTH_CONFIG: Optional[Configuration] = None
_ASSISTANT: Optional[StudyAssistant] = None


def _load_config() -> None:
    global _CONFIG, _CONFIG_ERROR
    try:
        cfg = Configuration()
        cfg.validate()
        _CONFIG = cfg
        _CONFIG_ERROR = None
        logger.info("Configuration loaded successfully.")
    except ValueError as exc:
        _CONFIG_ERROR = str(exc)
        logger.warning("Configuration validation failed: %s", exc)


def get_configuration() -> Configuration:
    """Return validated configuration or raise an HTTP error."""
    if _CONFIG is None:
        _load_config()
    if _CONFIG is None:
        raise HTTPException(
            status_code=500,
            detail=f"Configuration error: {_CONFIG_ERROR or 'Missing OPENAI_API_KEY'}",
        )
    return _CONFIG


def get_auth_config() -> Configuration:
    """Settings for identity checks; usable before the model key is configured."""
    global _AUTH_CONFIG
    if _CONFIG is not None:
        return _CONFIG
    if _AUTH_CONFIG is None:
        _AUTH_CONFIG = Configuration()
    return _AUTH_CONFIG


def get_assistant() -> StudyAssistant:
    """Return the shared assistant; per-request state lives in AssistantRun."""
    global _ASSISTANT
    if _ASSISTANT is None:
        _ASSISTANT = StudyAssistant(get_configuration())
    return _ASSISTANT
