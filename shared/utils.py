"""Chat model factories for the two model roles."""
from typing import Optional

from langchain_openai import ChatOpenAI

from .config import Configuration
from .callbacks import ChatMessagesLogger

_COMPLETIONS_SUFFIX = "/chat/completions"


def _normalize_base_url(url: Optional[str]) -> Optional[str]:
    """Accept either an API root or a full completions URL for OpenAI-compatible gateways."""
    if not url:
        return url
    root = url.rstrip("/")
    if root.endswith(_COMPLETIONS_SUFFIX):
        root = root[: -len(_COMPLETIONS_SUFFIX)]
    return root


def _chat_model(cfg: Configuration, model: str, temperature: float) -> ChatOpenAI:
    # Client retries only; a 429/402 that survives them must reach the API layer as-is.
    return ChatOpenAI(
        model=model,
        api_key=cfg.openai_api_key,
        base_url=_normalize_base_url(cfg.openai_base_url),
        timeout=cfg.openai_timeout,
        max_retries=cfg.openai_max_retries,
        temperature=temperature,
        callbacks=[ChatMessagesLogger()],
    )


def get_orchestrator_llm(cfg: Configuration) -> ChatOpenAI:
    """Model that talks to the student: picks tools and writes the streamed answer."""
    return _chat_model(cfg, cfg.orchestrator_model, temperature=0.7)


def get_text_llm(cfg: Configuration) -> ChatOpenAI:
    """Cheaper model for topic extraction and research synthesis.

    Runs at temperature 0 so extraction is stable and synthesis stays close
    to the retrieved sources.
    """
    return _chat_model(cfg, cfg.text_model, temperature=0.0)
