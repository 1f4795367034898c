"""Shared configuration for the Lumina study assistant."""
import json
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Annotated, List, Optional

from langchain_core.runnables import RunnableConfig, ensure_config


def _load_model_config() -> dict:
    """Load model configuration from JSON file."""
    config_path = Path(__file__).parent.parent / "model_config.json"
    if not config_path.exists():
        return {
            "orchestrator_model": "gpt-4o",
            "text_model": "gpt-4o-mini",
        }

    with open(config_path) as f:
        config = json.load(f)

    return {
        "orchestrator_model": config.get("orchestrator_model", "gpt-4o"),
        "text_model": config.get("text_model", "gpt-4o-mini"),
    }


def _split_env_list(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass(kw_only=True)
class Configuration:
    """Shared configuration for the assistant, research pipeline and API.

    This configuration provides:
    - OpenAI API key and networking controls
    - Two model configurations: orchestrator and text
    - Research settings (search key, jurisdiction, quota, cache TTL)
    - The external auth collaborator endpoint
    - Dependency injection via from_runnable_config()
    """

    # API KEY
    openai_api_key: Optional[str] = field(
        default_factory=lambda: os.getenv("OPENAI_API_KEY"),
        metadata={"description": "OpenAI API key"}
    )

    # Optional base URL for OpenAI-compatible APIs (e.g., self-hosted gateways)
    openai_base_url: Optional[str] = field(
        default_factory=lambda: os.getenv("OPENAI_BASE_URL"),
        metadata={"description": "Override base URL for OpenAI-compatible API (e.g. http://host:port/v1)"}
    )

    # Networking controls
    openai_timeout: int = field(
        default_factory=lambda: int(os.getenv("OPENAI_TIMEOUT", "60")),
        metadata={"description": "HTTP timeout (seconds) for LLM calls"}
    )
    openai_max_retries: int = field(
        default_factory=lambda: int(os.getenv("OPENAI_MAX_RETRIES", "1")),
        metadata={"description": "Max retries for LLM calls"}
    )

    # MODELS
    orchestrator_model: Annotated[str, {"__template_metadata__": {"kind": "llm"}}] = field(
        default_factory=lambda: _load_model_config().get("orchestrator_model", "gpt-4o"),
        metadata={"description": "Model that answers the student and calls tools"}
    )

    text_model: Annotated[str, {"__template_metadata__": {"kind": "llm"}}] = field(
        default_factory=lambda: _load_model_config().get("text_model", "gpt-4o-mini"),
        metadata={"description": "Model for topic extraction and research synthesis"}
    )

    # RESEARCH
    tavily_api_key: Optional[str] = field(
        default_factory=lambda: os.getenv("TAVILY_API_KEY"),
        metadata={"description": "Tavily API key; research search is unavailable without it"}
    )
    default_jurisdiction: str = field(
        default_factory=lambda: os.getenv("LUMINA_DEFAULT_JURISDICTION", "Zambia"),
        metadata={"description": "Jurisdiction used when a query names none"}
    )
    research_domains: List[str] = field(
        default_factory=lambda: _split_env_list(
            "LUMINA_RESEARCH_DOMAINS",
            "zambialii.org,parliament.gov.zm,judiciaryzambia.com",
        ),
        metadata={"description": "Domains appended to research queries as site: hints"}
    )
    research_daily_limit: int = field(
        default_factory=lambda: int(os.getenv("LUMINA_RESEARCH_DAILY_LIMIT", "5")),
        metadata={"description": "Research attempts allowed per user per UTC day"}
    )
    research_cache_ttl_days: int = field(
        default_factory=lambda: int(os.getenv("LUMINA_RESEARCH_CACHE_TTL_DAYS", "30")),
        metadata={"description": "Cached briefs older than this are re-researched (0 disables)"}
    )
    research_max_results: int = field(
        default_factory=lambda: int(os.getenv("LUMINA_RESEARCH_MAX_RESULTS", "5")),
        metadata={"description": "Maximum search results fed to synthesis"}
    )

    # ORCHESTRATION
    max_tool_rounds: int = field(
        default_factory=lambda: int(os.getenv("LUMINA_MAX_TOOL_ROUNDS", "3")),
        metadata={"description": "Upper bound on tool-calling rounds per request"}
    )

    # AUTH
    auth_url: Optional[str] = field(
        default_factory=lambda: os.getenv("LUMINA_AUTH_URL"),
        metadata={"description": "User lookup endpoint of the external auth service"}
    )
    auth_api_key: Optional[str] = field(
        default_factory=lambda: os.getenv("LUMINA_AUTH_API_KEY"),
        metadata={"description": "Optional apikey header sent to the auth service"}
    )

    @classmethod
    def from_runnable_config(
        cls, config: Optional[RunnableConfig] = None
    ) -> "Configuration":
        """Create Configuration from RunnableConfig for dependency injection."""
        cfg = ensure_config(config or {})
        data = cfg.get("configurable", {})
        return cls(**{k: v for k, v in data.items() if k in {f.name for f in fields(cls)}})

    def validate(self) -> None:
        """Validate that required configuration is present."""
        if not self.openai_api_key:
            raise ValueError(
                "OPENAI_API_KEY environment variable is not set. "
                "Please set it in your .env file or environment."
            )
        if self.research_daily_limit < 0:
            raise ValueError("LUMINA_RESEARCH_DAILY_LIMIT must not be negative.")
        if self.max_tool_rounds < 1:
            raise ValueError("LUMINA_MAX_TOOL_ROUNDS must be at least 1.")
