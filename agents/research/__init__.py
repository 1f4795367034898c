"""Research mode: classification, quota, shared cache, search and synthesis."""
from .cache import ResearchCache, make_cache_key, slugify
from .classifier import RESEARCH_KEYWORDS, needs_research
from .pipeline import ResearchPipeline
from .rate_limiter import ResearchRateLimiter
from .search import WebSearchClient, build_search_query
from .state import (
    CachedResearch,
    RateLimitDecision,
    ResearchOutcome,
    ResearchStatus,
    ResearchTopic,
    SearchResult,
)
from .topic_extractor import TopicExtractor, parse_topic

__all__ = [
    "ResearchCache",
    "make_cache_key",
    "slugify",
    "RESEARCH_KEYWORDS",
    "needs_research",
    "ResearchPipeline",
    "ResearchRateLimiter",
    "WebSearchClient",
    "build_search_query",
    "CachedResearch",
    "RateLimitDecision",
    "ResearchOutcome",
    "ResearchStatus",
    "ResearchTopic",
    "SearchResult",
    "TopicExtractor",
    "parse_topic",
]
