"""Value models passed between the research components."""
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class ResearchStatus(str, Enum):
    """How a research request was resolved."""
    CACHED = "cached"                # Served from the shared research cache
    FRESH = "fresh"                  # Searched, synthesized and cached now
    RATE_LIMITED = "rate_limited"    # User's daily quota is exhausted
    NO_RESULTS = "no_results"        # Search unavailable or returned nothing
    FAILED = "failed"                # Search or synthesis raised


class ResearchTopic(BaseModel):
    """A free-text query reduced to what should be researched and where."""
    topic: str = Field(description="Legal topic to research")
    jurisdiction: str = Field(description="Country or legal system the topic applies to")


class RateLimitDecision(BaseModel):
    """Outcome of consuming one research attempt from a user's daily quota."""
    allowed: bool
    remaining: int = Field(ge=0)


class CachedResearch(BaseModel):
    """Detached snapshot of a research cache row."""
    cache_key: str
    topic: str
    jurisdiction: str
    research_output: str
    sources: str = ""
    last_verified_date: datetime
    access_count: int = 0


class SearchResult(BaseModel):
    """One web search hit."""
    title: str = ""
    url: str
    content: str = ""


class ResearchOutcome(BaseModel):
    """What the research pipeline hands to prompt assembly."""
    status: ResearchStatus
    context: str = Field(default="", description="Research brief or an explanation for the model")
    sources: str = Field(default="", description="Newline-joined source URLs")
    topic: Optional[ResearchTopic] = None
    remaining_quota: Optional[int] = None

    @property
    def grounded(self) -> bool:
        """True when the context is a verified research brief."""
        return self.status in (ResearchStatus.CACHED, ResearchStatus.FRESH) and bool(self.context)

    def source_list(self) -> List[str]:
        return [line.strip() for line in self.sources.splitlines() if line.strip()]
