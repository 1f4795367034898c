"""Web search client used by research mode (Tavily)."""
import logging
from typing import List, Optional, Sequence

from langchain_core.tools import ToolException
from langchain_tavily import TavilySearch

from .state import SearchResult

logger = logging.getLogger(__name__)


def build_search_query(topic: str, jurisdiction: str, domains: Sequence[str] = ()) -> str:
    """Scope the search to the topic/jurisdiction and append site: hints for trusted domains."""
    query = f"{topic} {jurisdiction} law".strip()
    if domains:
        hints = " OR ".join(f"site:{domain}" for domain in domains)
        query = f"{query} ({hints})"
    return query


class WebSearchClient:
    """Wraps the ``TavilySearch`` tool and returns ``SearchResult`` models.

    Without an API key the client reports itself unavailable and research
    degrades to an empty context.
    """

    def __init__(
        self,
        api_key: Optional[str],
        domains: Sequence[str] = (),
        max_results: int = 5,
    ):
        self.domains = list(domains)
        self.max_results = max_results
        # Pass API key explicitly to avoid discovery issues
        self._tool = (
            TavilySearch(max_results=max_results, search_depth="advanced", tavily_api_key=api_key)
            if api_key
            else None
        )

    @property
    def available(self) -> bool:
        return self._tool is not None

    async def search(self, topic: str, jurisdiction: str) -> List[SearchResult]:
        """Run one search; raises when the search service itself fails."""
        if self._tool is None:
            return []
        query = build_search_query(topic, jurisdiction, self.domains)
        logger.info("Web search | query=%s", query)
        try:
            response = await self._tool.ainvoke({"query": query})
        except ToolException as exc:
            # TavilySearch raises when nothing matched.
            logger.info("Web search returned nothing: %s", exc)
            return []
        if isinstance(response, dict) and response.get("error"):
            raise RuntimeError(f"Tavily search failed: {response['error']}")

        results = []
        for item in (response or {}).get("results", []):
            url = item.get("url")
            if not url:
                continue
            results.append(SearchResult(
                title=item.get("title") or "",
                url=url,
                content=item.get("content") or "",
            ))
        return results
