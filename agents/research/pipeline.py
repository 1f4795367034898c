"""Research mode: cache → quota → web search → synthesis → cache.

Every failure degrades to an empty (or explanatory) context. Nothing in
here raises to the orchestrator; the student still gets an answer, only
without verified grounding.
"""
import asyncio
import logging
from time import perf_counter
from typing import List, Optional

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage

from .cache import ResearchCache, make_cache_key
from .prompts import SYNTHESIS_PROMPT, rate_limited_context, synthesis_input
from .rate_limiter import ResearchRateLimiter
from .search import WebSearchClient
from .state import ResearchOutcome, ResearchStatus, ResearchTopic, SearchResult
from .topic_extractor import TopicExtractor

logger = logging.getLogger(__name__)


def format_results(results: List[SearchResult]) -> str:
    blocks = []
    for index, result in enumerate(results, start=1):
        blocks.append(f"[{index}] {result.title}\nURL: {result.url}\n{result.content}")
    return "\n\n".join(blocks)


def join_sources(results: List[SearchResult]) -> str:
    seen = []
    for result in results:
        if result.url not in seen:
            seen.append(result.url)
    return "\n".join(seen)


class ResearchPipeline:
    """Produces a research context for one query on behalf of one user."""

    def __init__(
        self,
        *,
        text_llm: BaseChatModel,
        extractor: TopicExtractor,
        cache: ResearchCache,
        rate_limiter: ResearchRateLimiter,
        search_client: WebSearchClient,
    ):
        self.text_llm = text_llm
        self.extractor = extractor
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.search_client = search_client

    async def research(self, query: str, user_id: str, *, config: Optional[dict] = None) -> ResearchOutcome:
        start = perf_counter()
        topic = await self.extractor.extract(query, config=config)
        outcome = await self._resolve(topic, user_id, config=config)
        logger.info(
            "RESEARCH DONE | user=%s | status=%s | duration=%.2fs | sources=%d",
            user_id, outcome.status.value, perf_counter() - start, len(outcome.source_list()),
        )
        return outcome

    async def _resolve(self, topic: ResearchTopic, user_id: str, *, config: Optional[dict]) -> ResearchOutcome:
        cache_key = make_cache_key(topic.topic, topic.jurisdiction)

        try:
            cached = await asyncio.to_thread(self.cache.lookup, cache_key)
        except Exception as exc:
            logger.warning("Research cache lookup failed for key=%s: %s", cache_key, exc)
            cached = None
        if cached is not None:
            logger.info("Research cache hit | key=%s | access_count=%d", cache_key, cached.access_count)
            return ResearchOutcome(
                status=ResearchStatus.CACHED,
                context=cached.research_output,
                sources=cached.sources,
                topic=topic,
            )

        # The cache is shared, but each miss costs the requesting user one attempt.
        decision = await asyncio.to_thread(self.rate_limiter.check_and_consume, user_id)
        if not decision.allowed:
            return ResearchOutcome(
                status=ResearchStatus.RATE_LIMITED,
                context=rate_limited_context(self.rate_limiter.daily_limit),
                topic=topic,
                remaining_quota=0,
            )

        if not self.search_client.available:
            logger.info("Web search not configured; continuing without research")
            return ResearchOutcome(status=ResearchStatus.NO_RESULTS, topic=topic, remaining_quota=decision.remaining)

        try:
            results = await self.search_client.search(topic.topic, topic.jurisdiction)
        except Exception as exc:
            logger.warning("Web search failed for topic=%s: %s", topic.topic, exc)
            return ResearchOutcome(status=ResearchStatus.FAILED, topic=topic, remaining_quota=decision.remaining)
        if not results:
            return ResearchOutcome(status=ResearchStatus.NO_RESULTS, topic=topic, remaining_quota=decision.remaining)

        brief = await self._synthesize(topic, results, config=config)
        if not brief:
            return ResearchOutcome(status=ResearchStatus.FAILED, topic=topic, remaining_quota=decision.remaining)

        sources = join_sources(results)
        try:
            await asyncio.to_thread(self.cache.store, topic.topic, topic.jurisdiction, brief, sources)
        except Exception as exc:
            logger.warning("Research cache store failed for key=%s: %s", cache_key, exc)

        return ResearchOutcome(
            status=ResearchStatus.FRESH,
            context=brief,
            sources=sources,
            topic=topic,
            remaining_quota=decision.remaining,
        )

    async def _synthesize(self, topic: ResearchTopic, results: List[SearchResult], *, config: Optional[dict]) -> str:
        messages = [
            SystemMessage(content=SYNTHESIS_PROMPT),
            HumanMessage(content=synthesis_input(topic.topic, topic.jurisdiction, format_results(results))),
        ]
        try:
            response = await self.text_llm.ainvoke(messages, config=config)
        except Exception as exc:
            logger.warning("Research synthesis failed for topic=%s: %s", topic.topic, exc)
            return ""
        content = response.content
        return content.strip() if isinstance(content, str) else ""
