import json
from datetime import date

import pytest
from langchain_core.callbacks import BaseCallbackHandler
from langchain_core.messages import AIMessage

from agents.research import (
    ResearchCache,
    ResearchPipeline,
    ResearchRateLimiter,
    ResearchStatus,
    TopicExtractor,
)
from agents.research.pipeline import format_results, join_sources
from agents.research.rate_limiter import utc_today

TOPIC_JSON = json.dumps({"topic": "Breach of contract remedies", "jurisdiction": "Zambia"})


def build_pipeline(text_llm, search_client, daily_limit=5):
    return ResearchPipeline(
        text_llm=text_llm,
        extractor=TopicExtractor(text_llm, default_jurisdiction="Zambia"),
        cache=ResearchCache(ttl_days=30),
        rate_limiter=ResearchRateLimiter(daily_limit=daily_limit),
        search_client=search_client,
    )


def test_format_and_join_sources(sample_results):
    block = format_results(sample_results)
    assert block.startswith("[1] Attorney General v Marcus Kampumba Achiume")
    assert "[2] Hadley v Baxendale applied in Zambia" in block
    assert join_sources(sample_results + sample_results[:1]).splitlines() == [r.url for r in sample_results]


@pytest.mark.asyncio
async def test_miss_then_hit_shares_cache_across_users(temp_database, scripted_model, fake_search, sample_results):
    """A fresh brief is cached; a second user asking the same topic is served without a search."""
    text_llm = scripted_model(
        AIMessage(content=TOPIC_JSON),
        AIMessage(content="Damages for breach are compensatory [1]."),
        AIMessage(content=TOPIC_JSON),
    )
    search = fake_search(results=sample_results)
    pipeline = build_pipeline(text_llm, search)

    first = await pipeline.research("What is the leading case on breach of contract damages?", "student-a")
    second = await pipeline.research("Leading case on breach of contract damages please", "student-b")

    assert first.status == ResearchStatus.FRESH
    assert first.context == "Damages for breach are compensatory [1]."
    assert first.source_list() == [r.url for r in sample_results]
    assert first.remaining_quota == 4

    assert second.status == ResearchStatus.CACHED
    assert second.context == first.context
    assert second.sources == first.sources
    assert len(search.calls) == 1
    # Cache hits do not consume quota.
    assert pipeline.rate_limiter.usage("student-b", today=utc_today()) == 0


@pytest.mark.asyncio
async def test_rate_limited_user_gets_explanatory_context(temp_database, scripted_model, fake_search, sample_results):
    text_llm = scripted_model(AIMessage(content=TOPIC_JSON))
    search = fake_search(results=sample_results)
    pipeline = build_pipeline(text_llm, search, daily_limit=5)
    for _ in range(5):
        pipeline.rate_limiter.check_and_consume("student-a", today=utc_today())

    outcome = await pipeline.research("What does the law say about breach of contract?", "student-a")

    assert outcome.status == ResearchStatus.RATE_LIMITED
    assert outcome.context.startswith("RESEARCH UNAVAILABLE:")
    assert "daily research limit" in outcome.context
    assert outcome.grounded is False
    assert search.calls == []


@pytest.mark.asyncio
async def test_search_failure_degrades_to_failed(temp_database, scripted_model, fake_search):
    text_llm = scripted_model(AIMessage(content=TOPIC_JSON))
    search = fake_search(error=RuntimeError("search timeout"))
    pipeline = build_pipeline(text_llm, search)

    outcome = await pipeline.research("Which statute governs contracts?", "student-a")

    assert outcome.status == ResearchStatus.FAILED
    assert outcome.context == ""
    assert outcome.grounded is False
    # The attempt still counted against the quota.
    assert pipeline.rate_limiter.usage("student-a", today=utc_today()) == 1


@pytest.mark.asyncio
async def test_empty_results_are_not_cached(temp_database, scripted_model, fake_search):
    text_llm = scripted_model(AIMessage(content=TOPIC_JSON))
    pipeline = build_pipeline(text_llm, fake_search(results=[]))

    outcome = await pipeline.research("Which statute governs contracts?", "student-a")

    assert outcome.status == ResearchStatus.NO_RESULTS
    assert pipeline.cache.lookup("breach_of_contract_remedies_zambia") is None


@pytest.mark.asyncio
async def test_unconfigured_search_returns_no_results(temp_database, scripted_model, fake_search):
    text_llm = scripted_model(AIMessage(content=TOPIC_JSON))
    search = fake_search(available=False)
    pipeline = build_pipeline(text_llm, search)

    outcome = await pipeline.research("Which statute governs contracts?", "student-a")

    assert outcome.status == ResearchStatus.NO_RESULTS
    assert search.calls == []


@pytest.mark.asyncio
async def test_synthesis_failure_is_not_cached(temp_database, scripted_model, fake_search, sample_results):
    text_llm = scripted_model(AIMessage(content=TOPIC_JSON), AIMessage(content="   "))
    pipeline = build_pipeline(text_llm, fake_search(results=sample_results))

    outcome = await pipeline.research("Which statute governs contracts?", "student-a")

    assert outcome.status == ResearchStatus.FAILED
    assert pipeline.cache.lookup("breach_of_contract_remedies_zambia") is None


def test_utc_today_is_a_date():
    assert isinstance(utc_today(), date)


@pytest.mark.asyncio
async def test_run_config_reaches_both_model_calls(temp_database, scripted_model, fake_search, sample_results):
    class RecordMetadata(BaseCallbackHandler):
        def __init__(self):
            self.metadata = []

        def on_chat_model_start(self, serialized, messages, *, run_id, metadata=None, **kwargs):
            self.metadata.append(metadata or {})

    text_llm = scripted_model(AIMessage(content=TOPIC_JSON), AIMessage(content="Damages are compensatory [1]."))
    pipeline = build_pipeline(text_llm, fake_search(results=sample_results))
    seen = RecordMetadata()

    outcome = await pipeline.research(
        "Breach of contract damages", "student-a",
        config={"callbacks": [seen], "metadata": {"user_id": "student-a"}},
    )

    assert outcome.status == ResearchStatus.FRESH
    assert [m.get("user_id") for m in seen.metadata] == ["student-a", "student-a"]
