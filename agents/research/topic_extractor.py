"""Reduces a free-text query to a {topic, jurisdiction} pair."""
import json
import logging
from typing import Optional

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import ValidationError

from .prompts import topic_extraction_prompt
from .state import ResearchTopic

logger = logging.getLogger(__name__)

_DECODER = json.JSONDecoder()

MAX_FALLBACK_TOPIC_LENGTH = 100


def parse_topic(text: str, query: str, default_jurisdiction: str) -> ResearchTopic:
    """Parse the first JSON object in ``text``; fall back to the raw query on any problem."""
    fallback = ResearchTopic(
        topic=query[:MAX_FALLBACK_TOPIC_LENGTH], jurisdiction=default_jurisdiction
    )
    start = (text or "").find("{")
    if start < 0:
        return fallback
    try:
        data, _ = _DECODER.raw_decode(text, start)
    except json.JSONDecodeError:
        return fallback
    if not isinstance(data, dict):
        return fallback

    topic = data.get("topic")
    jurisdiction = data.get("jurisdiction")
    if not isinstance(topic, str) or not topic.strip():
        return fallback
    if not isinstance(jurisdiction, str) or not jurisdiction.strip():
        jurisdiction = default_jurisdiction
    try:
        return ResearchTopic(topic=topic.strip(), jurisdiction=jurisdiction.strip())
    except ValidationError:
        return fallback


class TopicExtractor:
    """Asks the text model for the research topic; never raises."""

    def __init__(self, llm: BaseChatModel, default_jurisdiction: str = "Zambia"):
        self.llm = llm
        self.default_jurisdiction = default_jurisdiction

    async def extract(self, query: str, *, config: Optional[dict] = None) -> ResearchTopic:
        messages = [
            SystemMessage(content=topic_extraction_prompt(self.default_jurisdiction)),
            HumanMessage(content=query),
        ]
        try:
            response = await self.llm.ainvoke(messages, config=config)
            text = response.content if isinstance(response.content, str) else str(response.content)
        except Exception as exc:
            logger.warning("Topic extraction call failed, using raw query: %s", exc)
            text = ""
        result = parse_topic(text, query, self.default_jurisdiction)
        logger.info("Research topic | topic=%s | jurisdiction=%s", result.topic, result.jurisdiction)
        return result
