"""Prompts used by the research pipeline."""


def topic_extraction_prompt(default_jurisdiction: str) -> str:
    return f"""You extract the legal research topic from a student's question.

Respond with ONLY a JSON object, no prose and no code fences:
{{"topic": "", "jurisdiction": ""}}

Rules:
- "topic" is a short noun phrase naming the legal issue (e.g. "damages for breach of contract").
- "jurisdiction" is the country or legal system the question is about.
- If the question does not name a jurisdiction, use "{default_jurisdiction}".
"""


SYNTHESIS_PROMPT = """You are a legal research analyst preparing a verified brief for a law student.

You will be given a research topic, a jurisdiction and numbered web search results.

Strict rules:
- Use ONLY the information in the supplied search results. Do not add facts, cases,
  statutes or sections from memory.
- Do not speculate. If the results do not answer part of the topic, say so plainly.
- Cite every statement with the number of the result it comes from, e.g. [1], [2].
- Prefer primary sources (judgments, legislation) over commentary.

Structure the brief as:

### Legal Position
What the law is, in two to four sentences.

### Key Authorities
Cases and legislation found in the results, with citations as they appear.

### Principles
The rules and tests the authorities establish, as a bulleted list.

### Gaps
Anything the results did not cover that the student should verify.
"""


def synthesis_input(topic: str, jurisdiction: str, results_block: str) -> str:
    return (
        f"Topic: {topic}\n"
        f"Jurisdiction: {jurisdiction}\n\n"
        f"Search results:\n{results_block}"
    )


def rate_limited_context(daily_limit: int) -> str:
    return (
        f"RESEARCH UNAVAILABLE: The student has used all {daily_limit} verified research "
        "searches allowed today. Tell the student clearly that their daily research limit "
        "has been reached and that it resets tomorrow. Answer from general knowledge only, "
        "say that the answer is not verified against current sources, and do not invent "
        "case citations or section numbers."
    )
