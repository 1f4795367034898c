"""Decides whether a query should be answered in research mode."""
from typing import Optional

# Terms that signal the student wants verified legal authority rather than
# general explanation.
RESEARCH_KEYWORDS = (
    "statute",
    "statutory",
    "case law",
    "precedent",
    "leading case",
    "authority for",
    "legislation",
    "act of parliament",
    "section of the",
    "constitution",
    "supreme court",
    "constitutional court",
    "court of appeal",
    "high court",
    "judgment",
    "ruling",
    "what does the law say",
    "legal position",
    "current law",
    "zambialii",
    "citation",
)


def needs_research(query: Optional[str], deep_search: bool = False) -> bool:
    """Return True when the caller forces research or the query asks for legal authority.

    Matching is a case-insensitive substring search over RESEARCH_KEYWORDS.
    """
    if deep_search:
        return True
    if not query:
        return False
    lowered = query.lower()
    return any(keyword in lowered for keyword in RESEARCH_KEYWORDS)
