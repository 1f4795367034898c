"""Database package for the study assistant."""
from .models import (
    Base,
    Profile,
    StudyTask,
    AcademyCourse,
    Enrollment,
    LiveClass,
    UserFile,
    FlashcardDeck,
    Quiz,
    JournalEntry,
    ResearchCacheEntry,
    ResearchRateLimit,
)
from .connection import (
    get_db_session,
    init_db,
)

__all__ = [
    "Base",
    "Profile",
    "StudyTask",
    "AcademyCourse",
    "Enrollment",
    "LiveClass",
    "UserFile",
    "FlashcardDeck",
    "Quiz",
    "JournalEntry",
    "ResearchCacheEntry",
    "ResearchRateLimit",
    "get_db_session",
    "init_db",
]
