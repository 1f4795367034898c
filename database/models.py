"""Database models for the study assistant.

User ids are opaque strings handed over by the external auth service; every
per-user table is filtered by them.
"""
import uuid
from datetime import datetime

from sqlalchemy import (
    Column, Integer, String, DateTime, Date, Float, JSON, ForeignKey, Boolean, Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


class Profile(Base):
    """Student profile and running study statistics."""
    __tablename__ = "profiles"

    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, unique=True, nullable=False, index=True)
    full_name = Column(String, nullable=True)
    university = Column(String, nullable=True)
    year_of_study = Column(Integer, nullable=True)
    subjects = Column(JSON, default=list)

    # Stats
    streak_days = Column(Integer, default=0)
    total_study_hours = Column(Float, default=0.0)
    tasks_completed = Column(Integer, default=0)
    cases_read = Column(Integer, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class StudyTask(Base):
    """A task on the student's study planner."""
    __tablename__ = "study_tasks"

    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    task_type = Column(String, default="study")  # study, revision, reading, assignment, exam
    scheduled_date = Column(Date, nullable=True)
    scheduled_time = Column(String, nullable=True)  # "HH:MM"
    duration_minutes = Column(Integer, default=30)
    completed = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class AcademyCourse(Base):
    """A course offered by the academy."""
    __tablename__ = "academy_courses"

    id = Column(String, primary_key=True, default=_uuid)
    title = Column(String, nullable=False)
    subject = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    enrollments = relationship("Enrollment", back_populates="course", cascade="all, delete-orphan")
    live_classes = relationship("LiveClass", back_populates="course", cascade="all, delete-orphan")


class Enrollment(Base):
    """A student's enrollment in an academy course."""
    __tablename__ = "academy_enrollments"

    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, nullable=False, index=True)
    course_id = Column(String, ForeignKey("academy_courses.id"), nullable=False)
    status = Column(String, default="active")  # active, expired, cancelled
    enrolled_at = Column(DateTime, default=datetime.utcnow)
    expires_at = Column(DateTime, nullable=True)

    # Relationships
    course = relationship("AcademyCourse", back_populates="enrollments")


class LiveClass(Base):
    """A scheduled live session for a course."""
    __tablename__ = "live_classes"

    id = Column(String, primary_key=True, default=_uuid)
    course_id = Column(String, ForeignKey("academy_courses.id"), nullable=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    scheduled_at = Column(DateTime, nullable=True)
    status = Column(String, default="scheduled")  # scheduled, live, ended
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    course = relationship("AcademyCourse", back_populates="live_classes")


class UserFile(Base):
    """A file the student stored in their library."""
    __tablename__ = "user_files"

    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, nullable=False, index=True)
    file_name = Column(String, nullable=False)
    file_type = Column(String, nullable=True)
    category = Column(String, nullable=True)
    file_url = Column(String, nullable=False)
    file_size = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class FlashcardDeck(Base):
    """A deck of revision flashcards."""
    __tablename__ = "flashcard_decks"

    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    subject = Column(String, nullable=False)
    cards = Column(JSON, default=list)  # [{front, back}, ...]
    mastered_count = Column(Integer, default=0)
    last_reviewed_at = Column(DateTime, nullable=True)
    next_review_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class Quiz(Base):
    """A practice quiz."""
    __tablename__ = "quizzes"

    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    subject = Column(String, nullable=False)
    questions = Column(JSON, default=list)  # [{question, options, correct_answer, explanation}, ...]
    total_questions = Column(Integer, nullable=False, default=0)
    score = Column(Integer, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class JournalEntry(Base):
    """A private reflection written by the student."""
    __tablename__ = "journal_entries"

    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, nullable=False, index=True)
    content = Column(Text, nullable=False)
    mood = Column(String, nullable=True)
    is_private = Column(Boolean, default=True)
    lumina_response = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class ResearchCacheEntry(Base):
    """A synthesized research brief shared by all users.

    Keyed by the slug of (topic, jurisdiction). Only access_count changes
    after a write, unless a stale entry is refreshed by new research.
    """
    __tablename__ = "research_cache"

    id = Column(String, primary_key=True, default=_uuid)
    cache_key = Column(String, unique=True, nullable=False, index=True)
    topic = Column(String, nullable=False)
    jurisdiction = Column(String, nullable=False)
    research_output = Column(Text, nullable=False)
    sources = Column(Text, nullable=True)  # newline-joined URLs
    last_verified_date = Column(DateTime, nullable=False, default=datetime.utcnow)
    access_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class ResearchRateLimit(Base):
    """Per-user, per-day counter of research attempts."""
    __tablename__ = "user_research_limits"
    __table_args__ = (
        UniqueConstraint("user_id", "query_date", name="uq_research_limit_user_date"),
    )

    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, nullable=False, index=True)
    query_date = Column(Date, nullable=False)
    query_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
