"""Study-data tools the assistant can call, and the dispatcher that runs them.

Each tool is a LangChain ``@tool``: its JSON schema comes from the signature
and docstring, so schema and behaviour live together. ``user_id`` is an
injected argument, hidden from the model and always set by the dispatcher to
the authenticated user.
"""
import json
import logging
from datetime import date, datetime, timedelta
from time import perf_counter
from typing import Annotated, Any, Dict, List, Optional, Sequence

from langchain_core.tools import BaseTool, InjectedToolArg, tool
from pydantic import BaseModel, Field, ValidationError
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database.connection import get_db_session
from database.models import (
    FlashcardDeck,
    JournalEntry,
    Profile,
    Quiz,
    StudyTask,
)
from .context import fetch_upcoming_sessions

_logger = logging.getLogger("chat")

DEFAULT_TASK_MINUTES = 30
TASK_TYPES = ("study", "revision", "reading", "assignment", "exam", "other")


class ToolResult(BaseModel):
    """Outcome of one tool call, fed back to the model."""
    tool_call_id: str = ""
    name: str
    success: bool
    message: str
    payload: Optional[Any] = None


class FlashcardInput(BaseModel):
    front: str = Field(description="Question or prompt side of the card")
    back: str = Field(description="Answer side of the card")


class QuizQuestionInput(BaseModel):
    question: str = Field(description="Question text")
    options: List[str] = Field(description="Answer options, usually four")
    correct_answer: str = Field(description="The correct option, exactly as written in options")
    explanation: Optional[str] = Field(default=None, description="Why the answer is correct")


# --------------------------------------------------------------------------- #
# Helpers
# --------------------------------------------------------------------------- #


def _today() -> date:
    return datetime.utcnow().date()


def _ok(message: str, payload: Any = None) -> Dict[str, Any]:
    return {"success": True, "message": message, "payload": payload}


def _fail(message: str, payload: Any = None) -> Dict[str, Any]:
    return {"success": False, "message": message, "payload": payload}


def _parse_date(value: Optional[str]) -> Optional[date]:
    """Parse 'today', 'tomorrow' or an ISO date; raise ValueError otherwise."""
    if value is None or not str(value).strip():
        return None
    text = str(value).strip().lower()
    if text == "today":
        return _today()
    if text == "tomorrow":
        return _today() + timedelta(days=1)
    return date.fromisoformat(text[:10])


def _normalize_time(value: Optional[str]) -> Optional[str]:
    """Return HH:MM or raise ValueError."""
    if value is None or not str(value).strip():
        return None
    parsed = datetime.strptime(str(value).strip()[:5], "%H:%M")
    return parsed.strftime("%H:%M")


def _task_dict(task: StudyTask) -> Dict[str, Any]:
    return {
        "id": task.id,
        "title": task.title,
        "description": task.description,
        "task_type": task.task_type,
        "scheduled_date": task.scheduled_date.isoformat() if task.scheduled_date else None,
        "scheduled_time": task.scheduled_time,
        "duration_minutes": task.duration_minutes,
        "completed": bool(task.completed),
    }


def _as_dict(item: Any) -> Dict[str, Any]:
    if isinstance(item, BaseModel):
        return item.model_dump()
    return dict(item)


def find_task(
    db: Session,
    user_id: str,
    task_id: Optional[str] = None,
    task_title: Optional[str] = None,
    *,
    include_completed: bool = True,
) -> Optional[StudyTask]:
    """Resolve a task by id, or by the first case-insensitive title substring match.

    Title matches are ordered most recently relevant first: latest scheduled
    date, then newest created. Always scoped to ``user_id``.
    """
    query = db.query(StudyTask).filter(StudyTask.user_id == user_id)
    if not include_completed:
        query = query.filter(StudyTask.completed.is_(False))
    if task_id:
        return query.filter(StudyTask.id == task_id).first()
    if task_title and task_title.strip():
        needle = task_title.strip().lower()
        return (
            query.filter(func.lower(StudyTask.title).contains(needle, autoescape=True))
            .order_by(
                StudyTask.scheduled_date.desc().nulls_last(),
                StudyTask.created_at.desc(),
            )
            .first()
        )
    return None


def _not_found(db: Session, user_id: str, task_id: Optional[str], task_title: Optional[str]) -> Dict[str, Any]:
    if not task_id and not (task_title and task_title.strip()):
        return _fail("Which task do you mean? Please give the task's title.")
    recent = (
        db.query(StudyTask.title)
        .filter(StudyTask.user_id == user_id, StudyTask.completed.is_(False))
        .order_by(StudyTask.created_at.desc())
        .limit(5)
        .all()
    )
    label = task_title or task_id
    return _fail(
        f"I couldn't find a task matching '{label}'. Which task did you mean?",
        {"open_tasks": [title for (title,) in recent]},
    )


# --------------------------------------------------------------------------- #
# Task tools
# --------------------------------------------------------------------------- #


@tool
def add_study_task(
    title: str,
    description: Optional[str] = None,
    scheduled_date: Optional[str] = None,
    scheduled_time: Optional[str] = None,
    duration_minutes: int = DEFAULT_TASK_MINUTES,
    task_type: str = "study",
    *,
    user_id: Annotated[str, InjectedToolArg],
) -> Dict[str, Any]:
    """Add a task to the student's study planner.

    Use when the student asks to add, plan or schedule something to study.

    Args:
        title: Short task title, e.g. 'Read Donoghue v Stevenson'
        description: Optional details
        scheduled_date: 'today', 'tomorrow' or YYYY-MM-DD (defaults to today)
        scheduled_time: Optional start time as HH:MM (24h)
        duration_minutes: Planned length in minutes (defaults to 30)
        task_type: One of study, revision, reading, assignment, exam, other
    """
    if not title or not title.strip():
        return _fail("A task needs a title.")
    if duration_minutes <= 0:
        return _fail("Duration must be a positive number of minutes.")
    try:
        day = _parse_date(scheduled_date) or _today()
        at = _normalize_time(scheduled_time)
    except ValueError:
        return _fail("Dates must be 'today', 'tomorrow' or YYYY-MM-DD, and times HH:MM.")

    with get_db_session() as db:
        task = StudyTask(
            user_id=user_id,
            title=title.strip(),
            description=description,
            task_type=task_type if task_type in TASK_TYPES else "other",
            scheduled_date=day,
            scheduled_time=at,
            duration_minutes=duration_minutes,
            completed=False,
        )
        db.add(task)
        db.flush()
        payload = _task_dict(task)

    when = f" at {at}" if at else ""
    return _ok(f"Added '{payload['title']}' for {day.isoformat()}{when} ({duration_minutes} min).", payload)


@tool
def update_study_task(
    task_id: Optional[str] = None,
    task_title: Optional[str] = None,
    new_title: Optional[str] = None,
    description: Optional[str] = None,
    scheduled_date: Optional[str] = None,
    scheduled_time: Optional[str] = None,
    duration_minutes: Optional[int] = None,
    task_type: Optional[str] = None,
    *,
    user_id: Annotated[str, InjectedToolArg],
) -> Dict[str, Any]:
    """Change an existing study task (reschedule, rename, change duration).

    Identify the task by task_id or by (part of) its current title.

    Args:
        task_id: Task id if known
        task_title: Current title or a distinctive part of it
        new_title: New title
        description: New description
        scheduled_date: New date: 'today', 'tomorrow' or YYYY-MM-DD
        scheduled_time: New start time HH:MM
        duration_minutes: New duration in minutes
        task_type: New type (study, revision, reading, assignment, exam, other)
    """
    try:
        day = _parse_date(scheduled_date)
        at = _normalize_time(scheduled_time)
    except ValueError:
        return _fail("Dates must be 'today', 'tomorrow' or YYYY-MM-DD, and times HH:MM.")
    if duration_minutes is not None and duration_minutes <= 0:
        return _fail("Duration must be a positive number of minutes.")

    with get_db_session() as db:
        task = find_task(db, user_id, task_id, task_title)
        if task is None:
            return _not_found(db, user_id, task_id, task_title)

        changed = []
        if new_title and new_title.strip():
            task.title = new_title.strip()
            changed.append("title")
        if description is not None:
            task.description = description
            changed.append("description")
        if day is not None:
            task.scheduled_date = day
            changed.append("date")
        if at is not None:
            task.scheduled_time = at
            changed.append("time")
        if duration_minutes is not None:
            task.duration_minutes = duration_minutes
            changed.append("duration")
        if task_type:
            task.task_type = task_type if task_type in TASK_TYPES else "other"
            changed.append("type")
        if not changed:
            return _fail(f"Nothing to change on '{task.title}'. What should be updated?")
        db.flush()
        payload = _task_dict(task)

    return _ok(f"Updated {', '.join(changed)} of '{payload['title']}'.", payload)


@tool
def complete_task(
    task_id: Optional[str] = None,
    task_title: Optional[str] = None,
    *,
    user_id: Annotated[str, InjectedToolArg],
) -> Dict[str, Any]:
    """Mark a study task as done.

    Args:
        task_id: Task id if known
        task_title: Title or a distinctive part of it
    """
    with get_db_session() as db:
        task = find_task(db, user_id, task_id, task_title, include_completed=False)
        if task is None:
            return _not_found(db, user_id, task_id, task_title)
        task.completed = True
        db.flush()
        payload = _task_dict(task)

    return _ok(f"Marked '{payload['title']}' as complete.", payload)


@tool
def delete_study_task(
    task_id: Optional[str] = None,
    task_title: Optional[str] = None,
    *,
    user_id: Annotated[str, InjectedToolArg],
) -> Dict[str, Any]:
    """Remove a task from the study planner.

    Args:
        task_id: Task id if known
        task_title: Title or a distinctive part of it
    """
    with get_db_session() as db:
        task = find_task(db, user_id, task_id, task_title)
        if task is None:
            return _not_found(db, user_id, task_id, task_title)
        payload = _task_dict(task)
        db.delete(task)

    return _ok(f"Deleted '{payload['title']}'.", payload)


def _schedule(user_id: str, start: date, end: date) -> List[Dict[str, Any]]:
    with get_db_session() as db:
        tasks = (
            db.query(StudyTask)
            .filter(
                StudyTask.user_id == user_id,
                StudyTask.scheduled_date >= start,
                StudyTask.scheduled_date <= end,
            )
            .order_by(StudyTask.scheduled_date.asc(), StudyTask.scheduled_time.asc())
            .all()
        )
        return [_task_dict(t) for t in tasks]


@tool
def get_today_schedule(*, user_id: Annotated[str, InjectedToolArg]) -> Dict[str, Any]:
    """List the student's study tasks scheduled for today."""
    today = _today()
    tasks = _schedule(user_id, today, today)
    if not tasks:
        return _ok("No tasks are scheduled for today.", {"date": today.isoformat(), "tasks": []})
    done = sum(1 for t in tasks if t["completed"])
    return _ok(
        f"{len(tasks)} task(s) today, {done} done.",
        {"date": today.isoformat(), "tasks": tasks},
    )


@tool
def get_week_schedule(*, user_id: Annotated[str, InjectedToolArg]) -> Dict[str, Any]:
    """List the student's study tasks for today and the next six days, grouped by date."""
    start = _today()
    end = start + timedelta(days=6)
    tasks = _schedule(user_id, start, end)
    by_day: Dict[str, List[Dict[str, Any]]] = {}
    for t in tasks:
        by_day.setdefault(t["scheduled_date"], []).append(t)
    total_minutes = sum(t["duration_minutes"] or 0 for t in tasks if not t["completed"])
    return _ok(
        f"{len(tasks)} task(s) between {start.isoformat()} and {end.isoformat()}, "
        f"{total_minutes} min still planned.",
        {"start": start.isoformat(), "end": end.isoformat(), "days": by_day},
    )


# --------------------------------------------------------------------------- #
# Study material tools
# --------------------------------------------------------------------------- #


@tool
def create_flashcard_deck(
    title: str,
    subject: str,
    cards: List[FlashcardInput],
    *,
    user_id: Annotated[str, InjectedToolArg],
) -> Dict[str, Any]:
    """Save a deck of revision flashcards.

    Use when the student asks to create or save flashcards. Write the cards
    yourself (5-10 is a good size) focusing on principles, elements and case ratios.

    Args:
        title: Deck title, e.g. 'Contract Law: Offer and Acceptance'
        subject: Subject area, e.g. 'Contract Law'
        cards: The cards, each with front and back
    """
    card_dicts = [_as_dict(c) for c in cards or []]
    card_dicts = [c for c in card_dicts if c.get("front") and c.get("back")]
    if not card_dicts:
        return _fail("A deck needs at least one card with a front and a back.")

    with get_db_session() as db:
        deck = FlashcardDeck(
            user_id=user_id,
            title=title.strip(),
            subject=subject.strip(),
            cards=card_dicts,
            mastered_count=0,
            next_review_at=datetime.utcnow() + timedelta(days=1),
        )
        db.add(deck)
        db.flush()
        payload = {"id": deck.id, "title": deck.title, "subject": deck.subject, "card_count": len(card_dicts)}

    return _ok(f"Created flashcard deck '{payload['title']}' with {len(card_dicts)} cards.", payload)


@tool
def create_quiz(
    title: str,
    subject: str,
    questions: List[QuizQuestionInput],
    *,
    user_id: Annotated[str, InjectedToolArg],
) -> Dict[str, Any]:
    """Save a practice quiz.

    Write multiple-choice questions yourself; each needs options and the correct answer.

    Args:
        title: Quiz title
        subject: Subject area
        questions: The questions
    """
    question_dicts = [_as_dict(q) for q in questions or []]
    for index, q in enumerate(question_dicts, start=1):
        if q.get("correct_answer") not in (q.get("options") or []):
            return _fail(f"Question {index}: the correct answer must be one of its options.")
    if not question_dicts:
        return _fail("A quiz needs at least one question.")

    with get_db_session() as db:
        quiz = Quiz(
            user_id=user_id,
            title=title.strip(),
            subject=subject.strip(),
            questions=question_dicts,
            total_questions=len(question_dicts),
        )
        db.add(quiz)
        db.flush()
        payload = {"id": quiz.id, "title": quiz.title, "subject": quiz.subject, "total_questions": quiz.total_questions}

    return _ok(f"Created quiz '{payload['title']}' with {payload['total_questions']} questions.", payload)


@tool
def create_journal_entry(
    content: str,
    mood: Optional[str] = None,
    *,
    user_id: Annotated[str, InjectedToolArg],
) -> Dict[str, Any]:
    """Save a private journal entry for the student.

    Args:
        content: The entry text, in the student's words
        mood: Optional one-word mood, e.g. 'stressed', 'motivated'
    """
    if not content or not content.strip():
        return _fail("The journal entry is empty.")
    with get_db_session() as db:
        entry = JournalEntry(user_id=user_id, content=content.strip(), mood=mood, is_private=True)
        db.add(entry)
        db.flush()
        payload = {"id": entry.id, "mood": entry.mood, "created_at": entry.created_at.isoformat()}
    return _ok("Saved your journal entry.", payload)


# --------------------------------------------------------------------------- #
# Progress tools
# --------------------------------------------------------------------------- #


@tool
def get_progress_stats(*, user_id: Annotated[str, InjectedToolArg]) -> Dict[str, Any]:
    """Summarize the student's study progress: streak, hours, tasks, decks, quizzes."""
    today = _today()
    week_start = today - timedelta(days=6)
    with get_db_session() as db:
        profile = db.query(Profile).filter(Profile.user_id == user_id).first()
        total_tasks = db.query(func.count(StudyTask.id)).filter(StudyTask.user_id == user_id).scalar() or 0
        completed_tasks = (
            db.query(func.count(StudyTask.id))
            .filter(StudyTask.user_id == user_id, StudyTask.completed.is_(True))
            .scalar()
            or 0
        )
        week_minutes = (
            db.query(func.sum(StudyTask.duration_minutes))
            .filter(
                StudyTask.user_id == user_id,
                StudyTask.completed.is_(True),
                StudyTask.scheduled_date >= week_start,
                StudyTask.scheduled_date <= today,
            )
            .scalar()
            or 0
        )
        deck_count = db.query(func.count(FlashcardDeck.id)).filter(FlashcardDeck.user_id == user_id).scalar() or 0
        quiz_count = db.query(func.count(Quiz.id)).filter(Quiz.user_id == user_id).scalar() or 0
        avg_score = (
            db.query(func.avg(Quiz.score))
            .filter(Quiz.user_id == user_id, Quiz.score.isnot(None))
            .scalar()
        )
        journal_count = db.query(func.count(JournalEntry.id)).filter(JournalEntry.user_id == user_id).scalar() or 0

        stats = {
            "streak_days": (profile.streak_days or 0) if profile else 0,
            "total_study_hours": (profile.total_study_hours or 0.0) if profile else 0.0,
            "cases_read": (profile.cases_read or 0) if profile else 0,
            "tasks_total": total_tasks,
            "tasks_completed": completed_tasks,
            "tasks_pending": total_tasks - completed_tasks,
            "completion_rate": round(completed_tasks / total_tasks, 2) if total_tasks else None,
            "minutes_completed_last_7_days": int(week_minutes),
            "flashcard_decks": deck_count,
            "quizzes": quiz_count,
            "average_quiz_score": round(float(avg_score), 1) if avg_score is not None else None,
            "journal_entries": journal_count,
        }

    return _ok(
        f"{completed_tasks}/{total_tasks} tasks completed, {stats['streak_days']}-day streak.",
        stats,
    )


@tool
def get_upcoming_sessions(
    limit: int = 5,
    *,
    user_id: Annotated[str, InjectedToolArg],
) -> Dict[str, Any]:
    """List upcoming live class sessions for the courses the student is enrolled in.

    Args:
        limit: Maximum number of sessions to return (1-20)
    """
    sessions = fetch_upcoming_sessions(user_id, limit=max(1, min(limit, 20)))
    if not sessions:
        return _ok("No upcoming sessions are scheduled.", {"sessions": []})
    return _ok(f"{len(sessions)} upcoming session(s).", {"sessions": sessions})


STUDY_TOOLS: List[BaseTool] = [
    add_study_task,
    update_study_task,
    complete_task,
    delete_study_task,
    get_today_schedule,
    get_week_schedule,
    create_flashcard_deck,
    create_quiz,
    create_journal_entry,
    get_progress_stats,
    get_upcoming_sessions,
]


# --------------------------------------------------------------------------- #
# Dispatcher
# --------------------------------------------------------------------------- #


def _first_line(text: str) -> str:
    return (text or "").strip().splitlines()[0] if (text or "").strip() else ""


class ToolDispatcher:
    """Registry of named tools; executes one call on behalf of one user.

    Failures of any kind come back as ``ToolResult(success=False)`` so the
    model can react to them inside the conversation.
    """

    def __init__(self, tools: Sequence[BaseTool] = STUDY_TOOLS):
        self._registry: Dict[str, BaseTool] = {t.name: t for t in tools}

    @property
    def tools(self) -> List[BaseTool]:
        return list(self._registry.values())

    @property
    def names(self) -> List[str]:
        return list(self._registry)

    def describe(self) -> str:
        """One line per tool for the system prompt."""
        return "\n".join(f"- **{name}**: {_first_line(t.description)}" for name, t in self._registry.items())

    async def execute(
        self,
        user_id: str,
        name: str,
        args: Optional[Dict[str, Any]] = None,
        tool_call_id: str = "",
    ) -> ToolResult:
        start = perf_counter()
        _logger.info(
            "TOOL CALL: %s | user_id=%s | args=%s",
            name, user_id, json.dumps(args or {}, default=str)[:500],
        )
        result = await self._run(user_id, name, args, tool_call_id)
        _logger.info(
            "TOOL DONE: %s | success=%s | duration=%.2fs",
            name, result.success, perf_counter() - start,
        )
        return result

    async def _run(self, user_id: str, name: str, args: Optional[Dict[str, Any]], tool_call_id: str) -> ToolResult:
        selected = self._registry.get(name)
        if selected is None:
            return ToolResult(
                tool_call_id=tool_call_id, name=name, success=False,
                message=f"Unknown tool '{name}'. Available tools: {', '.join(self._registry)}.",
            )
        if args is not None and not isinstance(args, dict):
            return ToolResult(
                tool_call_id=tool_call_id, name=name, success=False,
                message=f"Arguments for {name} must be an object.",
            )

        tool_input = dict(args or {})
        # Never act on a model-supplied identity.
        tool_input["user_id"] = user_id
        try:
            raw = await selected.ainvoke(tool_input)
        except ValidationError as exc:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
            )
            return ToolResult(
                tool_call_id=tool_call_id, name=name, success=False,
                message=f"Invalid arguments for {name}: {problems}",
            )
        except SQLAlchemyError as exc:
            _logger.error("TOOL ERROR: %s | store error=%s", name, exc)
            return ToolResult(
                tool_call_id=tool_call_id, name=name, success=False,
                message="The study planner could not be updated right now. Please try again shortly.",
            )
        except Exception as exc:
            _logger.error("TOOL ERROR: %s | error=%s", name, exc)
            return ToolResult(
                tool_call_id=tool_call_id, name=name, success=False,
                message=f"{name} failed: {exc}",
            )

        if isinstance(raw, dict) and "success" in raw:
            return ToolResult(
                tool_call_id=tool_call_id,
                name=name,
                success=bool(raw["success"]),
                message=str(raw.get("message", "")),
                payload=raw.get("payload"),
            )
        return ToolResult(tool_call_id=tool_call_id, name=name, success=True, message=str(raw))
