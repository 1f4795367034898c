"""Builds the student-state section of the system prompt.

The snapshot is fetched fresh for every request and never cached.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from database.connection import get_db_session
from database.models import (
    AcademyCourse,
    Enrollment,
    LiveClass,
    Profile,
    StudyTask,
    UserFile,
)

logger = logging.getLogger(__name__)

UPCOMING_SESSION_LIMIT = 3
FILE_LIMIT = 5


@dataclass
class UserContextSnapshot:
    """Read-only view of the student's current state for one request."""
    today: date
    profile: Optional[Dict[str, Any]] = None
    tasks: List[Dict[str, Any]] = field(default_factory=list)
    sessions: List[Dict[str, Any]] = field(default_factory=list)
    enrollments: List[Dict[str, Any]] = field(default_factory=list)
    files: List[Dict[str, Any]] = field(default_factory=list)


def fetch_profile(user_id: str) -> Optional[Dict[str, Any]]:
    with get_db_session() as db:
        profile = db.query(Profile).filter(Profile.user_id == user_id).first()
        if not profile:
            return None
        return {
            "full_name": profile.full_name,
            "university": profile.university,
            "year_of_study": profile.year_of_study,
            "streak_days": profile.streak_days or 0,
            "total_study_hours": profile.total_study_hours or 0.0,
            "tasks_completed": profile.tasks_completed or 0,
            "cases_read": profile.cases_read or 0,
        }


def fetch_today_tasks(user_id: str, today: date) -> List[Dict[str, Any]]:
    with get_db_session() as db:
        tasks = (
            db.query(StudyTask)
            .filter(StudyTask.user_id == user_id, StudyTask.scheduled_date == today)
            .order_by(StudyTask.scheduled_time.asc(), StudyTask.created_at.asc())
            .all()
        )
        return [
            {
                "title": t.title,
                "scheduled_time": t.scheduled_time,
                "duration_minutes": t.duration_minutes,
                "task_type": t.task_type,
                "completed": bool(t.completed),
            }
            for t in tasks
        ]


def fetch_upcoming_sessions(user_id: str, limit: int = UPCOMING_SESSION_LIMIT) -> List[Dict[str, Any]]:
    """Scheduled live classes of courses the student is actively enrolled in."""
    with get_db_session() as db:
        rows = (
            db.query(LiveClass, AcademyCourse.title)
            .join(AcademyCourse, LiveClass.course_id == AcademyCourse.id)
            .join(Enrollment, Enrollment.course_id == AcademyCourse.id)
            .filter(
                Enrollment.user_id == user_id,
                Enrollment.status == "active",
                LiveClass.status == "scheduled",
                LiveClass.scheduled_at >= datetime.utcnow(),
            )
            .order_by(LiveClass.scheduled_at.asc())
            .limit(limit)
            .all()
        )
        return [
            {
                "title": live_class.title,
                "course": course_title,
                "scheduled_at": live_class.scheduled_at.isoformat(timespec="minutes"),
            }
            for live_class, course_title in rows
        ]


def fetch_enrollments(user_id: str) -> List[Dict[str, Any]]:
    with get_db_session() as db:
        rows = (
            db.query(Enrollment, AcademyCourse)
            .join(AcademyCourse, Enrollment.course_id == AcademyCourse.id)
            .filter(Enrollment.user_id == user_id, Enrollment.status == "active")
            .order_by(Enrollment.enrolled_at.desc())
            .all()
        )
        return [{"title": course.title, "subject": course.subject} for _, course in rows]


def fetch_files(user_id: str, limit: int = FILE_LIMIT) -> List[Dict[str, Any]]:
    with get_db_session() as db:
        files = (
            db.query(UserFile)
            .filter(UserFile.user_id == user_id)
            .order_by(UserFile.created_at.desc())
            .limit(limit)
            .all()
        )
        return [{"file_name": f.file_name, "category": f.category} for f in files]


async def load_snapshot(user_id: str, today: Optional[date] = None) -> UserContextSnapshot:
    """Fetch all parts of the snapshot concurrently."""
    today = today or datetime.utcnow().date()
    profile, tasks, sessions, enrollments, files = await asyncio.gather(
        asyncio.to_thread(fetch_profile, user_id),
        asyncio.to_thread(fetch_today_tasks, user_id, today),
        asyncio.to_thread(fetch_upcoming_sessions, user_id),
        asyncio.to_thread(fetch_enrollments, user_id),
        asyncio.to_thread(fetch_files, user_id),
    )
    return UserContextSnapshot(
        today=today,
        profile=profile,
        tasks=tasks,
        sessions=sessions,
        enrollments=enrollments,
        files=files,
    )


def render_snapshot(snapshot: UserContextSnapshot) -> str:
    lines = ["## Student Context"]

    profile = snapshot.profile
    if profile:
        if profile.get("full_name"):
            lines.append(f"Name: {profile['full_name']}")
        details = []
        if profile.get("university"):
            details.append(f"University: {profile['university']}")
        if profile.get("year_of_study"):
            details.append(f"Year of study: {profile['year_of_study']}")
        if details:
            lines.append(" | ".join(details))
        lines.append(
            f"Study streak: {profile['streak_days']} days | "
            f"Total study hours: {profile['total_study_hours']:g} | "
            f"Tasks completed: {profile['tasks_completed']} | "
            f"Cases read: {profile['cases_read']}"
        )
    else:
        lines.append("No profile on record.")

    lines.append("")
    lines.append(f"### Today's Tasks ({snapshot.today.isoformat()})")
    if snapshot.tasks:
        for task in snapshot.tasks:
            mark = "x" if task["completed"] else " "
            when = f"{task['scheduled_time']} " if task.get("scheduled_time") else ""
            lines.append(
                f"- [{mark}] {when}{task['title']} ({task['duration_minutes']} min, {task['task_type']})"
            )
    else:
        lines.append("No tasks scheduled for today.")

    lines.append("")
    lines.append("### Upcoming Sessions")
    if snapshot.sessions:
        for session in snapshot.sessions:
            lines.append(f"- {session['title']} ({session['course']}) at {session['scheduled_at']}")
    else:
        lines.append("No upcoming sessions.")

    lines.append("")
    lines.append("### Active Enrollments")
    if snapshot.enrollments:
        for enrollment in snapshot.enrollments:
            subject = f" ({enrollment['subject']})" if enrollment.get("subject") else ""
            lines.append(f"- {enrollment['title']}{subject}")
    else:
        lines.append("Not enrolled in any courses.")

    if snapshot.files:
        lines.append("")
        lines.append("### Recent Files")
        for f in snapshot.files:
            category = f" [{f['category']}]" if f.get("category") else ""
            lines.append(f"- {f['file_name']}{category}")

    return "\n".join(lines)


async def build_context(user_id: str, today: Optional[date] = None) -> str:
    """Return the rendered student context, or "" if it cannot be fetched."""
    try:
        snapshot = await load_snapshot(user_id, today)
    except Exception as exc:
        logger.warning("User context fetch failed for user=%s: %s", user_id, exc)
        return ""
    return render_snapshot(snapshot)
