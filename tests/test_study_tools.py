from datetime import date

import pytest

from agents.chat_agent import tools as study_tools
from agents.chat_agent.tools import STUDY_TOOLS, ToolDispatcher

TODAY = date(2025, 3, 14)


@pytest.fixture()
def dispatcher(temp_database, monkeypatch):
    monkeypatch.setattr(study_tools, "_today", lambda: TODAY)
    return ToolDispatcher()


def _tasks(user_id):
    from database import StudyTask, get_db_session

    with get_db_session() as db:
        rows = db.query(StudyTask).filter(StudyTask.user_id == user_id).order_by(StudyTask.created_at).all()
        return [(t.title, t.scheduled_date, t.duration_minutes, bool(t.completed)) for t in rows]


def test_injected_user_id_is_hidden_from_the_model():
    """The model-facing schema never exposes user_id."""
    for tool in STUDY_TOOLS:
        schema = tool.tool_call_schema.model_json_schema()
        assert "user_id" not in schema.get("properties", {}), tool.name


def test_describe_lists_every_tool():
    description = ToolDispatcher().describe()
    for tool in STUDY_TOOLS:
        assert f"**{tool.name}**" in description


@pytest.mark.asyncio
async def test_add_study_task_defaults(dispatcher):
    """No date means today; no duration means 30 minutes."""
    result = await dispatcher.execute("student-1", "add_study_task", {"title": "Read Donoghue v Stevenson"}, "call-1")

    assert result.success is True
    assert result.tool_call_id == "call-1"
    assert result.payload["scheduled_date"] == TODAY.isoformat()
    assert result.payload["duration_minutes"] == 30
    assert _tasks("student-1") == [("Read Donoghue v Stevenson", TODAY, 30, False)]


@pytest.mark.asyncio
async def test_add_study_task_parses_relative_dates_and_times(dispatcher):
    result = await dispatcher.execute(
        "student-1",
        "add_study_task",
        {"title": "Revise torts", "scheduled_date": "tomorrow", "scheduled_time": "9:30", "duration_minutes": 45},
    )
    assert result.success is True
    assert result.payload["scheduled_date"] == "2025-03-15"
    assert result.payload["scheduled_time"] == "09:30"
    assert result.payload["duration_minutes"] == 45


@pytest.mark.asyncio
async def test_add_study_task_rejects_bad_date(dispatcher):
    result = await dispatcher.execute("student-1", "add_study_task", {"title": "X", "scheduled_date": "next blue moon"})
    assert result.success is False
    assert _tasks("student-1") == []


@pytest.mark.asyncio
async def test_model_supplied_user_id_is_ignored(dispatcher):
    """Tools always act for the authenticated user."""
    result = await dispatcher.execute(
        "student-1", "add_study_task", {"title": "Read the Constitution", "user_id": "someone-else"}
    )
    assert result.success is True
    assert _tasks("someone-else") == []
    assert len(_tasks("student-1")) == 1


@pytest.mark.asyncio
async def test_complete_task_matches_title_case_insensitively(dispatcher):
    await dispatcher.execute("student-1", "add_study_task", {"title": "Contract Law reading"})

    result = await dispatcher.execute("student-1", "complete_task", {"task_title": "contract law"})

    assert result.success is True
    assert _tasks("student-1")[0][3] is True


@pytest.mark.asyncio
async def test_complete_task_without_match_changes_nothing(dispatcher):
    await dispatcher.execute("student-1", "add_study_task", {"title": "Torts revision"})

    result = await dispatcher.execute("student-1", "complete_task", {"task_title": "criminal law essay"})

    assert result.success is False
    assert "couldn't find a task matching 'criminal law essay'" in result.message
    assert result.payload == {"open_tasks": ["Torts revision"]}
    assert _tasks("student-1")[0][3] is False


@pytest.mark.asyncio
async def test_tasks_are_scoped_to_their_owner(dispatcher):
    await dispatcher.execute("student-1", "add_study_task", {"title": "Equity essay"})

    result = await dispatcher.execute("student-2", "delete_study_task", {"task_title": "equity"})

    assert result.success is False
    assert len(_tasks("student-1")) == 1


@pytest.mark.asyncio
async def test_update_and_delete_task(dispatcher):
    await dispatcher.execute("student-1", "add_study_task", {"title": "Land law reading"})

    updated = await dispatcher.execute(
        "student-1", "update_study_task",
        {"task_title": "land law", "scheduled_date": "2025-03-20", "duration_minutes": 90},
    )
    assert updated.success is True
    assert _tasks("student-1") == [("Land law reading", date(2025, 3, 20), 90, False)]

    deleted = await dispatcher.execute("student-1", "delete_study_task", {"task_title": "Land law"})
    assert deleted.success is True
    assert _tasks("student-1") == []


@pytest.mark.asyncio
async def test_today_and_week_schedule(dispatcher):
    await dispatcher.execute("student-1", "add_study_task", {"title": "Today task"})
    await dispatcher.execute("student-1", "add_study_task", {"title": "Later task", "scheduled_date": "2025-03-18"})
    await dispatcher.execute("student-1", "add_study_task", {"title": "Far task", "scheduled_date": "2025-04-30"})

    today = await dispatcher.execute("student-1", "get_today_schedule", {})
    week = await dispatcher.execute("student-1", "get_week_schedule", {})

    assert [t["title"] for t in today.payload["tasks"]] == ["Today task"]
    assert sorted(week.payload["days"]) == ["2025-03-14", "2025-03-18"]


@pytest.mark.asyncio
async def test_create_flashcards_quiz_and_journal(dispatcher):
    deck = await dispatcher.execute(
        "student-1", "create_flashcard_deck",
        {
            "title": "Offer and acceptance",
            "subject": "Contract Law",
            "cards": [
                {"front": "What is an offer?", "back": "A definite promise to be bound."},
                {"front": "Postal rule?", "back": "Acceptance complete on posting."},
            ],
        },
    )
    quiz = await dispatcher.execute(
        "student-1", "create_quiz",
        {
            "title": "Torts basics",
            "subject": "Torts",
            "questions": [{"question": "Duty of care case?", "options": ["Donoghue", "Carlill"], "correct_answer": "Donoghue"}],
        },
    )
    journal = await dispatcher.execute("student-1", "create_journal_entry", {"content": "Felt ready today.", "mood": "motivated"})
    stats = await dispatcher.execute("student-1", "get_progress_stats", {})

    assert deck.success and deck.payload["card_count"] == 2
    assert quiz.success and quiz.payload["total_questions"] == 1
    assert journal.success
    assert stats.payload["flashcard_decks"] == 1
    assert stats.payload["quizzes"] == 1
    assert stats.payload["journal_entries"] == 1


@pytest.mark.asyncio
async def test_quiz_answer_must_be_an_option(dispatcher):
    result = await dispatcher.execute(
        "student-1", "create_quiz",
        {
            "title": "Bad quiz",
            "subject": "Torts",
            "questions": [{"question": "Q?", "options": ["A", "B"], "correct_answer": "C"}],
        },
    )
    assert result.success is False


@pytest.mark.asyncio
async def test_invalid_arguments_become_failed_results(dispatcher):
    missing = await dispatcher.execute("student-1", "add_study_task", {"duration_minutes": 20})
    wrong_type = await dispatcher.execute("student-1", "add_study_task", {"title": "T", "duration_minutes": "long"})
    not_a_dict = await dispatcher.execute("student-1", "add_study_task", ["title"])

    assert missing.success is False and "Invalid arguments" in missing.message
    assert wrong_type.success is False
    assert not_a_dict.success is False
    assert _tasks("student-1") == []


@pytest.mark.asyncio
async def test_unknown_tool(dispatcher):
    result = await dispatcher.execute("student-1", "launch_rocket", {})
    assert result.success is False
    assert "Unknown tool 'launch_rocket'" in result.message
