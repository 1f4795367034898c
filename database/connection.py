"""Database connection and session management."""
import logging
import os
from pathlib import Path
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

from .models import Base

logger = logging.getLogger(__name__)

# Database path - in the project root by default
DB_DIR = Path(__file__).parent.parent / "data"
DB_PATH = DB_DIR / "lumina.db"

# Override with environment variable if provided
if os.getenv("DATABASE_PATH"):
    DB_PATH = Path(os.getenv("DATABASE_PATH"))

# A full URL (e.g. Postgres) wins over the SQLite file
DATABASE_URL = os.getenv("DATABASE_URL") or f"sqlite:///{DB_PATH}"



def _make_engine(url: str):
    """SQLite file for local use; any other URL is used as given (e.g. Postgres)."""
    if url.startswith("sqlite"):
        DB_PATH.parent.mkdir(parents=True, exist_ok=True)
        # Sessions are opened from worker threads (asyncio.to_thread); writers
        # wait on the file lock instead of failing immediately.
        return create_engine(
            url,
            echo=False,
            connect_args={"check_same_thread": False, "timeout": 15},
        )
    return create_engine(url, echo=False, pool_pre_ping=True)


engine = _make_engine(DATABASE_URL)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db() -> None:
    """Initialize the database, creating all tables."""
    Base.metadata.create_all(bind=engine)
    logger.info("Database initialized at: %s", engine.url.render_as_string(hide_password=True))


@contextmanager
def get_db_session() -> Generator[Session, None, None]:
    """Get a database session with automatic cleanup.

    Usage:
        with get_db_session() as db:
            tasks = db.query(StudyTask).filter_by(user_id=user_id).all()
    """
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
