from pathlib import Path
from typing import Generator, Optional

from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from bracket_engine import config

_engine: Optional[Engine] = None


def _build_engine(database_url: str) -> Engine:
    is_sqlite = database_url.startswith("sqlite")
    connect_args = {"check_same_thread": False} if is_sqlite else {}

    if is_sqlite and ":memory:" not in database_url:
        db_path = database_url.replace("sqlite:///", "", 1)
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    return create_engine(
        database_url,
        echo=config.SQL_ECHO,
        connect_args=connect_args,
    )


def get_engine() -> Engine:
    """Process-wide engine handle. Created lazily if init_db() was not called."""
    global _engine
    if _engine is None:
        _engine = _build_engine(config.DATABASE_URL)
    return _engine


def get_session() -> Generator[Session, None, None]:
    """Get database session"""
    with Session(get_engine()) as session:
        yield session


def init_db(database_url: Optional[str] = None) -> Engine:
    """Initialize database - create engine and all tables"""
    global _engine
    if database_url is not None:
        dispose_db()
        _engine = _build_engine(database_url)

    # Import all models to ensure they're registered with SQLModel metadata
    from bracket_engine.models.bracket import Bracket  # noqa: F401
    from bracket_engine.models.entrant import BracketEntrant  # noqa: F401
    from bracket_engine.models.generation_lock import GenerationLock  # noqa: F401
    from bracket_engine.models.match import Match  # noqa: F401

    engine = get_engine()
    SQLModel.metadata.create_all(engine)
    return engine


def dispose_db() -> None:
    """Release pooled connections and drop the process-wide engine."""
    global _engine
    if _engine is not None:
        _engine.dispose()
        _engine = None
