"""
SQLAlchemy engine, session, and base. DB path from config or default.
"""
import logging
from pathlib import Path
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base, Session
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

Base = declarative_base()

DEFAULT_DB_DIR = Path.home() / ".iep_tracker"


class Database:
    """Engine plus session factory. One instance per storage location."""

    def __init__(self, db_url: str):
        self.db_url = db_url
        if db_url in ("sqlite://", "sqlite:///:memory:"):
            # In-memory SQLite lives on a single connection
            self.engine = create_engine(
                db_url,
                echo=False,
                future=True,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            self.engine = create_engine(db_url, echo=False, future=True)
        self._session_factory = sessionmaker(
            bind=self.engine, autocommit=False, autoflush=False, expire_on_commit=False
        )

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """Context manager for a single DB session. Commits on success, rolls back on error."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_tables(self) -> None:
        # Import model modules so tables are registered with Base
        from iep_tracker.core import models as _core_models  # noqa: F401

        Base.metadata.create_all(self.engine)

    def dispose(self) -> None:
        self.engine.dispose()


def _default_db_url() -> str:
    DEFAULT_DB_DIR.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{DEFAULT_DB_DIR / 'iep_tracker.db'}"


def init_db(config_data: Optional[dict] = None, db_url: Optional[str] = None) -> Database:
    """
    Create the database and its tables.
    config_data: app config dict; used for storage.database if db_url not given.
    db_url: optional SQLAlchemy URL override.
    """
    if db_url is None and config_data:
        storage_config = config_data.get("storage") or {}
        path = storage_config.get("database")
        if path:
            path = Path(path).expanduser().resolve()
            path.parent.mkdir(parents=True, exist_ok=True)
            db_url = f"sqlite:///{path}"

    if not db_url:
        db_url = _default_db_url()

    database = Database(db_url)
    database.create_tables()
    logger.info(f"Database initialized: {db_url.split('?')[0]}")
    return database
