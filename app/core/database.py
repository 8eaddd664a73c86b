"""
Database engine and session management.

Uses SQLModel on top of SQLAlchemy. The engine URL comes from settings
(MySQL by default, any SQLAlchemy URL through DATABASE_URL).
"""

from collections.abc import Generator

from sqlmodel import Session, SQLModel, create_engine

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

connect_args = {}
if settings.database_url.startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_engine(
    settings.database_url,
    echo=settings.DB_ECHO,
    pool_pre_ping=True,
    connect_args=connect_args,
)


def create_db_and_tables() -> None:
    """Create all tables registered on the SQLModel metadata."""
    # Import models so their tables are registered before create_all
    from app.models import leave  # noqa: F401

    SQLModel.metadata.create_all(engine)
    logger.info("Database tables ensured")


def get_session() -> Generator[Session, None, None]:
    """Yield a database session for the duration of a request."""
    with Session(engine) as session:
        yield session
