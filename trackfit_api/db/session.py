"""Database session management."""

from typing import Generator

from sqlalchemy.orm import Session

from trackfit_api.db.engine import build_engine, build_sessionmaker

engine = build_engine()

SessionLocal = build_sessionmaker(engine)


def get_db() -> Generator[Session, None, None]:
    """
    Get database session.

    Yields:
        Session: SQLAlchemy session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
