"""Database engine builder.

- PostgreSQL in production, SQLite for local development and tests
- ENV: TRACKFIT_DB_POOL=queuepool|nullpool (default: queuepool)
- ENV: TRACKFIT_DB_POOL_SIZE / TRACKFIT_DB_MAX_OVERFLOW (queuepool only)
"""

import logging
import os
import re
from typing import Any, Optional

from sqlalchemy import Engine, NullPool, create_engine
from sqlalchemy.orm import Session, sessionmaker

from trackfit_api.config.env import get_database_url

logger = logging.getLogger(__name__)


def _mask_password(url: str) -> str:
    """Mask password in database URL for safe logging."""
    return re.sub(r"://([^:]+):([^@]+)@", r"://\1:***@", url)


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def build_engine(database_url: Optional[str] = None) -> Engine:
    """Build the SQLAlchemy engine.

    SQLite URLs get check_same_thread=False (sessions cross the threadpool
    boundary in FastAPI) and skip pool tuning.

    Args:
        database_url: Database URL. If None, resolved from DATABASE_URL.

    Raises:
        ValueError: If TRACKFIT_DB_POOL is not a known pool mode
    """
    url = database_url or get_database_url()

    if _is_sqlite(url):
        engine = create_engine(url, connect_args={"check_same_thread": False})
    else:
        connect_args: dict[str, Any] = {}
        app_name = os.getenv("TRACKFIT_DB_APPLICATION_NAME", "trackfit-api")
        if app_name:
            connect_args["application_name"] = app_name

        pool_mode = os.getenv("TRACKFIT_DB_POOL", "queuepool").lower()
        if pool_mode == "nullpool":
            engine = create_engine(
                url,
                poolclass=NullPool,
                pool_pre_ping=True,
                connect_args=connect_args,
            )
        elif pool_mode == "queuepool":
            engine = create_engine(
                url,
                pool_pre_ping=True,
                pool_size=int(os.getenv("TRACKFIT_DB_POOL_SIZE", "5")),
                max_overflow=int(os.getenv("TRACKFIT_DB_MAX_OVERFLOW", "10")),
                connect_args=connect_args,
            )
        else:
            raise ValueError(
                f"Invalid TRACKFIT_DB_POOL value: {pool_mode}. "
                "Must be 'nullpool' or 'queuepool'."
            )

    logger.debug(
        "Database engine created: pool=%s, url=%s",
        engine.pool.__class__.__name__,
        _mask_password(url),
    )
    return engine


def build_sessionmaker(engine: Engine) -> sessionmaker[Session]:
    """Build sessionmaker configured with autocommit=False, autoflush=False."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
