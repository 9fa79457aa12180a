"""
Engine/session helpers for scripts that run outside the Flask app
(release seeding, scheduled cleanup).
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker


def create_script_engine(db_url: str):
    engine = create_engine(db_url, future=True, pool_pre_ping=True, pool_recycle=1800)
    if db_url.startswith("sqlite"):
        # Same ON DELETE behaviour as the app engine.
        @event.listens_for(engine, "connect")
        def _sqlite_fk_pragma(dbapi_connection, connection_record):  # type: ignore[no-redef]
            cur = dbapi_connection.cursor()
            cur.execute("PRAGMA foreign_keys=ON")
            cur.close()

    return engine


@contextmanager
def script_session(db_url: str) -> Generator[Session, None, None]:
    """Yields a session that commits on success and always disposes its engine."""
    engine = create_script_engine(db_url)
    sm = sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False, expire_on_commit=False, future=True)
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()
