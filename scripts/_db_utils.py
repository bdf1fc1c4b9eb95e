from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from app.pixelforge.db import enable_sqlite_foreign_keys, engine_options, make_sessionmaker


def resolve_db_url(db_url: str | None = None) -> str:
    return (db_url or os.environ.get("DATABASE_URL") or "sqlite:///pixelforge.db").strip()


def create_script_engine(db_url: str):
    engine = create_engine(db_url, **engine_options(db_url))
    if engine.dialect.name == "sqlite":
        enable_sqlite_foreign_keys(engine)
    return engine


@contextmanager
def script_session(db_url: str) -> Generator[Session, None, None]:
    """Standalone session for CLI scripts (no Flask app). Commits on success."""
    engine = create_script_engine(db_url)
    s: Session = make_sessionmaker(engine)()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()
