from __future__ import annotations

from collections.abc import Iterator

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from pos_backend.config import settings


def build_engine(url: str, *, echo: bool = False) -> Engine:
    if url.startswith('sqlite'):
        # SQLite serialises writers; wait on the lock instead of failing fast.
        return create_engine(url, echo=echo, connect_args={'check_same_thread': False, 'timeout': 30})
    return create_engine(url, echo=echo, pool_pre_ping=True)


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


engine = build_engine(settings.database_url_normalized, echo=settings.database_echo)
SessionLocal = build_session_factory(engine)


def get_db() -> Iterator[Session]:
    with SessionLocal() as db:
        yield db
