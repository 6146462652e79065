"""
Run archive database — SQLAlchemy engine + session factory.

Finished waterfall runs are written here once (``services.db.persist_run``)
and read back by the archive listing. SQLite for local dev, Postgres in
production; the schema is managed by Alembic.
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from waterfall.config import DATABASE_URL


class Base(DeclarativeBase):
    pass


def normalize_url(url: str) -> str:
    """Hosted Postgres URLs use postgres:// but SQLAlchemy 2.x requires postgresql://."""
    return url.replace('postgres://', 'postgresql://', 1)


def make_engine(url: str):
    url = normalize_url(url)
    if url.startswith('sqlite'):
        return create_engine(url, connect_args={'check_same_thread': False})
    return create_engine(url, pool_pre_ping=True, pool_size=3, max_overflow=5)


engine = make_engine(DATABASE_URL)

SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)


def get_session():
    """Return a new archive session."""
    return SessionLocal()
