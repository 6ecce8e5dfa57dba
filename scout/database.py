"""
Database engine + session factory.

Always initializes — defaults to SQLite for local dev, Postgres in production.
get_session() always returns a real session.
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from scout.config import DATABASE_URL


class Base(DeclarativeBase):
    pass


def make_engine(database_url: str):
    """Build an engine with the right kwargs for SQLite vs Postgres."""
    # Hosted Postgres often hands out postgres:// but SQLAlchemy 2.x wants postgresql://
    url = database_url.replace('postgres://', 'postgresql://', 1)
    if url.startswith('sqlite'):
        return create_engine(url, connect_args={'check_same_thread': False})
    return create_engine(url, pool_pre_ping=True, pool_size=5, max_overflow=10)


engine = make_engine(DATABASE_URL)

SessionLocal = sessionmaker(bind=engine)


def get_session():
    """Return a new DB session."""
    return SessionLocal()
