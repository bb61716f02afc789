from __future__ import annotations

from typing import Any, Dict

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import Settings, get_settings


def engine_options(settings: Settings) -> Dict[str, Any]:
    """
    Postgres is the production store (row locks, partial unique indexes).
    SQLite is accepted for local runs; an in-memory URL shares one connection.
    """
    url = settings.database_url
    options: Dict[str, Any] = {"echo": settings.db_echo, "future": True}

    if url.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            options["poolclass"] = StaticPool
    else:
        options["pool_pre_ping"] = True
        options["pool_size"] = settings.db_pool_size

    return options


settings = get_settings()

DATABASE_URL = settings.database_url  # fail fast if missing

engine = create_engine(DATABASE_URL, **engine_options(settings))

SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    future=True,
)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
