"""
Database engine and session factory for the durable token store. SQLite file per user.

The file is shared by every local process of the user, so tables are created by
create_schema() from inside the ProcessLock, never at engine construction.
"""
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from token_engine.models import Base


def create_store_engine(url: str) -> Engine:
    """
    Build an engine for url. Connecting is lazy; nothing touches the database yet.
    In-memory SQLite needs StaticPool so every session sees the same DB (tests).
    """
    if url.startswith("sqlite:///:memory:"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if url.startswith("sqlite:///"):
        Path(url[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)
    connect_args = {"check_same_thread": False} if "sqlite" in url else {}
    return create_engine(url, connect_args=connect_args)


def create_schema(engine: Engine) -> None:
    Base.metadata.create_all(bind=engine)


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
