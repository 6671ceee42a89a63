"""Database engine and session management."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from drivesync.config import sqlite_url

if TYPE_CHECKING:
    from pathlib import Path


def create_engine(
    database_path: Path,
    *,
    echo: bool = False,
) -> tuple[
    AsyncEngine,
    async_sessionmaker[AsyncSession],
]:
    """Create async engine and session factory for a store file.

    Returns (engine, session_factory) tuple. The parent directory is created
    so that SQLite can create an empty store on first open.
    """
    database_path.parent.mkdir(parents=True, exist_ok=True)
    engine = create_async_engine(
        sqlite_url(database_path),
        echo=echo,
    )
    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    return engine, session_factory
