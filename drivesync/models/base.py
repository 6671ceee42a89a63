"""Declarative base and shared column types."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import Text
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator

from drivesync.services.datetime_service import format_store, parse_store


class Base(DeclarativeBase):
    pass


class StoreDateTime(TypeDecorator[datetime]):
    """Timezone-aware datetime persisted as ``YYYY-MM-DD HH:MM:SS`` UTC text.

    The fixed-width format keeps SQL string comparison equal to chronological
    order, so range filters work directly on the column.
    """

    impl = Text
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Any) -> str | None:
        if value is None:
            return None
        if isinstance(value, str):
            return format_store(parse_store(value))
        return format_store(value)

    def process_result_value(self, value: Any, dialect: Any) -> datetime | None:
        if value is None:
            return None
        return parse_store(value)
