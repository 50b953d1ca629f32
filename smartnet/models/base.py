"""Базовые примеси для SQLModel моделей."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite теряет tzinfo при чтении, считаем такие значения UTC."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class TimeStampedModel(SQLModel, table=False):
    """Добавляет created_at / updated_at."""

    created_at: datetime = Field(default_factory=utcnow, nullable=False)
    updated_at: datetime = Field(default_factory=utcnow, nullable=False)

    def touch(self) -> None:
        self.updated_at = utcnow()


__all__ = ["TimeStampedModel", "as_utc", "utcnow"]
