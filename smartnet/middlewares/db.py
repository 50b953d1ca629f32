"""Движок БД SmartNet и middleware, открывающее сессию на апдейт."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Awaitable, Callable, Dict

from aiogram import BaseMiddleware
from aiogram.types import Message
from loguru import logger
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool, StaticPool
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from config.settings import get_settings
from smartnet import models  # noqa: F401  регистрирует таблицы в метаданных
from smartnet.repositories import get_account_by_telegram


def build_engine(dsn: str, echo: bool = False) -> AsyncEngine:
    url = make_url(dsn)
    if url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:"):
        # in-memory база существует, пока жив её единственный коннект
        return create_async_engine(
            url, echo=echo, poolclass=StaticPool, connect_args={"check_same_thread": False}
        )
    return create_async_engine(url, echo=echo, poolclass=NullPool)


settings = get_settings()
engine = build_engine(settings.database.dsn, settings.database.echo)
session_maker: async_sessionmaker[AsyncSession] = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def init_db() -> None:
    """Создаёт таблицы, если их ещё нет; для файловой SQLite готовит каталог."""

    url = engine.url
    if url.get_backend_name() == "sqlite" and url.database not in (None, "", ":memory:"):
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    logger.info("Схема БД готова: {count} таблиц", count=len(SQLModel.metadata.tables))


class DatabaseMiddleware(BaseMiddleware):
    """Сессия на время апдейта плюс аккаунт отправителя (``account``, может быть None)."""

    async def __call__(
        self,
        handler: Callable[[Message, Dict[str, Any]], Awaitable[Any]],
        event: Message,
        data: Dict[str, Any],
    ) -> Any:
        async with session_maker() as session:
            data["session"] = session
            user = event.from_user
            data["account"] = await get_account_by_telegram(session, user.id) if user else None
            return await handler(event, data)


__all__ = ["DatabaseMiddleware", "build_engine", "engine", "init_db", "session_maker"]
