"""Перехват ошибок в командах бота."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict

from aiogram import BaseMiddleware
from aiogram.types import Message
from loguru import logger

from smartnet.handlers.texts import ERROR_GENERIC


class ErrorsMiddleware(BaseMiddleware):
    """Логирует упавшую команду и отвечает нейтральным текстом без деталей."""

    async def __call__(
        self,
        handler: Callable[[Message, Dict[str, Any]], Awaitable[Any]],
        event: Message,
        data: Dict[str, Any],
    ) -> Any:
        try:
            return await handler(event, data)
        except Exception as exc:  # noqa: BLE001
            logger.exception(
                "Команда {command!r} от {user} завершилась ошибкой: {error}",
                command=(event.text or "")[:64],
                user=event.from_user.id if event.from_user else None,
                error=exc,
            )
            await event.answer(ERROR_GENERIC)
            return None


__all__ = ["ErrorsMiddleware"]
