"""Антиспам для команд бота."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict

from aiocache.base import BaseCache
from aiogram import BaseMiddleware
from aiogram.types import Message
from loguru import logger

from smartnet.handlers.texts import THROTTLED
from smartnet.utils.cache import THROTTLE_ALIAS, get_cache


class ThrottlingMiddleware(BaseMiddleware):
    """Не больше одной команды от пользователя за ``rate_limit`` секунд.

    Метка живёт в aiocache с TTL, так что с redis-бэкендом лимит общий для всех
    процессов бота.
    """

    def __init__(self, rate_limit: float = 1.0, cache: BaseCache | None = None) -> None:
        self.rate_limit = rate_limit
        self._cache = cache

    async def __call__(
        self,
        handler: Callable[[Message, Dict[str, Any]], Awaitable[Any]],
        event: Message,
        data: Dict[str, Any],
    ) -> Any:
        if event.from_user is None:
            return await handler(event, data)

        cache = self._cache or get_cache(THROTTLE_ALIAS)
        try:
            await cache.add(str(event.from_user.id), 1, ttl=self.rate_limit)
        except ValueError:
            logger.debug("Пользователь {user} упёрся в лимит команд", user=event.from_user.id)
            await event.answer(THROTTLED)
            return None
        return await handler(event, data)


__all__ = ["ThrottlingMiddleware"]
