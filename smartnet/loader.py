"""Loader SmartNet: сборка бота, диспетчера и middleware."""

from __future__ import annotations

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.fsm.storage.memory import MemoryStorage
from loguru import logger

from .context import membership_service, session_maker, settings
from .handlers import register_routers
from .middlewares import DatabaseMiddleware, ErrorsMiddleware, ThrottlingMiddleware
from .middlewares.db import init_db
from .services.ton.transaction_reader import close_transaction_reader

bot = Bot(
    token=settings.telegram.token,
    default=DefaultBotProperties(parse_mode=ParseMode.HTML),
)
dp = Dispatcher(storage=MemoryStorage())

register_routers(dp)


async def on_startup(dispatcher: Dispatcher) -> None:
    """Таблицы, middleware и повтор отложенных начислений."""

    logger.info("SmartNet стартует в окружении {env}", env=settings.environment)
    await init_db()
    _setup_middlewares(dispatcher)
    async with session_maker() as session:
        await membership_service.retry_pending_settlements(session)
    logger.info("on_startup завершён, бот готов принимать апдейты")


async def on_shutdown(dispatcher: Dispatcher) -> None:
    await close_transaction_reader()
    logger.info("SmartNet корректно остановлен")


def _setup_middlewares(dispatcher: Dispatcher) -> None:
    # ошибки снаружи: перехватывают и сбои сессии, и поиск аккаунта
    dispatcher.message.middleware(ErrorsMiddleware())
    dispatcher.message.middleware(ThrottlingMiddleware(rate_limit=0.5))
    dispatcher.message.middleware(DatabaseMiddleware())

    logger.debug("Middleware стек активирован")


__all__ = ["bot", "dp", "on_shutdown", "on_startup"]
