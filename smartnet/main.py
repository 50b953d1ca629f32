"""Entry point for SmartNet bot."""

from __future__ import annotations

import asyncio

from loguru import logger

from .loader import bot, dp, on_shutdown, on_startup
from .logging_config import setup_logging


async def main() -> None:
    setup_logging()
    logger.info("Запуск aiogram polling...")
    await on_startup(dp)
    try:
        await dp.start_polling(bot)
    finally:
        await on_shutdown(dp)
    logger.info("Polling завершён")


if __name__ == "__main__":
    asyncio.run(main())
