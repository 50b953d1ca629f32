"""Повтор отложенных реферальных начислений (для cron)."""

from __future__ import annotations

import asyncio

from loguru import logger

from smartnet.context import membership_service, session_maker
from smartnet.logging_config import setup_logging


async def run() -> int:
    async with session_maker() as session:
        return await membership_service.retry_pending_settlements(session)


def main() -> None:
    setup_logging()
    settled = asyncio.run(run())
    logger.info("Готово, закрыто начислений: {count}", count=settled)


if __name__ == "__main__":
    main()
