"""Утилита для первичной инициализации базы данных."""

from __future__ import annotations

import asyncio

from smartnet.logging_config import setup_logging
from smartnet.middlewares.db import init_db


def main() -> None:
    setup_logging()
    asyncio.run(init_db())


if __name__ == "__main__":
    main()
