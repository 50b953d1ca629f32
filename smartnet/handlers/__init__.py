"""Регистрация всех роутеров Aiogram."""

from __future__ import annotations

from aiogram import Dispatcher


def register_routers(dispatcher: Dispatcher) -> None:
    """Подключает все доступные роутеры к диспетчеру."""

    from .core import common, referral

    for router in (common.router, referral.router):
        dispatcher.include_router(router)


__all__ = ["register_routers"]
