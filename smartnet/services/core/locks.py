"""Сериализация операций над одним аккаунтом внутри процесса."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator


class AccountLocks:
    """Реестр asyncio.Lock по id аккаунта.

    Держим не больше одного замка за раз: активация, начисление L1, начисление L2
    берут свои замки последовательно, поэтому порядок захвата не нужен.
    """

    def __init__(self) -> None:
        self._locks: dict[int, asyncio.Lock] = {}
        self._holders: dict[int, int] = {}

    @asynccontextmanager
    async def hold(self, account_id: int) -> AsyncIterator[None]:
        lock = self._locks.setdefault(account_id, asyncio.Lock())
        self._holders[account_id] = self._holders.get(account_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[account_id] -= 1
            if not self._holders[account_id]:
                self._holders.pop(account_id, None)
                self._locks.pop(account_id, None)

    def __len__(self) -> int:
        return len(self._locks)


__all__ = ["AccountLocks"]
