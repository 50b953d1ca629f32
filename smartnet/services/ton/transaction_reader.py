"""Чтение транзакций TON по хешу через индексер TonAPI.

TransactionReader выполняет две задачи:
1. HTTP-запрос транзакции по хешу (с ограниченным таймаутом и кешем найденных).
2. Извлечение нормализованных jetton-переводов из ответа индексера.

Любая сетевая ошибка или ошибка разбора превращается в «не найдено»: вызывающий код
обязан считать такой платёж непроверяемым, а не недействительным.
"""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass
from typing import Any
from urllib.parse import quote

import aiohttp
from aiocache.base import BaseCache
from loguru import logger

from config.settings import TonApiSettings, get_settings
from smartnet.utils.cache import cached_call, get_cache


class TonApiError(RuntimeError):
    """Базовое исключение слоя чтения TonAPI."""


@dataclass(slots=True)
class JettonTransfer:
    """Нормализованный jetton-перевод.

    amount хранится как есть: int для сырых единиц, float для десятичной записи.
    """

    sender: str | None
    recipient: str | None
    amount: int | float
    jetton_address: str | None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


class TransactionReader:
    """Лёгкий клиент TonAPI v2 поверх aiohttp."""

    def __init__(
        self,
        settings: TonApiSettings | None = None,
        cache: BaseCache | None = None,
        cache_ttl: int | None = None,
    ) -> None:
        app_settings = get_settings()
        cfg = settings or app_settings.tonapi
        self._base_url = str(cfg.base_url).rstrip("/")
        self._headers = (
            {"Authorization": f"Bearer {cfg.api_key.get_secret_value()}"} if cfg.api_key else {}
        )
        self._timeout = cfg.request_timeout
        self._session: aiohttp.ClientSession | None = None
        self._cache = cache
        self._cache_ttl = cache_ttl or app_settings.cache.ttl_seconds

    async def start(self) -> None:
        """Инициализирует HTTP session."""

        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout),
                headers=self._headers,
            )
            logger.info("TransactionReader готов: TonAPI {url}", url=self._base_url)

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def get_transaction(self, tx_hash: str) -> dict[str, Any] | None:
        """Транзакция по хешу или None (не найдена, таймаут, сеть, мусор в ответе)."""

        if not tx_hash:
            return None
        try:
            return await cached_call(
                f"tonapi:tx:{tx_hash}",
                self._cache_ttl,
                lambda: self._fetch_transaction(tx_hash),
                cache=self._cache or get_cache(),
            )
        except (aiohttp.ClientError, asyncio.TimeoutError, TonApiError, ValueError) as exc:
            logger.warning(
                "TonAPI: транзакция {tx} недоступна: {error}",
                tx=tx_hash,
                error=str(exc) or type(exc).__name__,
            )
            return None

    async def _fetch_transaction(self, tx_hash: str) -> dict[str, Any] | None:
        await self.start()
        assert self._session is not None
        url = f"{self._base_url}/v2/blockchain/transactions/{quote(tx_hash, safe='')}"
        async with self._session.get(url) as resp:
            if resp.status == 404:
                logger.debug("TonAPI: транзакция {tx} не найдена", tx=tx_hash)
                return None
            if resp.status >= 400:
                text = await resp.text()
                raise TonApiError(f"TonAPI ответил HTTP {resp.status}: {text[:200]}")
            data = await resp.json(content_type=None)
        if not isinstance(data, dict) or not data:
            return None
        return data

    def parse_jetton_transfers(self, tx: dict[str, Any] | None) -> list[JettonTransfer]:
        """Best-effort разбор jetton-переводов из разных форм ответа индексера."""

        transfers: list[JettonTransfer] = []
        if not isinstance(tx, dict):
            return transfers

        for action in _as_list(tx.get("actions")):
            if not isinstance(action, dict):
                continue
            nested = action.get("JettonTransfer")
            if action.get("type") not in {"JettonTransfer", "JettonTransferBounced"} and not nested:
                continue
            body = nested if isinstance(nested, dict) else action
            meta = body.get("jetton") or body.get("jetton_master") or {}
            transfer = _build_transfer(
                sender=body.get("sender") or body.get("sender_address") or body.get("from"),
                recipient=body.get("recipient") or body.get("recipient_address") or body.get("to"),
                amount=body.get("amount"),
                jetton=meta.get("address") if isinstance(meta, dict) else meta,
            )
            if transfer:
                transfers.append(transfer)

        for item in _as_list(tx.get("jetton_transfers")):
            if not isinstance(item, dict):
                continue
            jetton = item.get("jetton") or {}
            if isinstance(jetton, dict):
                master = jetton.get("master")
                jetton = (master.get("address") if isinstance(master, dict) else master) or jetton.get(
                    "address"
                )
            transfer = _build_transfer(
                sender=item.get("sender") or item.get("from"),
                recipient=item.get("recipient") or item.get("to"),
                amount=item.get("amount"),
                jetton=jetton,
            )
            if transfer:
                transfers.append(transfer)
        return transfers


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def _safe_address(value: Any) -> str | None:
    if isinstance(value, dict):
        value = value.get("address")
    if value is None or value == "":
        return None
    return str(value)


def _parse_amount(value: Any) -> int | float | None:
    """Сырые строки-целые → int, остальное → float; мусор → None."""

    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return value
    text = str(value).strip()
    if text.isdigit():
        return int(text)
    try:
        return float(text)
    except ValueError:
        return None


def _build_transfer(*, sender: Any, recipient: Any, amount: Any, jetton: Any) -> JettonTransfer | None:
    parsed = _parse_amount(amount)
    if parsed is None:
        return None
    return JettonTransfer(
        sender=_safe_address(sender),
        recipient=_safe_address(recipient),
        amount=parsed,
        jetton_address=_safe_address(jetton),
    )


_reader: TransactionReader | None = None


async def get_transaction_reader() -> TransactionReader:
    """Возвращает синглтон TransactionReader."""

    global _reader
    if _reader is None:
        _reader = TransactionReader()
        await _reader.start()
    return _reader


async def close_transaction_reader() -> None:
    """Закрывает HTTP session синглтона, если он успел открыться."""

    global _reader
    if _reader is not None:
        await _reader.close()
        _reader = None


__all__ = [
    "JettonTransfer",
    "TonApiError",
    "TransactionReader",
    "close_transaction_reader",
    "get_transaction_reader",
]
