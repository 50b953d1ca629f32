"""Исходящие jetton-переводы: выплаты USDT и ежемесячные клеймы IEPR.

Режимы:
* disabled — всегда отказ, используется как аварийный стоп выплат;
* simulate — успех с синтетическим хешем ``sim_...`` без обращения к сети;
* live — подпись и отправка перевода горячим кошельком через tonutils.

Приватный ключ (мнемоника) нигде не логируется и не сохраняется.
"""

from __future__ import annotations

import asyncio
import math
import secrets
import time
from typing import Any, Awaitable, Callable

from loguru import logger

from config.settings import PaymentSettings, TonApiSettings, TransferSettings, get_settings
from smartnet.models import Asset
from smartnet.services.core.results import ErrorKind, ServiceResult
from .payment_verifier import to_raw

WalletFactory = Callable[[], Awaitable[Any]]

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


class JettonTransferService:
    """Отправляет jetton-переводы с кошелька платформы."""

    def __init__(
        self,
        settings: TransferSettings | None = None,
        payment: PaymentSettings | None = None,
        tonapi: TonApiSettings | None = None,
        wallet_factory: WalletFactory | None = None,
        production: bool | None = None,
    ) -> None:
        app_settings = get_settings()
        cfg = settings or app_settings.transfer
        payment_cfg = payment or app_settings.payment
        self._tonapi = tonapi or app_settings.tonapi
        self._mode = cfg.mode
        is_production = app_settings.is_production if production is None else production
        if is_production and self._mode == "simulate":
            logger.warning("Симуляция выплат запрошена в prod, выплаты отключены")
            self._mode = "disabled"
        self._mnemonic = cfg.signer_mnemonic
        self._wallet_version = cfg.wallet_version
        self._submit_timeout = cfg.submit_timeout
        self._simulated_prefix = cfg.simulated_prefix
        self._jettons: dict[str, tuple[str | None, int]] = {
            Asset.IEPR: (cfg.reward_jetton_address, cfg.reward_decimals),
            Asset.USDT: (cfg.payout_jetton_address or payment_cfg.jetton_address, cfg.payout_decimals),
        }
        self._wallet_factory = wallet_factory or self._open_wallet
        self._wallet: Any = None
        self._wallet_lock = asyncio.Lock()

    @property
    def mode(self) -> str:
        return self._mode

    async def send_reward_tokens(self, to_address: str | None, amount: float) -> ServiceResult:
        return await self.send(Asset.IEPR, to_address, amount)

    async def send_payout(self, to_address: str | None, amount: float) -> ServiceResult:
        return await self.send(Asset.USDT, to_address, amount)

    async def send(self, asset: str, to_address: str | None, amount: float) -> ServiceResult:
        """Переводит ``amount`` (человеческие единицы) на ``to_address``."""

        if self._mode == "disabled":
            return ServiceResult.failure("transfers_disabled", ErrorKind.TRANSFER)
        if asset not in self._jettons:
            return ServiceResult.failure("unsupported_asset", ErrorKind.INVALID, asset=asset)
        if not to_address or not str(to_address).strip():
            return ServiceResult.failure("missing_to_address", ErrorKind.INVALID)
        try:
            value = float(amount)
        except (TypeError, ValueError):
            return ServiceResult.failure("invalid_amount", ErrorKind.INVALID)
        if not math.isfinite(value) or value <= 0:
            return ServiceResult.failure("invalid_amount", ErrorKind.INVALID)
        master, decimals = self._jettons[asset]
        if not master:
            return ServiceResult.failure(f"missing_{asset.lower()}_jetton", ErrorKind.CONFIGURATION)

        raw_amount = to_raw(value, decimals)
        if raw_amount <= 0:
            return ServiceResult.failure("invalid_amount", ErrorKind.INVALID)

        if self._mode == "simulate":
            tx_hash = (
                f"{self._simulated_prefix}{_base36(int(time.time() * 1000))}_{secrets.token_hex(4)}"
            )
            logger.info(
                "Симуляция перевода {amount} {asset} на {to}: {tx}",
                amount=value,
                asset=asset,
                to=to_address,
                tx=tx_hash,
            )
            return ServiceResult.success(tx_hash=tx_hash, raw_amount=raw_amount, simulated=True)

        return await self._send_live(
            asset=asset,
            master=master,
            to_address=str(to_address).strip(),
            raw_amount=raw_amount,
            decimals=decimals,
        )

    async def _send_live(
        self,
        *,
        asset: str,
        master: str,
        to_address: str,
        raw_amount: int,
        decimals: int,
    ) -> ServiceResult:
        if self._mnemonic is None:
            return ServiceResult.failure("missing_signer_secret", ErrorKind.CONFIGURATION)
        try:
            wallet = await self._ensure_wallet()
        except LookupError:
            return ServiceResult.failure("missing_rpc_credentials", ErrorKind.CONFIGURATION)
        except Exception as exc:  # noqa: BLE001
            logger.error("Не удалось открыть кошелёк выплат: {error}", error=type(exc).__name__)
            return ServiceResult.failure("invalid_signer_secret", ErrorKind.CONFIGURATION)

        try:
            tx_hash = await asyncio.wait_for(
                wallet.transfer_jetton(
                    destination=to_address,
                    jetton_master_address=master,
                    jetton_amount=raw_amount / 10**decimals,
                    jetton_decimals=decimals,
                ),
                timeout=self._submit_timeout,
            )
        except asyncio.TimeoutError:
            logger.error("Перевод {asset} на {to} не отправлен за {sec}s", asset=asset, to=to_address, sec=self._submit_timeout)
            return ServiceResult.failure("transfer_timeout", ErrorKind.TRANSFER)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Ошибка live-перевода {asset} на {to}: {error}", asset=asset, to=to_address, error=exc)
            return ServiceResult.failure("transfer_error", ErrorKind.TRANSFER)

        tx_hash = str(tx_hash) if tx_hash else f"live_{_base36(int(time.time() * 1000))}"
        logger.info("Перевод {raw} {asset} на {to} отправлен: {tx}", raw=raw_amount, asset=asset, to=to_address, tx=tx_hash)
        return ServiceResult.success(tx_hash=tx_hash, raw_amount=raw_amount, simulated=False)

    async def _ensure_wallet(self) -> Any:
        async with self._wallet_lock:
            if self._wallet is None:
                self._wallet = await self._wallet_factory()
        return self._wallet

    async def _open_wallet(self) -> Any:
        """Собирает кошелёк tonutils из мнемоники (только live-режим)."""

        from tonutils.client import TonapiClient
        from tonutils.wallet import WalletV3R2, WalletV4R2, WalletV5R1

        if self._tonapi.api_key is None:
            raise LookupError("tonapi api_key")
        assert self._mnemonic is not None
        client = TonapiClient(
            api_key=self._tonapi.api_key.get_secret_value(),
            is_testnet=self._tonapi.network == "testnet",
        )
        wallet_cls = {"v3r2": WalletV3R2, "v4r2": WalletV4R2, "v5r1": WalletV5R1}[self._wallet_version]
        words = self._mnemonic.get_secret_value().replace(",", " ").split()
        wallet, _, _, _ = wallet_cls.from_mnemonic(client, words)
        return wallet


_service: JettonTransferService | None = None


def get_transfer_service() -> JettonTransferService:
    global _service
    if _service is None:
        _service = JettonTransferService()
    return _service


__all__ = ["JettonTransferService", "get_transfer_service"]
