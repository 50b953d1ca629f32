"""Проверка оплаты пакета jetton-переводом на кошелёк казначейства.

Верификатор ничего не меняет в аккаунтах: он только отвечает, является ли
транзакция с данным хешем корректной оплатой. Повторное зачисление одного и того же
хеша отсекает вызывающий слой по журналу транзакций.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from loguru import logger

from config.settings import PaymentSettings, get_settings
from smartnet.services.core.results import ErrorKind, ServiceResult
from smartnet.utils.addresses import same_address
from .transaction_reader import JettonTransfer, TransactionReader, get_transaction_reader

AMOUNT_TOLERANCE = 1


def _as_decimal(value: Any) -> Decimal | None:
    # int переводим напрямую: сырые суммы 18-знаковых jetton не влезают в float
    if isinstance(value, bool):
        return None
    try:
        number = Decimal(value) if isinstance(value, int) else Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        return None
    return number if number.is_finite() else None


def _to_units(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_HALF_UP))


def to_raw(amount: float, decimals: int) -> int:
    """Человеческая сумма → целые базовые единицы (округление к ближайшему)."""

    return _to_units(Decimal(str(amount)) * 10**decimals)


def amount_matches(observed: Any, required_raw: int, decimals: int) -> bool:
    """Сумма совпадает, если в сырой или десятичной записи отличается не более чем на 1.

    Индексеры отдают сумму то в базовых единицах, то в десятичной форме, поэтому
    проверяем оба толкования независимо.
    """

    value = _as_decimal(observed)
    if value is None:
        return False
    if abs(value - required_raw) <= AMOUNT_TOLERANCE:
        return True
    return abs(_to_units(value * 10**decimals) - required_raw) <= AMOUNT_TOLERANCE


class PaymentVerifier:
    """Сверяет транзакцию с казначейством, активом и суммой пакета."""

    def __init__(
        self,
        reader: TransactionReader | None = None,
        settings: PaymentSettings | None = None,
        production: bool | None = None,
    ) -> None:
        app_settings = get_settings()
        cfg = settings or app_settings.payment
        self._reader = reader
        self._treasury = cfg.treasury_address
        self._jetton = cfg.jetton_address
        self._required_amount = cfg.required_amount
        self._decimals = cfg.decimals
        self._canonicalize = cfg.canonicalize_addresses
        self._mock_prefix = cfg.mock_prefix
        is_production = app_settings.is_production if production is None else production
        if is_production and (cfg.simulate_verification or cfg.accept_mock_hashes):
            logger.warning("Симуляция проверки платежей запрошена в prod — игнорируем")
        self._simulate = cfg.simulate_verification and not is_production
        self._accept_mock = cfg.accept_mock_hashes and not is_production

    @property
    def treasury(self) -> str | None:
        return self._treasury

    @property
    def required_amount(self) -> float | None:
        return self._required_amount

    async def verify(self, tx_hash: str, expected_payer: str | None = None) -> ServiceResult:
        """Возвращает ok + детали найденного перевода либо код причины отказа."""

        if not tx_hash:
            return ServiceResult.failure("missing_tx_hash", ErrorKind.INVALID)

        if self._simulate or (self._accept_mock and tx_hash.startswith(self._mock_prefix)):
            logger.warning("Платёж {tx} принят без сверки с сетью (симуляция)", tx=tx_hash)
            return self._simulated(tx_hash, expected_payer)

        misconfigured = self._check_configuration()
        if misconfigured is not None:
            logger.error("Проверка платежа невозможна: {reason}", reason=misconfigured.reason)
            return misconfigured

        try:
            return await self._verify_on_chain(tx_hash, expected_payer)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Ошибка проверки платежа {tx}: {error}", tx=tx_hash, error=exc)
            return ServiceResult.failure(
                "verification_error", ErrorKind.TRANSIENT, error=type(exc).__name__
            )

    def _check_configuration(self) -> ServiceResult | None:
        if not self._treasury:
            return ServiceResult.failure("missing_treasury", ErrorKind.CONFIGURATION)
        if not self._jetton:
            return ServiceResult.failure("missing_payment_jetton", ErrorKind.CONFIGURATION)
        if not self._required_amount:
            return ServiceResult.failure("missing_required_amount", ErrorKind.CONFIGURATION)
        if self._decimals is None:
            return ServiceResult.failure("missing_decimals", ErrorKind.CONFIGURATION)
        return None

    async def _verify_on_chain(self, tx_hash: str, expected_payer: str | None) -> ServiceResult:
        assert self._decimals is not None and self._required_amount is not None
        reader = self._reader or await get_transaction_reader()
        logger.debug("Запрашиваем транзакцию {tx} в индексере", tx=tx_hash)
        tx = await reader.get_transaction(tx_hash)
        if tx is None:
            logger.info("Транзакция {tx} не найдена в сети", tx=tx_hash)
            return ServiceResult.failure("tx_not_found", ErrorKind.TRANSIENT)

        transfers = reader.parse_jetton_transfers(tx)
        logger.debug("В транзакции {tx} найдено jetton-переводов: {count}", tx=tx_hash, count=len(transfers))
        if not transfers:
            return ServiceResult.failure("no_jetton_transfers", ErrorKind.VERIFICATION)

        required_raw = to_raw(self._required_amount, self._decimals)
        match = next((t for t in transfers if self._matches(t, required_raw)), None)
        if match is None:
            logger.info("Транзакция {tx}: ни один перевод не подошёл под условия", tx=tx_hash)
            return ServiceResult.failure(
                "no_matching_transfer",
                ErrorKind.VERIFICATION,
                transfers=[t.as_dict() for t in transfers],
                expected={
                    "to": self._treasury,
                    "jetton": self._jetton,
                    "amount": self._required_amount,
                },
            )

        if expected_payer and not same_address(
            match.sender, expected_payer, canonicalize=self._canonicalize, ignore_case=False
        ):
            logger.info(
                "Транзакция {tx}: отправитель {actual} вместо {expected}",
                tx=tx_hash,
                actual=match.sender,
                expected=expected_payer,
            )
            return ServiceResult.failure(
                "payer_mismatch",
                ErrorKind.VERIFICATION,
                expected_from=expected_payer,
                from_address=match.sender,
            )

        raw_amount = self._raw_of(match.amount, required_raw)
        logger.info("Платёж {tx} подтверждён: {amount} от {sender}", tx=tx_hash, amount=raw_amount, sender=match.sender)
        return ServiceResult.success(
            tx_hash=tx_hash,
            from_address=match.sender,
            to_address=match.recipient,
            jetton=match.jetton_address,
            amount=raw_amount / 10**self._decimals,
            raw_amount=raw_amount,
        )

    def _matches(self, transfer: JettonTransfer, required_raw: int) -> bool:
        assert self._decimals is not None
        return (
            same_address(transfer.recipient, self._treasury, canonicalize=self._canonicalize)
            and same_address(transfer.jetton_address, self._jetton, canonicalize=self._canonicalize)
            and amount_matches(transfer.amount, required_raw, self._decimals)
        )

    def _raw_of(self, observed: int | float, required_raw: int) -> int:
        assert self._decimals is not None
        value = _as_decimal(observed)
        assert value is not None
        if abs(value - required_raw) <= AMOUNT_TOLERANCE:
            return _to_units(value)
        return _to_units(value * 10**self._decimals)

    def _simulated(self, tx_hash: str, expected_payer: str | None) -> ServiceResult:
        amount = self._required_amount or 0.0
        details: dict[str, Any] = {
            "tx_hash": tx_hash,
            "from_address": expected_payer or "mock_address",
            "to_address": self._treasury or "mock_treasury",
            "jetton": self._jetton or "mock_jetton",
            "amount": amount,
            "raw_amount": to_raw(amount, self._decimals or 0),
            "mock": True,
        }
        return ServiceResult.success(**details)


__all__ = ["AMOUNT_TOLERANCE", "PaymentVerifier", "amount_matches", "to_raw"]
