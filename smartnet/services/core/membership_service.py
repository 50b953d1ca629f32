"""Сценарии бэкенда: покупка и продление пакета, клеймы, вывод наград, дашборд.

Сервис склеивает проверку платежа, реестр членства, реферальные начисления,
помесячный планировщик и исходящие переводы. Все публичные методы возвращают
ServiceResult; исключения наружу выходят только при сбое хранилища.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlmodel.ext.asyncio.session import AsyncSession

from config.settings import ReferralSettings, get_settings
from smartnet.models import (
    Account,
    Asset,
    ReferralLevel,
    TransactionKind,
    TransactionStatus,
)
from smartnet.models.base import as_utc, utcnow
from smartnet.repositories import (
    get_account,
    get_by_hash,
    list_referrals,
    mark_status,
    record_failed_attempt,
    record_outbound,
    reserve_inbound_hash,
    save_account,
)
from smartnet.services.ton.jetton_transfer import JettonTransferService
from smartnet.services.ton.payment_verifier import PaymentVerifier
from .locks import AccountLocks
from .membership import MembershipLedger
from .monthly_claim import COIN_DRIP, TOKEN_DRIP, MonthlyClaimScheduler
from .referral_service import ReferralService
from .results import ErrorKind, ServiceResult


@dataclass(slots=True)
class PurchaseRequest:
    tx_hash: str
    wallet_address: str | None = None
    telegram_id: int | None = None
    username: str | None = None
    referral_code: str | None = None


def _iso(value: datetime | None) -> str | None:
    value = as_utc(value)
    return value.isoformat() if value else None


class MembershipService:
    """Точка входа для HTTP и Telegram оболочек."""

    def __init__(
        self,
        *,
        verifier: PaymentVerifier,
        transfers: JettonTransferService,
        ledger: MembershipLedger | None = None,
        referrals: ReferralService | None = None,
        scheduler: MonthlyClaimScheduler | None = None,
        locks: AccountLocks | None = None,
        referral_settings: ReferralSettings | None = None,
    ) -> None:
        self._locks = locks or AccountLocks()
        self._verifier = verifier
        self._transfers = transfers
        self._ledger = ledger or MembershipLedger()
        self._referrals = referrals or ReferralService(locks=self._locks)
        self._scheduler = scheduler or MonthlyClaimScheduler()
        self._price = (referral_settings or get_settings().referral).package_price

    @property
    def ledger(self) -> MembershipLedger:
        return self._ledger

    @property
    def referrals(self) -> ReferralService:
        return self._referrals

    # --- покупка и продление -------------------------------------------------

    async def purchase(self, session: AsyncSession, request: PurchaseRequest) -> ServiceResult:
        """Проверяет оплату и активирует пакет. Комиссии платятся только за первую активацию."""

        tx_hash = (request.tx_hash or "").strip()
        if not tx_hash:
            return ServiceResult.failure("missing_tx_hash", ErrorKind.INVALID)
        if not request.wallet_address and request.telegram_id is None:
            return ServiceResult.failure("missing_identity", ErrorKind.INVALID)

        if await self._hash_taken(session, tx_hash):
            return ServiceResult.failure("tx_already_used", ErrorKind.CONFLICT)

        account = await self._ledger.find_account(
            session, wallet_address=request.wallet_address, telegram_id=request.telegram_id
        )
        if account is not None and account.has_active_package():
            return ServiceResult.failure(
                "package_active", ErrorKind.CONFLICT, package_expiry=_iso(account.package_expiry)
            )

        verification = await self._verifier.verify(tx_hash, request.wallet_address)
        record_fields = self._inbound_fields(verification, request.wallet_address)
        if not verification.ok:
            await record_failed_attempt(
                session,
                tx_hash=tx_hash,
                kind=TransactionKind.PACKAGE_PURCHASE,
                details={"reason": verification.reason, "referral_code": request.referral_code},
                **record_fields,
            )
            return verification

        record = await reserve_inbound_hash(
            session,
            tx_hash=tx_hash,
            kind=TransactionKind.PACKAGE_PURCHASE,
            details={"referral_code": request.referral_code, "raw_amount": verification.data.get("raw_amount")},
            **record_fields,
        )
        if record is None:
            return ServiceResult.failure("tx_already_used", ErrorKind.CONFLICT)

        try:
            account = await self._ledger.create_or_find_account(
                session,
                wallet_address=request.wallet_address,
                telegram_id=request.telegram_id,
                username=request.username,
            )
            async with self._locks.hold(account.id):
                account = await get_account(session, account.id, fresh=True)
                assert account is not None
                if account.has_active_package():
                    await mark_status(
                        session,
                        record,
                        status=TransactionStatus.REVIEW,
                        account_id=account.id,
                        details={"reason": "package_active", "verified": True},
                    )
                    logger.error(
                        "Оплата {tx} пришла на уже активный пакет {acc}, нужен ручной разбор",
                        tx=tx_hash,
                        acc=account.business_id,
                    )
                    return ServiceResult.failure(
                        "package_active", ErrorKind.CONFLICT, package_expiry=_iso(account.package_expiry)
                    )
                first_activation = not account.was_ever_activated
                if first_activation:
                    account = await self._ledger.activate_package(session, account, request.referral_code)
                else:
                    await self._ledger.link_referrer(session, account, request.referral_code)
                    renewal = await self._ledger.renew_package(session, account)
                    account = renewal.data["account"]
            await mark_status(
                session,
                record,
                status=TransactionStatus.SUCCESS,
                account_id=account.id,
                business_id=account.business_id,
                details={"renewal": not first_activation},
            )
        except Exception:
            await session.rollback()
            stuck = await get_by_hash(session, tx_hash)
            if stuck is not None:
                await mark_status(
                    session,
                    stuck,
                    status=TransactionStatus.REVIEW,
                    details={"reason": "activation_error", "verified": True},
                )
            raise

        account_id = account.id
        if first_activation and account.referrer_id is not None:
            await self._referrals.settle(session, account.referrer_id, account_id)
        account = await get_account(session, account_id, fresh=True)
        assert account is not None

        return ServiceResult.success(
            business_id=account.business_id,
            referral_link=account.referral_link,
            package_expiry=_iso(account.package_expiry),
            first_activation=first_activation,
        )

    async def renew(
        self,
        session: AsyncSession,
        *,
        tx_hash: str,
        account_id: int | None = None,
        wallet_address: str | None = None,
    ) -> ServiceResult:
        """Продление истёкшего пакета по новой оплате. Комиссии не начисляются."""

        tx_hash = (tx_hash or "").strip()
        if not tx_hash:
            return ServiceResult.failure("missing_tx_hash", ErrorKind.INVALID)
        account = await self._resolve(session, account_id, wallet_address)
        if account is None:
            return ServiceResult.failure("account_not_found", ErrorKind.NOT_FOUND)
        if account.has_active_package():
            return ServiceResult.failure(
                "package_still_active", ErrorKind.CONFLICT, package_expiry=_iso(account.package_expiry)
            )
        if await self._hash_taken(session, tx_hash):
            return ServiceResult.failure("tx_already_used", ErrorKind.CONFLICT)

        payer = wallet_address or account.wallet_address
        account_id = account.id
        verification = await self._verifier.verify(tx_hash, payer)
        record_fields = self._inbound_fields(verification, payer)
        if not verification.ok:
            await record_failed_attempt(
                session,
                tx_hash=tx_hash,
                kind=TransactionKind.PACKAGE_PURCHASE,
                details={"reason": verification.reason, "renewal": True},
                **record_fields,
            )
            return verification

        record = await reserve_inbound_hash(
            session,
            tx_hash=tx_hash,
            kind=TransactionKind.PACKAGE_PURCHASE,
            details={"renewal": True, "raw_amount": verification.data.get("raw_amount")},
            **record_fields,
        )
        if record is None:
            return ServiceResult.failure("tx_already_used", ErrorKind.CONFLICT)

        async with self._locks.hold(account_id):
            account = await get_account(session, account_id, fresh=True)
            assert account is not None
            result = await self._ledger.renew_package(session, account)
            if not result.ok:
                await mark_status(
                    session,
                    record,
                    status=TransactionStatus.REVIEW,
                    details={"reason": result.reason, "verified": True},
                )
                return result
            account = result.data["account"]
        await mark_status(
            session,
            record,
            status=TransactionStatus.SUCCESS,
            account_id=account.id,
            business_id=account.business_id,
        )
        return ServiceResult.success(
            business_id=account.business_id,
            package_expiry=_iso(account.package_expiry),
            tokens_entitled=account.tokens_entitled,
        )

    # --- клеймы --------------------------------------------------------------

    async def claim_tokens(
        self,
        session: AsyncSession,
        *,
        account_id: int | None = None,
        wallet_address: str | None = None,
        now: datetime | None = None,
    ) -> ServiceResult:
        """Ежемесячный клейм IEPR: сначала перевод, потом счётчики."""

        account = await self._resolve(session, account_id, wallet_address)
        if account is None:
            return ServiceResult.failure("account_not_found", ErrorKind.NOT_FOUND)
        now = now or utcnow()

        async with self._locks.hold(account.id):
            account = await get_account(session, account.id, fresh=True)
            assert account is not None
            if not account.package_active:
                return ServiceResult.failure("package_inactive", ErrorKind.INVALID)
            if not account.has_active_package(now):
                return ServiceResult.failure(
                    "package_expired", ErrorKind.INVALID, package_expiry=_iso(account.package_expiry)
                )
            plan = self._scheduler.plan(account, TOKEN_DRIP, now)
            if not plan.ok:
                return plan
            amount = plan.data["amount"]

            transfer = await self._transfers.send_reward_tokens(account.wallet_address, amount)
            if not transfer.ok:
                logger.warning(
                    "Клейм {amount} IEPR для {acc} не отправлен: {reason}",
                    amount=amount,
                    acc=account.business_id or account.id,
                    reason=transfer.reason,
                )
                return transfer

            self._scheduler.apply(account, amount, TOKEN_DRIP, now)
            account = await save_account(session, account)
            remaining = max(0, account.tokens_entitled - account.tokens_claimed)

        tx_hash = transfer.data["tx_hash"]
        await self._record_payout(
            session,
            account,
            tx_hash=tx_hash,
            kind=TransactionKind.TOKEN_CLAIM,
            asset=Asset.IEPR,
            amount=amount,
            details={"simulated": transfer.data.get("simulated", False)},
        )
        return ServiceResult.success(
            amount_claimed=amount,
            tx_hash=tx_hash,
            amount_remaining=remaining,
        )

    async def claim_coins(
        self,
        session: AsyncSession,
        *,
        account_id: int | None = None,
        wallet_address: str | None = None,
        now: datetime | None = None,
    ) -> ServiceResult:
        """Старый механизм монет: та же каденция, начисление во внутренний баланс."""

        account = await self._resolve(session, account_id, wallet_address)
        if account is None:
            return ServiceResult.failure("account_not_found", ErrorKind.NOT_FOUND)
        async with self._locks.hold(account.id):
            account = await get_account(session, account.id, fresh=True)
            assert account is not None
            result = self._scheduler.claim(account, COIN_DRIP, now or utcnow())
            if not result.ok:
                return result
            account = await save_account(session, account)
        return ServiceResult.success(
            claimed=result.data["claimed"],
            coins=account.coins,
            remaining=result.data["remaining"],
            last_claim=_iso(account.last_coin_claim),
        )

    async def claim_status(
        self,
        session: AsyncSession,
        *,
        account_id: int | None = None,
        wallet_address: str | None = None,
        now: datetime | None = None,
    ) -> ServiceResult:
        account = await self._resolve(session, account_id, wallet_address)
        if account is None:
            return ServiceResult.failure("account_not_found", ErrorKind.NOT_FOUND)
        now = now or utcnow()
        return ServiceResult.success(
            tokens=self._scheduler.status(account, TOKEN_DRIP, now).as_dict(),
            coins=self._scheduler.status(account, COIN_DRIP, now).as_dict(),
            package_active=account.has_active_package(now),
        )

    # --- вывод наград --------------------------------------------------------

    async def withdraw(
        self,
        session: AsyncSession,
        *,
        amount: Any,
        account_id: int | None = None,
        wallet_address: str | None = None,
        destination: str | None = None,
    ) -> ServiceResult:
        """Вывод USDT с реферального баланса; баланс уменьшается только после перевода."""

        try:
            value = float(amount)
        except (TypeError, ValueError):
            return ServiceResult.failure("invalid_amount", ErrorKind.INVALID)
        if not math.isfinite(value) or value <= 0:
            return ServiceResult.failure("invalid_amount", ErrorKind.INVALID)

        account = await self._resolve(session, account_id, wallet_address)
        if account is None:
            return ServiceResult.failure("account_not_found", ErrorKind.NOT_FOUND)

        async with self._locks.hold(account.id):
            account = await get_account(session, account.id, fresh=True)
            assert account is not None
            balance = float(account.rewards_balance_usdt or 0.0)
            if value > balance:
                return ServiceResult.failure(
                    "insufficient_balance", ErrorKind.INSUFFICIENT, balance=balance, requested=value
                )
            to_address = (destination or "").strip() or account.wallet_address
            if not to_address:
                return ServiceResult.failure("missing_destination", ErrorKind.INVALID)

            transfer = await self._transfers.send_payout(to_address, value)
            if not transfer.ok:
                logger.warning(
                    "Вывод {amount} USDT для {acc} не выполнен: {reason}",
                    amount=value,
                    acc=account.business_id or account.id,
                    reason=transfer.reason,
                )
                return transfer

            account.rewards_balance_usdt = max(0.0, round(balance - value, 6))
            account = await save_account(session, account)
            new_balance = account.rewards_balance_usdt

        tx_hash = transfer.data["tx_hash"]
        await self._record_payout(
            session,
            account,
            tx_hash=tx_hash,
            kind=TransactionKind.REWARD_WITHDRAWAL,
            asset=Asset.USDT,
            amount=value,
            to_address=to_address,
            details={"simulated": transfer.data.get("simulated", False)},
        )
        return ServiceResult.success(
            amount_withdrawn=value,
            tx_hash=tx_hash,
            balance=new_balance,
        )

    # --- рефералы и профиль --------------------------------------------------

    async def process_referral(
        self,
        session: AsyncSession,
        *,
        telegram_id: int,
        referral_code: str | None = None,
        username: str | None = None,
    ) -> ServiceResult:
        """Регистрирует пользователя бота и привязывает реферера по коду из ссылки."""

        account, created = await self._ledger.ensure_account_for_telegram(session, telegram_id, username)
        referrer = await self._ledger.link_referrer(session, account, referral_code)
        return ServiceResult.success(
            account_id=account.id,
            referral_code=account.referral_code,
            created=created,
            referrer_linked=referrer is not None,
        )

    async def dashboard(
        self,
        session: AsyncSession,
        *,
        account_id: int | None = None,
        wallet_address: str | None = None,
    ) -> ServiceResult:
        """Профиль, пакет, дрип токенов и рефералы. По кошельку аккаунт создаётся лениво."""

        account = await self._resolve(session, account_id, wallet_address)
        if account is None and wallet_address:
            account = await self._ledger.ensure_account_for_wallet(session, wallet_address)
        if account is None:
            return ServiceResult.failure("account_not_found", ErrorKind.NOT_FOUND)

        now = utcnow()
        stats = await self._referrals.get_stats(session, account)
        tokens = self._scheduler.status(account, TOKEN_DRIP, now)
        return ServiceResult.success(
            profile={
                "account_id": account.id,
                "business_id": account.business_id,
                "wallet_address": account.wallet_address,
                "telegram_id": account.telegram_id,
                "username": account.username,
                "referral_code": account.referral_code,
                "referral_link": account.referral_link or self._ledger.build_referral_link(account),
            },
            package={
                "active": account.has_active_package(now),
                "expiry": _iso(account.package_expiry),
                "price_usdt": self._price,
            },
            tokens={
                "entitled": account.tokens_entitled,
                "claimed": account.tokens_claimed,
                "monthly_claimable": tokens.base,
                "next_claim_at": tokens.as_dict()["next_claim_at"],
            },
            referrals=stats.as_dict(),
        )

    async def stats(self, session: AsyncSession, account_id: int) -> ServiceResult:
        account = await get_account(session, account_id)
        if account is None:
            return ServiceResult.failure("account_not_found", ErrorKind.NOT_FOUND)
        stats = await self._referrals.get_stats(session, account)
        return ServiceResult.success(
            **stats.as_dict(),
            claim=self._scheduler.status(account, TOKEN_DRIP).as_dict(),
        )

    async def list_referrals(self, session: AsyncSession, account_id: int, level: int) -> ServiceResult:
        if level not in (ReferralLevel.DIRECT, ReferralLevel.INDIRECT):
            return ServiceResult.failure("invalid_level", ErrorKind.INVALID, level=level)
        account = await get_account(session, account_id)
        if account is None:
            return ServiceResult.failure("account_not_found", ErrorKind.NOT_FOUND)
        members = await list_referrals(session, account_id, level)
        return ServiceResult.success(
            level=level,
            referrals=[
                {
                    "account_id": member.id,
                    "business_id": member.business_id,
                    "username": member.username,
                    "package_active": member.has_active_package(),
                }
                for member in members
            ],
        )

    async def referral_link(self, session: AsyncSession, account_id: int) -> ServiceResult:
        account = await get_account(session, account_id)
        if account is None:
            return ServiceResult.failure("account_not_found", ErrorKind.NOT_FOUND)
        return ServiceResult.success(
            referral_code=account.referral_code,
            referral_link=account.referral_link or self._ledger.build_referral_link(account),
        )

    async def retry_pending_settlements(self, session: AsyncSession) -> int:
        return await self._referrals.retry_pending(session)

    # --- внутреннее ----------------------------------------------------------

    async def _resolve(
        self,
        session: AsyncSession,
        account_id: int | None,
        wallet_address: str | None,
    ) -> Account | None:
        if account_id is not None:
            return await get_account(session, account_id)
        if wallet_address:
            return await self._ledger.find_account(session, wallet_address=wallet_address)
        return None

    @staticmethod
    async def _hash_taken(session: AsyncSession, tx_hash: str) -> bool:
        # свободен только хеш, не прошедший проверку; review держит подтверждённую оплату
        existing = await get_by_hash(session, tx_hash)
        return existing is not None and existing.status != TransactionStatus.FAILED

    def _inbound_fields(self, verification: ServiceResult, payer: str | None) -> dict[str, Any]:
        source = verification.data if verification.ok else verification.details
        return {
            "asset": Asset.USDT,
            "amount": float(verification.data.get("amount") or self._price),
            "from_address": source.get("from_address") or payer,
            "to_address": verification.data.get("to_address") or self._verifier.treasury,
        }

    async def _record_payout(
        self,
        session: AsyncSession,
        account: Account,
        *,
        tx_hash: str,
        kind: str,
        asset: str,
        amount: float,
        to_address: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        try:
            await record_outbound(
                session,
                tx_hash=tx_hash,
                kind=kind,
                asset=asset,
                amount=amount,
                to_address=to_address or account.wallet_address,
                account_id=account.id,
                business_id=account.business_id,
                details=details,
            )
        except IntegrityError as exc:
            await session.rollback()
            logger.error(
                "Перевод {tx} выполнен, но запись в журнал не удалась: {error}",
                tx=tx_hash,
                error=exc,
            )


__all__ = ["MembershipService", "PurchaseRequest"]
