"""Реестр членства: аккаунты, активация и продление пакета.

Инварианты:
* срок пакета всегда ровно ``duration_months`` календарных месяцев от момента
  активации/продления;
* сброс квоты токенов всегда обнуляет счётчик выданного;
* реферер, однажды привязанный, больше не меняется.
"""

from __future__ import annotations

import secrets
from datetime import datetime

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlmodel.ext.asyncio.session import AsyncSession

from config.settings import MembershipSettings, ReferralSettings, get_settings
from smartnet.models import Account
from smartnet.models.base import as_utc, utcnow
from smartnet.repositories import (
    get_account_by_business_id,
    get_account_by_ref_code,
    get_account_by_telegram,
    get_account_by_wallet,
    save_account,
)
from smartnet.utils.dates import add_months
from .results import ErrorKind, ServiceResult


def generate_referral_code() -> str:
    return secrets.token_hex(8).upper()


def generate_business_id(prefix: str) -> str:
    return f"{prefix}{10000 + secrets.randbelow(90000)}"


class MembershipLedger:
    """Создание аккаунтов и переходы состояния пакета."""

    def __init__(
        self,
        membership: MembershipSettings | None = None,
        referral: ReferralSettings | None = None,
    ) -> None:
        settings = get_settings()
        self._cfg = membership or settings.membership
        self._app_url = str((referral or settings.referral).app_url).rstrip("/")

    def build_referral_link(self, account: Account) -> str:
        return f"{self._app_url}/?ref={account.referral_code}"

    async def find_account(
        self,
        session: AsyncSession,
        *,
        wallet_address: str | None = None,
        telegram_id: int | None = None,
    ) -> Account | None:
        """Ищем сначала по кошельку, затем по Telegram ID."""

        account = None
        if wallet_address:
            account = await get_account_by_wallet(session, wallet_address)
        if account is None and telegram_id is not None:
            account = await get_account_by_telegram(session, telegram_id)
        return account

    async def create_or_find_account(
        self,
        session: AsyncSession,
        *,
        wallet_address: str | None = None,
        telegram_id: int | None = None,
        username: str | None = None,
    ) -> Account:
        """Находит аккаунт покупателя или заводит новый с уникальными кодами."""

        account = await self.find_account(
            session, wallet_address=wallet_address, telegram_id=telegram_id
        )
        if account is not None:
            if wallet_address and not account.wallet_address:
                account.wallet_address = wallet_address
            if telegram_id is not None and account.telegram_id is None:
                account.telegram_id = telegram_id
            if username and account.username != username:
                account.username = username
            if not account.business_id:
                account.business_id = await self._unique_business_id(session)
            return await save_account(session, account)

        account = Account(
            business_id=await self._unique_business_id(session),
            telegram_id=telegram_id,
            wallet_address=wallet_address,
            username=username,
            referral_code=await self._unique_referral_code(session),
            coin_limit_total=self._cfg.legacy_coin_cap,
        )
        try:
            account = await save_account(session, account)
        except IntegrityError:
            # Параллельный запрос успел создать аккаунт с тем же кошельком/чатом.
            await session.rollback()
            existing = await self.find_account(
                session, wallet_address=wallet_address, telegram_id=telegram_id
            )
            if existing is None:
                raise
            return existing
        logger.info(
            "Создан аккаунт {business} (кошелёк {wallet}, чат {chat})",
            business=account.business_id,
            wallet=wallet_address,
            chat=telegram_id,
        )
        return account

    async def ensure_account_for_wallet(self, session: AsyncSession, wallet_address: str) -> Account:
        """Ленивое создание неактивного аккаунта при первом запросе дашборда."""

        account = await get_account_by_wallet(session, wallet_address)
        if account is not None:
            return account
        account = Account(
            wallet_address=wallet_address,
            referral_code=await self._unique_referral_code(session),
            coin_limit_total=self._cfg.legacy_coin_cap,
        )
        try:
            account = await save_account(session, account)
        except IntegrityError:
            await session.rollback()
            existing = await get_account_by_wallet(session, wallet_address)
            if existing is None:
                raise
            return existing
        logger.info("Создан неактивный аккаунт для кошелька {wallet}", wallet=wallet_address)
        return account

    async def ensure_account_for_telegram(
        self,
        session: AsyncSession,
        telegram_id: int,
        username: str | None = None,
    ) -> tuple[Account, bool]:
        """Аккаунт по Telegram ID и флаг «создан сейчас»."""

        account = await get_account_by_telegram(session, telegram_id)
        if account is not None:
            if username and account.username != username:
                account.username = username
                account = await save_account(session, account)
            return account, False
        account = Account(
            telegram_id=telegram_id,
            username=username,
            referral_code=await self._unique_referral_code(session),
            coin_limit_total=self._cfg.legacy_coin_cap,
        )
        try:
            account = await save_account(session, account)
        except IntegrityError:
            await session.rollback()
            existing = await get_account_by_telegram(session, telegram_id)
            if existing is None:
                raise
            return existing, False
        return account, True

    async def link_referrer(
        self,
        session: AsyncSession,
        account: Account,
        referral_code: str | None,
    ) -> Account | None:
        """Привязывает реферера по коду: только если ещё не привязан и это не сам аккаунт."""

        if not referral_code or account.referrer_id is not None:
            return None
        referrer = await get_account_by_ref_code(session, referral_code.strip())
        if referrer is None:
            logger.debug("Реферальный код {code} не найден", code=referral_code)
            return None
        if referrer.id == account.id or referrer.referrer_id == account.id:
            logger.debug("Аккаунт {acc} не может быть приглашён {ref}", acc=account.id, ref=referrer.id)
            return None
        account.referrer_id = referrer.id
        await save_account(session, account)
        logger.info("Новая рефералка: {ref} -> {inv}", ref=referrer.id, inv=account.id)
        return referrer

    async def activate_package(
        self,
        session: AsyncSession,
        account: Account,
        referral_code: str | None = None,
        now: datetime | None = None,
    ) -> Account:
        """Активирует пакет на срок членства и выдаёт свежую квоту токенов."""

        await self.link_referrer(session, account, referral_code)
        self._reset_term(account, now or utcnow())
        account.referral_link = self.build_referral_link(account)
        account = await save_account(session, account)
        logger.info(
            "Пакет аккаунта {acc} активирован до {expiry}",
            acc=account.business_id or account.id,
            expiry=account.package_expiry,
        )
        return account

    async def renew_package(
        self,
        session: AsyncSession,
        account: Account,
        now: datetime | None = None,
    ) -> ServiceResult:
        """Продлевает истёкший пакет, действующий пакет не трогает."""

        now = now or utcnow()
        if account.has_active_package(now):
            expiry = as_utc(account.package_expiry)
            return ServiceResult.failure(
                "package_still_active",
                ErrorKind.CONFLICT,
                package_expiry=expiry.isoformat() if expiry else None,
            )
        self._reset_term(account, now)
        account.last_monthly_claim = None
        if not account.referral_link:
            account.referral_link = self.build_referral_link(account)
        account = await save_account(session, account)
        logger.info(
            "Пакет аккаунта {acc} продлён до {expiry}",
            acc=account.business_id or account.id,
            expiry=account.package_expiry,
        )
        return ServiceResult.success(account=account)

    def _reset_term(self, account: Account, now: datetime) -> None:
        account.package_active = True
        account.package_expiry = add_months(now, self._cfg.duration_months)
        account.tokens_entitled = self._cfg.tokens_per_package
        account.tokens_claimed = 0

    async def _unique_referral_code(self, session: AsyncSession) -> str:
        while True:
            code = generate_referral_code()
            if await get_account_by_ref_code(session, code) is None:
                return code

    async def _unique_business_id(self, session: AsyncSession) -> str:
        while True:
            candidate = generate_business_id(self._cfg.business_id_prefix)
            if await get_account_by_business_id(session, candidate) is None:
                return candidate


__all__ = ["MembershipLedger", "generate_business_id", "generate_referral_code"]
