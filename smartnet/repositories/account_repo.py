"""Функции для работы с таблицей аккаунтов и реферальными множествами."""

from __future__ import annotations

from typing import Optional, Sequence

from sqlmodel import func, select
from sqlmodel.ext.asyncio.session import AsyncSession

from smartnet.models import Account, ReferralLink


async def save_account(session: AsyncSession, account: Account) -> Account:
    account.touch()
    session.add(account)
    await session.commit()
    await session.refresh(account)
    return account


async def get_account(
    session: AsyncSession,
    account_id: int,
    *,
    fresh: bool = False,
) -> Optional[Account]:
    """fresh=True перечитывает строку из БД поверх identity map."""

    return await session.get(Account, account_id, populate_existing=fresh)



async def get_account_by_wallet(session: AsyncSession, wallet: str) -> Optional[Account]:
    stmt = select(Account).where(Account.wallet_address == wallet)
    result = await session.exec(stmt)
    return result.one_or_none()


async def get_account_by_telegram(session: AsyncSession, telegram_id: int) -> Optional[Account]:
    stmt = select(Account).where(Account.telegram_id == telegram_id)
    result = await session.exec(stmt)
    return result.one_or_none()


async def get_account_by_ref_code(session: AsyncSession, code: str) -> Optional[Account]:
    stmt = select(Account).where(Account.referral_code == code)
    result = await session.exec(stmt)
    return result.one_or_none()


async def get_account_by_business_id(session: AsyncSession, business_id: str) -> Optional[Account]:
    stmt = select(Account).where(Account.business_id == business_id)
    result = await session.exec(stmt)
    return result.one_or_none()


async def get_referral_link(
    session: AsyncSession,
    *,
    referrer_id: int,
    invitee_id: int,
) -> Optional[ReferralLink]:
    stmt = select(ReferralLink).where(
        ReferralLink.referrer_id == referrer_id,
        ReferralLink.invitee_id == invitee_id,
    )
    result = await session.exec(stmt)
    return result.one_or_none()


async def count_referrals(session: AsyncSession, referrer_id: int, level: int) -> int:
    stmt = select(func.count(ReferralLink.id)).where(
        ReferralLink.referrer_id == referrer_id,
        ReferralLink.level == level,
    )
    return int((await session.exec(stmt)).one() or 0)


async def list_referrals(session: AsyncSession, referrer_id: int, level: int) -> Sequence[Account]:
    """Участники множества L1/L2 в порядке добавления."""

    stmt = (
        select(Account)
        .join(ReferralLink, ReferralLink.invitee_id == Account.id)
        .where(ReferralLink.referrer_id == referrer_id, ReferralLink.level == level)
        .order_by(ReferralLink.id)
    )
    result = await session.exec(stmt)
    return result.all()


__all__ = [
    "count_referrals",
    "get_account",
    "get_account_by_business_id",
    "get_account_by_ref_code",
    "get_account_by_telegram",
    "get_account_by_wallet",
    "get_referral_link",
    "list_referrals",
    "save_account",
]
