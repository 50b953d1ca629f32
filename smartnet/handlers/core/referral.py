"""Реферальная программа: /link, /stats, /claims."""

from __future__ import annotations

from aiogram import Router
from aiogram.filters import Command
from aiogram.types import Message
from sqlmodel.ext.asyncio.session import AsyncSession

from smartnet.context import membership_service, referral_service, settings
from smartnet.handlers.texts import CLAIM_STATUS, LINK, NO_ACCOUNT, STATS
from smartnet.models import Account

router = Router(name="core-referral")


@router.message(Command("link"))
async def command_link(message: Message, session: AsyncSession, account: Account | None) -> None:
    if account is None:
        await message.answer(NO_ACCOUNT)
        return
    result = await membership_service.referral_link(session, account.id)
    bot_username = (message.bot.username if message.bot else None) or settings.telegram.bot_username
    await message.answer(
        LINK.format(
            link=result.data["referral_link"],
            bot_link=referral_service.build_link(bot_username, account),
        )
    )


@router.message(Command("stats"))
async def command_stats(message: Message, session: AsyncSession, account: Account | None) -> None:
    if account is None:
        await message.answer(NO_ACCOUNT)
        return
    stats = await referral_service.get_stats(session, account)
    await message.answer(
        STATS.format(
            l1=stats.level1_count,
            l2=stats.level2_count,
            balance=f"{stats.rewards_balance:,.2f}",
            earned=f"{stats.total_earnings:,.2f}",
            leader="да" if stats.leadership_status else "нет",
        )
    )


@router.message(Command("claims"))
async def command_claims(message: Message, session: AsyncSession, account: Account | None) -> None:
    if account is None:
        await message.answer(NO_ACCOUNT)
        return
    result = await membership_service.claim_status(session, account_id=account.id)
    tokens = result.data["tokens"]
    await message.answer(
        CLAIM_STATUS.format(
            package="активен" if result.data["package_active"] else "не активен",
            claimed=tokens["claimed_so_far"],
            total=tokens["total_limit"],
            base=tokens["base"],
            next_at=(tokens["next_claim_at"] or "сейчас")[:10],
        )
    )


__all__ = ["router"]
