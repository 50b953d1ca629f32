"""Базовые хендлеры: /start с реферальным payload."""

from __future__ import annotations

from aiogram import Router
from aiogram.filters import CommandStart
from aiogram.filters.command import CommandObject
from aiogram.types import Message
from sqlmodel.ext.asyncio.session import AsyncSession

from smartnet.context import membership_service, settings
from smartnet.handlers.texts import REFERRER_LINKED, WELCOME

router = Router(name="core-common")

REF_PREFIX = "ref_"


def parse_start_payload(args: str | None) -> str | None:
    """``ref_<код>`` → код; всё остальное игнорируем."""

    if not args:
        return None
    payload = args.strip()
    if not payload.startswith(REF_PREFIX):
        return None
    return payload[len(REF_PREFIX):] or None


@router.message(CommandStart(ignore_case=True))
async def handle_start(
    message: Message,
    session: AsyncSession,
    command: CommandObject | None = None,
) -> None:
    """Регистрирует пользователя и привязывает пригласившего."""

    user = message.from_user
    result = await membership_service.process_referral(
        session,
        telegram_id=user.id,
        referral_code=parse_start_payload(command.args if command else None),
        username=user.username,
    )
    text = WELCOME.format(name=user.full_name, price=settings.referral.package_price)
    if result.data.get("referrer_linked"):
        text += "\n\n" + REFERRER_LINKED
    await message.answer(text)


__all__ = ["parse_start_payload", "router"]
