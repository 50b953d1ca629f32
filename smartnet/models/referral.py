"""Таблица реферальных связей первого и второго уровня."""

from __future__ import annotations

from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field

from .base import TimeStampedModel


class ReferralLevel:
    DIRECT = 1
    INDIRECT = 2


class ReferralLink(TimeStampedModel, table=True):
    """Член множества L1/L2 реферера и комиссия, начисленная за него."""

    __tablename__ = "referral_links"
    __table_args__ = (
        UniqueConstraint("referrer_id", "invitee_id", name="uq_referral_pair"),
        UniqueConstraint("invitee_id", "level", name="uq_referral_invitee_level"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    referrer_id: int = Field(foreign_key="accounts.id", index=True)
    invitee_id: int = Field(foreign_key="accounts.id", index=True)
    level: int = Field(default=ReferralLevel.DIRECT, index=True)
    reward_usdt: float = Field(default=0.0)


__all__ = ["ReferralLevel", "ReferralLink"]
