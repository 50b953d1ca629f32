"""SQLModel модель аккаунта участника программы."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlmodel import Field

from .base import TimeStampedModel, as_utc, utcnow


class Account(TimeStampedModel, table=True):
    """Вся финансовая и реферальная история одного человека.

    Аккаунт создаётся при первой подтверждённой покупке (или лениво при первом
    запросе дашборда по кошельку) и никогда не удаляется ядром.
    """

    __tablename__ = "accounts"

    id: Optional[int] = Field(default=None, primary_key=True)
    business_id: Optional[str] = Field(default=None, max_length=32, unique=True, index=True)
    telegram_id: Optional[int] = Field(default=None, unique=True, index=True)
    wallet_address: Optional[str] = Field(default=None, max_length=128, unique=True, index=True)
    username: Optional[str] = Field(default=None, max_length=64)

    referral_code: str = Field(max_length=32, unique=True, index=True)
    referrer_id: Optional[int] = Field(default=None, foreign_key="accounts.id", index=True)
    referral_link: Optional[str] = Field(default=None, max_length=256)

    package_active: bool = Field(default=False, index=True)
    package_expiry: Optional[datetime] = Field(default=None, index=True)
    tokens_entitled: int = Field(default=0)
    tokens_claimed: int = Field(default=0)
    last_monthly_claim: Optional[datetime] = Field(default=None)

    # Старый механизм монет: та же помесячная логика, свои счётчики.
    coins: int = Field(default=0)
    coin_limit_total: int = Field(default=300)
    coin_limit_claimed: int = Field(default=0)
    last_coin_claim: Optional[datetime] = Field(default=None)

    rewards_balance_usdt: float = Field(default=0.0)
    total_earnings_usdt: float = Field(default=0.0)
    leadership_status: bool = Field(default=False, index=True)
    l1_milestone_bonuses: int = Field(default=0)
    l2_milestone_bonuses: int = Field(default=0)

    def has_active_package(self, now: datetime | None = None) -> bool:
        """Пакет активен, только если флаг выставлен и срок ещё не вышел."""

        expiry = as_utc(self.package_expiry)
        if not self.package_active or expiry is None:
            return False
        return expiry > (now or utcnow())

    @property
    def was_ever_activated(self) -> bool:
        return self.package_expiry is not None

    def credit_reward(self, amount: float) -> None:
        self.rewards_balance_usdt = float(self.rewards_balance_usdt or 0.0) + amount
        self.total_earnings_usdt = float(self.total_earnings_usdt or 0.0) + amount


__all__ = ["Account"]
