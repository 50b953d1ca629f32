"""Помесячная выдача из ограниченной квоты (токены IEPR и старые монеты).

Клейм доступен, если предыдущего не было или он был в другом календарном
месяце (UTC). Размер: ``ceil(total / 12)`` либо фиксированная база, но не больше
остатка квоты.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from config.settings import MembershipSettings, get_settings
from smartnet.models import Account
from smartnet.models.base import as_utc, utcnow
from smartnet.utils.dates import first_day_of_next_month, whole_months_between
from .results import ErrorKind, ServiceResult


@dataclass(frozen=True, slots=True)
class DripCounters:
    """Имена полей аккаунта, между которыми работает дрип."""

    total: str
    claimed: str
    last_claim: str
    balance: str | None = None


TOKEN_DRIP = DripCounters(total="tokens_entitled", claimed="tokens_claimed", last_claim="last_monthly_claim")
COIN_DRIP = DripCounters(
    total="coin_limit_total",
    claimed="coin_limit_claimed",
    last_claim="last_coin_claim",
    balance="coins",
)


@dataclass(slots=True)
class ClaimStatus:
    can_claim: bool
    base: int
    remaining: int
    total_limit: int
    claimed_so_far: int
    last_claim: datetime | None
    next_claim_at: datetime | None

    def as_dict(self) -> dict[str, Any]:
        return {
            "can_claim": self.can_claim,
            "base": self.base,
            "remaining": self.remaining,
            "total_limit": self.total_limit,
            "claimed_so_far": self.claimed_so_far,
            "last_claim": self.last_claim.isoformat() if self.last_claim else None,
            "next_claim_at": self.next_claim_at.isoformat() if self.next_claim_at else None,
        }


class MonthlyClaimScheduler:
    """Каденция и размер ежемесячного клейма."""

    def __init__(self, settings: MembershipSettings | None = None) -> None:
        cfg = settings or get_settings().membership
        self._monthly_base = cfg.monthly_base

    def per_period_target(self, total: int) -> int:
        if self._monthly_base:
            return self._monthly_base
        return -(-max(total, 0) // 12)

    @staticmethod
    def is_due(last_claim: datetime | None, now: datetime) -> bool:
        last = as_utc(last_claim)
        if last is None:
            return True
        return whole_months_between(last, as_utc(now)) >= 1

    def status(
        self,
        account: Account,
        counters: DripCounters = TOKEN_DRIP,
        now: datetime | None = None,
    ) -> ClaimStatus:
        now = now or utcnow()
        total = int(getattr(account, counters.total) or 0)
        claimed = int(getattr(account, counters.claimed) or 0)
        last = as_utc(getattr(account, counters.last_claim))
        remaining = max(0, total - claimed)
        due = self.is_due(last, now)
        return ClaimStatus(
            can_claim=due,
            base=min(self.per_period_target(total), remaining) if due else 0,
            remaining=remaining,
            total_limit=total,
            claimed_so_far=claimed,
            last_claim=last,
            next_claim_at=None if due or last is None else first_day_of_next_month(last),
        )

    def plan(
        self,
        account: Account,
        counters: DripCounters = TOKEN_DRIP,
        now: datetime | None = None,
    ) -> ServiceResult:
        """Сколько можно выдать сейчас, без изменения аккаунта."""

        state = self.status(account, counters, now)
        if not state.can_claim:
            return ServiceResult.failure(
                "too_soon",
                ErrorKind.CADENCE,
                next_claim_date=state.next_claim_at.isoformat() if state.next_claim_at else None,
            )
        if state.remaining <= 0:
            return ServiceResult.failure(
                "nothing_remaining",
                ErrorKind.INSUFFICIENT,
                total_limit=state.total_limit,
                claimed_so_far=state.claimed_so_far,
            )
        return ServiceResult.success(amount=state.base, remaining=state.remaining)

    def apply(
        self,
        account: Account,
        amount: int,
        counters: DripCounters = TOKEN_DRIP,
        now: datetime | None = None,
    ) -> None:
        setattr(account, counters.claimed, int(getattr(account, counters.claimed) or 0) + amount)
        if counters.balance:
            setattr(account, counters.balance, int(getattr(account, counters.balance) or 0) + amount)
        setattr(account, counters.last_claim, now or utcnow())

    def claim(
        self,
        account: Account,
        counters: DripCounters = TOKEN_DRIP,
        now: datetime | None = None,
    ) -> ServiceResult:
        """План + применение к счётчикам аккаунта (без сохранения)."""

        now = now or utcnow()
        plan = self.plan(account, counters, now)
        if not plan.ok:
            return plan
        amount = plan.data["amount"]
        self.apply(account, amount, counters, now)
        data: dict[str, Any] = {
            "claimed": amount,
            "new_claimed_counter": getattr(account, counters.claimed),
            "remaining": max(0, int(getattr(account, counters.total) or 0) - getattr(account, counters.claimed)),
        }
        if counters.balance:
            data["new_balance"] = getattr(account, counters.balance)
        return ServiceResult.success(**data)


__all__ = ["COIN_DRIP", "TOKEN_DRIP", "ClaimStatus", "DripCounters", "MonthlyClaimScheduler"]
