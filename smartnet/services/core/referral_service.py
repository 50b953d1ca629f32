"""Двухуровневая реферальная система: комиссии, лидерство и milestone-бонусы.

Комиссии начисляются один раз за первую активацию пакета приглашённого:
L1 платится прямому рефереру, L2 рефереру реферера. Третьего уровня нет.
Запись в реферальном множестве служит меткой «уровень уже оплачен», поэтому
повторный вызов для того же приглашённого ничего не начисляет второй раз.
"""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger
from sqlmodel.ext.asyncio.session import AsyncSession

from config.settings import ReferralSettings, get_settings
from smartnet.models import Account, ReferralLevel, ReferralLink
from smartnet.repositories import (
    add_pending_settlement,
    count_referrals,
    get_account,
    get_referral_link,
    list_pending_settlements,
    mark_settlement,
)
from .locks import AccountLocks


class ReferrerNotFound(LookupError):
    """Бенефициар комиссии отсутствует в хранилище."""


@dataclass(slots=True)
class Commission:
    """Начисление одному бенефициару за одного приглашённого."""

    beneficiary_id: int
    level: int
    amount: float
    leadership_bonus: float = 0.0
    milestone_bonus: float = 0.0

    @property
    def total(self) -> float:
        return self.amount + self.leadership_bonus + self.milestone_bonus


@dataclass(slots=True)
class ReferralStats:
    """Агрегированные данные по рефереру."""

    level1_count: int = 0
    level2_count: int = 0
    rewards_balance: float = 0.0
    total_earnings: float = 0.0
    leadership_status: bool = False
    l1_milestone_bonuses: int = 0
    l2_milestone_bonuses: int = 0

    def as_dict(self) -> dict:
        return {
            "level1_count": self.level1_count,
            "level2_count": self.level2_count,
            "rewards_balance": self.rewards_balance,
            "total_earnings": self.total_earnings,
            "leadership_status": self.leadership_status,
            "l1_milestone_bonuses": self.l1_milestone_bonuses,
            "l2_milestone_bonuses": self.l2_milestone_bonuses,
        }


class ReferralService:
    """Реферальные начисления, работающие через БД."""

    def __init__(
        self,
        settings: ReferralSettings | None = None,
        locks: AccountLocks | None = None,
    ) -> None:
        cfg = settings or get_settings().referral
        self._price = cfg.package_price
        self._percent = {ReferralLevel.DIRECT: cfg.l1_percent, ReferralLevel.INDIRECT: cfg.l2_percent}
        self._leadership_percent = cfg.leadership_bonus_percent
        self._leadership_threshold = cfg.leadership_threshold
        self._milestone = {
            ReferralLevel.DIRECT: (cfg.l1_milestone_step, cfg.l1_milestone_bonus_percent),
            ReferralLevel.INDIRECT: (cfg.l2_milestone_step, cfg.l2_milestone_bonus_percent),
        }
        self._locks = locks or AccountLocks()

    def level_reward(self, beneficiary: Account, level: int) -> tuple[float, float]:
        """(базовая комиссия, бонус лидера) по текущему статусу бенефициара."""

        base = self._price * self._percent[level] / 100
        bonus = self._price * self._leadership_percent / 100 if beneficiary.leadership_status else 0.0
        return base, bonus

    async def distribute(
        self,
        session: AsyncSession,
        referrer_id: int,
        invitee_id: int,
    ) -> list[Commission]:
        """Начисляет L1 и L2 за первую активацию приглашённого.

        Каждый уровень применяется под замком своего бенефициара и фиксируется
        отдельным коммитом. Уже оплаченный уровень пропускается.
        """

        commissions: list[Commission] = []
        direct = await self._settle_level(
            session,
            beneficiary_id=referrer_id,
            invitee_id=invitee_id,
            level=ReferralLevel.DIRECT,
        )
        if direct is not None:
            commissions.append(direct)

        referrer = await get_account(session, referrer_id)
        upline_id = referrer.referrer_id if referrer else None
        if upline_id is None or upline_id == invitee_id:
            return commissions

        indirect = await self._settle_level(
            session,
            beneficiary_id=upline_id,
            invitee_id=invitee_id,
            level=ReferralLevel.INDIRECT,
        )
        if indirect is not None:
            commissions.append(indirect)
        return commissions

    async def settle(self, session: AsyncSession, referrer_id: int, invitee_id: int) -> bool:
        """Неблокирующая обёртка для пути покупки: сбой уходит в очередь повторов."""

        try:
            await self.distribute(session, referrer_id, invitee_id)
        except Exception as exc:  # noqa: BLE001
            await session.rollback()
            logger.exception(
                "Начисление комиссий за {inv} (реферер {ref}) не выполнено: {error}",
                inv=invitee_id,
                ref=referrer_id,
                error=exc,
            )
            await add_pending_settlement(
                session,
                referrer_id=referrer_id,
                invitee_id=invitee_id,
                error=f"{type(exc).__name__}: {exc}",
            )
            return False
        return True

    async def retry_pending(self, session: AsyncSession, limit: int = 100) -> int:
        """Повторяет отложенные начисления. Возвращает число закрытых записей."""

        settled = 0
        for entry in await list_pending_settlements(session, limit=limit):
            # Откат предыдущей итерации делает объекты устаревшими.
            await session.refresh(entry)
            try:
                await self.distribute(session, entry.referrer_id, entry.invitee_id)
            except Exception as exc:  # noqa: BLE001
                await session.rollback()
                await session.refresh(entry)
                logger.warning(
                    "Повтор начисления #{id} снова не удался: {error}",
                    id=entry.id,
                    error=exc,
                )
                await mark_settlement(session, entry, settled=False, error=f"{type(exc).__name__}: {exc}")
                continue
            await mark_settlement(session, entry, settled=True)
            settled += 1
        if settled:
            logger.info("Закрыто отложенных начислений: {count}", count=settled)
        return settled

    async def get_stats(self, session: AsyncSession, account: Account) -> ReferralStats:
        return ReferralStats(
            level1_count=await count_referrals(session, account.id, ReferralLevel.DIRECT),
            level2_count=await count_referrals(session, account.id, ReferralLevel.INDIRECT),
            rewards_balance=float(account.rewards_balance_usdt or 0.0),
            total_earnings=float(account.total_earnings_usdt or 0.0),
            leadership_status=account.leadership_status,
            l1_milestone_bonuses=account.l1_milestone_bonuses,
            l2_milestone_bonuses=account.l2_milestone_bonuses,
        )

    def build_link(self, bot_username: str, account: Account) -> str:
        username = bot_username.lstrip("@")
        return f"https://t.me/{username}?start=ref_{account.referral_code}"

    async def _settle_level(
        self,
        session: AsyncSession,
        *,
        beneficiary_id: int,
        invitee_id: int,
        level: int,
    ) -> Commission | None:
        async with self._locks.hold(beneficiary_id):
            beneficiary = await get_account(session, beneficiary_id, fresh=True)
            if beneficiary is None:
                raise ReferrerNotFound(f"account {beneficiary_id} not found")

            existing = await get_referral_link(
                session, referrer_id=beneficiary_id, invitee_id=invitee_id
            )
            if existing is not None:
                logger.debug(
                    "Уровень {level} за {inv} уже начислен аккаунту {ben}",
                    level=level,
                    inv=invitee_id,
                    ben=beneficiary_id,
                )
                return None

            base, bonus = self.level_reward(beneficiary, level)
            session.add(
                ReferralLink(
                    referrer_id=beneficiary_id,
                    invitee_id=invitee_id,
                    level=level,
                    reward_usdt=base + bonus,
                )
            )
            beneficiary.credit_reward(base + bonus)
            await session.flush()

            direct_count = await count_referrals(session, beneficiary_id, ReferralLevel.DIRECT)
            self._update_leadership(beneficiary, direct_count)
            set_size = (
                direct_count
                if level == ReferralLevel.DIRECT
                else await count_referrals(session, beneficiary_id, level)
            )
            milestone = self._pay_milestones(beneficiary, level, set_size)

            beneficiary.touch()
            session.add(beneficiary)
            await session.commit()

        logger.info(
            "L{level}: аккаунт {ben} получил {amount} USDT за {inv}",
            level=level,
            ben=beneficiary_id,
            amount=base + bonus + milestone,
            inv=invitee_id,
        )
        return Commission(
            beneficiary_id=beneficiary_id,
            level=level,
            amount=base,
            leadership_bonus=bonus,
            milestone_bonus=milestone,
        )

    def _update_leadership(self, account: Account, direct_count: int) -> None:
        # Статус лидера не снимается.
        if not account.leadership_status and direct_count >= self._leadership_threshold:
            account.leadership_status = True
            logger.info(
                "Аккаунт {acc} получил статус лидера ({count} прямых)",
                acc=account.id,
                count=direct_count,
            )

    def _pay_milestones(self, account: Account, level: int, set_size: int) -> float:
        step, percent = self._milestone[level]
        if not step or not percent:
            return 0.0
        counter = "l1_milestone_bonuses" if level == ReferralLevel.DIRECT else "l2_milestone_bonuses"
        reached = set_size // step
        already = getattr(account, counter) or 0
        if reached <= already:
            return 0.0
        amount = (reached - already) * self._price * percent / 100
        account.credit_reward(amount)
        setattr(account, counter, reached)
        logger.info(
            "Milestone L{level}: аккаунт {acc} достиг {reached} x {step}",
            level=level,
            acc=account.id,
            reached=reached,
            step=step,
        )
        return amount


__all__ = ["Commission", "ReferralService", "ReferralStats", "ReferrerNotFound"]
