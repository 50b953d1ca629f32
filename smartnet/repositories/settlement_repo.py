"""Очередь отложенных начислений реферальных комиссий."""

from __future__ import annotations

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from smartnet.models import PendingSettlement, SettlementStatus


async def add_pending_settlement(
    session: AsyncSession,
    *,
    referrer_id: int,
    invitee_id: int,
    error: str,
) -> PendingSettlement:
    entry = PendingSettlement(
        referrer_id=referrer_id,
        invitee_id=invitee_id,
        attempts=1,
        last_error=error[:512],
    )
    session.add(entry)
    await session.commit()
    await session.refresh(entry)
    return entry


async def list_pending_settlements(session: AsyncSession, limit: int = 100) -> list[PendingSettlement]:
    stmt = (
        select(PendingSettlement)
        .where(PendingSettlement.status == SettlementStatus.PENDING)
        .order_by(PendingSettlement.id)
        .limit(limit)
    )
    result = await session.exec(stmt)
    return list(result.all())


async def mark_settlement(
    session: AsyncSession,
    entry: PendingSettlement,
    *,
    settled: bool,
    error: str | None = None,
) -> None:
    if settled:
        entry.status = SettlementStatus.SETTLED
        entry.last_error = None
    else:
        entry.attempts += 1
        entry.last_error = (error or "")[:512]
    entry.touch()
    session.add(entry)
    await session.commit()


__all__ = ["add_pending_settlement", "list_pending_settlements", "mark_settlement"]
