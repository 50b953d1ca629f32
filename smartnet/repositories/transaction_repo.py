"""Журнал транзакций: резервирование входящих хешей и запись выплат."""

from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from smartnet.models import TransactionRecord, TransactionStatus


async def get_by_hash(session: AsyncSession, tx_hash: str) -> Optional[TransactionRecord]:
    stmt = select(TransactionRecord).where(TransactionRecord.tx_hash == tx_hash)
    result = await session.exec(stmt)
    return result.one_or_none()


async def record_failed_attempt(
    session: AsyncSession,
    *,
    tx_hash: str,
    kind: str,
    asset: str,
    amount: float,
    from_address: str | None,
    to_address: str | None,
    details: dict[str, Any],
) -> Optional[TransactionRecord]:
    """Фиксирует неудачную проверку; успешную или резервную запись не трогает."""

    record = await get_by_hash(session, tx_hash)
    if record is None:
        record = TransactionRecord(tx_hash=tx_hash, kind=kind, asset=asset, amount=amount)
    elif record.status != TransactionStatus.FAILED:
        return None
    record.status = TransactionStatus.FAILED
    record.from_address = from_address
    record.to_address = to_address
    record.details = {**(record.details or {}), **details}
    record.touch()
    session.add(record)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        return None
    await session.refresh(record)
    return record


async def reserve_inbound_hash(
    session: AsyncSession,
    *,
    tx_hash: str,
    kind: str,
    asset: str,
    amount: float,
    from_address: str | None,
    to_address: str | None,
    details: dict[str, Any],
) -> Optional[TransactionRecord]:
    """Занимает хеш под обработку. None, если хеш уже занят другим запросом.

    Новая запись вставляется со статусом pending (уникальный индекс по tx_hash),
    а ранее проваленная переводится failed → pending через compare-and-set.
    """

    stmt = (
        update(TransactionRecord)
        .where(
            TransactionRecord.tx_hash == tx_hash,
            TransactionRecord.status == TransactionStatus.FAILED,
        )
        .values(status=TransactionStatus.PENDING)
    )
    result = await session.execute(stmt)
    if result.rowcount:
        await session.commit()
        record = await get_by_hash(session, tx_hash)
        assert record is not None
        await session.refresh(record)
    else:
        record = TransactionRecord(
            tx_hash=tx_hash,
            kind=kind,
            asset=asset,
            amount=amount,
            status=TransactionStatus.PENDING,
        )
        session.add(record)
        try:
            await session.commit()
        except IntegrityError:
            await session.rollback()
            return None
        await session.refresh(record)

    record.from_address = from_address
    record.to_address = to_address
    record.details = {**(record.details or {}), **details}
    session.add(record)
    await session.commit()
    await session.refresh(record)
    return record


async def mark_status(
    session: AsyncSession,
    record: TransactionRecord,
    *,
    status: str,
    account_id: int | None = None,
    business_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> TransactionRecord:
    record.status = status
    if account_id is not None:
        record.account_id = account_id
    if business_id is not None:
        record.business_id = business_id
    if details:
        record.details = {**(record.details or {}), **details}
    record.touch()
    session.add(record)
    await session.commit()
    await session.refresh(record)
    return record


async def record_outbound(
    session: AsyncSession,
    *,
    tx_hash: str,
    kind: str,
    asset: str,
    amount: float,
    to_address: str | None,
    account_id: int | None,
    business_id: str | None,
    details: dict[str, Any] | None = None,
) -> TransactionRecord:
    record = TransactionRecord(
        tx_hash=tx_hash,
        kind=kind,
        asset=asset,
        amount=amount,
        status=TransactionStatus.SUCCESS,
        to_address=to_address,
        account_id=account_id,
        business_id=business_id,
        details=details or {},
    )
    session.add(record)
    await session.commit()
    await session.refresh(record)
    return record


__all__ = [
    "get_by_hash",
    "mark_status",
    "record_failed_attempt",
    "record_outbound",
    "reserve_inbound_hash",
]
