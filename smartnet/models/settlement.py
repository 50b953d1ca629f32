"""Отложенные начисления комиссий, которые не удалось провести сразу."""

from __future__ import annotations

from typing import Optional

from sqlmodel import Field

from .base import TimeStampedModel


class SettlementStatus(str):
    PENDING = "pending"
    SETTLED = "settled"


class PendingSettlement(TimeStampedModel, table=True):
    __tablename__ = "pending_settlements"

    id: Optional[int] = Field(default=None, primary_key=True)
    referrer_id: int = Field(index=True)
    invitee_id: int = Field(foreign_key="accounts.id", index=True)
    status: str = Field(default=SettlementStatus.PENDING, max_length=16, index=True)
    attempts: int = Field(default=0)
    last_error: Optional[str] = Field(default=None, max_length=512)


__all__ = ["PendingSettlement", "SettlementStatus"]
