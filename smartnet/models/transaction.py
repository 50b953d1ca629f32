"""Журнал входящих платежей и исходящих выплат."""

from __future__ import annotations

from typing import Optional

from sqlalchemy import JSON
from sqlmodel import Column, Field

from .base import TimeStampedModel


class TransactionKind(str):
    PACKAGE_PURCHASE = "package_purchase"
    TOKEN_CLAIM = "token_claim"
    REWARD_WITHDRAWAL = "reward_withdrawal"


class TransactionStatus(str):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    # оплата подтверждена сетью, но не применена; хеш повторно не принимается
    REVIEW = "review"


class Asset(str):
    USDT = "USDT"
    IEPR = "IEPR"


class TransactionRecord(TimeStampedModel, table=True):
    """Запись журнала; хеш входящего платежа уникален среди всех записей."""

    __tablename__ = "transactions"

    id: Optional[int] = Field(default=None, primary_key=True)
    tx_hash: str = Field(max_length=256, unique=True, index=True)
    kind: str = Field(max_length=32, index=True)
    asset: str = Field(max_length=8)
    amount: float = Field(default=0.0)
    status: str = Field(default=TransactionStatus.PENDING, max_length=16, index=True)
    from_address: Optional[str] = Field(default=None, max_length=128, index=True)
    to_address: Optional[str] = Field(default=None, max_length=128, index=True)
    account_id: Optional[int] = Field(default=None, foreign_key="accounts.id", index=True)
    business_id: Optional[str] = Field(default=None, max_length=32, index=True)
    network: str = Field(default="ton-mainnet", max_length=32)
    details: dict = Field(default_factory=dict, sa_column=Column(JSON))


__all__ = ["Asset", "TransactionKind", "TransactionRecord", "TransactionStatus"]
