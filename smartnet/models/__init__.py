"""SQLModel сущности SmartNet."""

from .account import Account  # noqa: F401
from .referral import ReferralLevel, ReferralLink  # noqa: F401
from .settlement import PendingSettlement, SettlementStatus  # noqa: F401
from .transaction import (  # noqa: F401
    Asset,
    TransactionKind,
    TransactionRecord,
    TransactionStatus,
)

__all__ = [
    "Account",
    "Asset",
    "PendingSettlement",
    "ReferralLevel",
    "ReferralLink",
    "SettlementStatus",
    "TransactionKind",
    "TransactionRecord",
    "TransactionStatus",
]
