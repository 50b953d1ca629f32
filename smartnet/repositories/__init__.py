"""Репозитории для работы с БД."""

from .account_repo import (
    count_referrals,
    get_account,
    get_account_by_business_id,
    get_account_by_ref_code,
    get_account_by_telegram,
    get_account_by_wallet,
    get_referral_link,
    list_referrals,
    save_account,
)
from .settlement_repo import (
    add_pending_settlement,
    list_pending_settlements,
    mark_settlement,
)
from .transaction_repo import (
    get_by_hash,
    mark_status,
    record_failed_attempt,
    record_outbound,
    reserve_inbound_hash,
)

__all__ = [
    "add_pending_settlement",
    "count_referrals",
    "get_account",
    "get_account_by_business_id",
    "get_account_by_ref_code",
    "get_account_by_telegram",
    "get_account_by_wallet",
    "get_by_hash",
    "get_referral_link",
    "list_pending_settlements",
    "list_referrals",
    "mark_settlement",
    "mark_status",
    "record_failed_attempt",
    "record_outbound",
    "reserve_inbound_hash",
    "save_account",
]
