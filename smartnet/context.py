"""Глобальные сервисы и зависимости SmartNet."""

from __future__ import annotations

from config.settings import get_settings
from .middlewares.db import session_maker
from .services.core.locks import AccountLocks
from .services.core.membership_service import MembershipService
from .services.core.referral_service import ReferralService
from .services.ton.jetton_transfer import get_transfer_service
from .services.ton.payment_verifier import PaymentVerifier
from .utils.cache import configure_cache

settings = get_settings()

configure_cache()

# Один реестр замков на процесс: его делят покупка, начисления и клеймы.
account_locks = AccountLocks()
payment_verifier = PaymentVerifier()
transfer_service = get_transfer_service()
referral_service = ReferralService(locks=account_locks)
membership_service = MembershipService(
    verifier=payment_verifier,
    transfers=transfer_service,
    referrals=referral_service,
    locks=account_locks,
)

__all__ = [
    "account_locks",
    "membership_service",
    "payment_verifier",
    "referral_service",
    "session_maker",
    "settings",
    "transfer_service",
]
