"""Pytest configuration and shared fixtures for all tests."""

import os
import secrets
from unittest.mock import AsyncMock

# Минимальные переменные окружения (формат токена проходит валидацию aiogram)
os.environ.setdefault("TELEGRAM__TOKEN", "123456789:ABCdefGHIjklMNOpqrsTUVwxyz123456789")
os.environ.setdefault("DATABASE__DSN", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("CACHE__BACKEND", "memory")
os.environ.setdefault("TRANSFER__MODE", "simulate")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from config.settings import (
    MembershipSettings,
    PaymentSettings,
    ReferralSettings,
    TonApiSettings,
    TransferSettings,
)
from smartnet import models  # noqa: F401
from smartnet.models import Account
from smartnet.repositories import save_account
from smartnet.services.core.locks import AccountLocks
from smartnet.services.core.membership import MembershipLedger
from smartnet.services.core.membership_service import MembershipService
from smartnet.services.core.monthly_claim import MonthlyClaimScheduler
from smartnet.services.core.referral_service import ReferralService
from smartnet.services.ton.jetton_transfer import JettonTransferService
from smartnet.services.ton.payment_verifier import PaymentVerifier
from smartnet.services.ton.transaction_reader import TransactionReader

from helpers import IEPR_MASTER, TREASURY, USDT_MASTER  # noqa: E402


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session(engine):
    maker = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    async with maker() as session:
        yield session


@pytest.fixture
def make_account(session):
    """Фабрика аккаунтов прямо в БД."""

    async def _make(**fields) -> Account:
        fields.setdefault("referral_code", secrets.token_hex(8).upper())
        return await save_account(session, Account(**fields))

    return _make


@pytest.fixture
def chain():
    """Хеш → ответ индексера, отсутствующий хеш означает «не найдено»."""
    return {}


@pytest.fixture
def reader(chain):
    reader = TransactionReader(settings=TonApiSettings())
    reader.get_transaction = AsyncMock(side_effect=lambda tx_hash: chain.get(tx_hash))
    return reader


@pytest.fixture
def payment_settings():
    return PaymentSettings(treasury_address=TREASURY, jetton_address=USDT_MASTER)


@pytest.fixture
def verifier(reader, payment_settings):
    return PaymentVerifier(reader=reader, settings=payment_settings, production=False)


@pytest.fixture
def transfer_settings():
    return TransferSettings(mode="simulate", reward_jetton_address=IEPR_MASTER)


@pytest.fixture
def transfers(transfer_settings, payment_settings):
    return JettonTransferService(settings=transfer_settings, payment=payment_settings)


@pytest.fixture
def referral_settings():
    return ReferralSettings()


@pytest.fixture
def membership_settings():
    return MembershipSettings()


@pytest.fixture
def locks():
    return AccountLocks()


@pytest.fixture
def ledger(membership_settings, referral_settings):
    return MembershipLedger(membership=membership_settings, referral=referral_settings)


@pytest.fixture
def referrals(referral_settings, locks):
    return ReferralService(settings=referral_settings, locks=locks)


@pytest.fixture
def service(verifier, transfers, ledger, referrals, membership_settings, locks, referral_settings):
    return MembershipService(
        verifier=verifier,
        transfers=transfers,
        ledger=ledger,
        referrals=referrals,
        scheduler=MonthlyClaimScheduler(membership_settings),
        locks=locks,
        referral_settings=referral_settings,
    )
