"""Сценарии бэкенда: покупка, продление, клеймы, вывод, дашборд."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from sqlmodel import select

from config.settings import PaymentSettings, TransferSettings
from smartnet.models import TransactionRecord, TransactionStatus
from smartnet.repositories import get_account, get_account_by_telegram, get_account_by_wallet, get_by_hash
from smartnet.services.core.membership_service import MembershipService, PurchaseRequest
from smartnet.services.core.results import ErrorKind
from smartnet.services.ton.jetton_transfer import JettonTransferService

from helpers import IEPR_MASTER, PAYER, USDT_MASTER, jetton_tx

REFERRER_WALLET = "EQReferrer0000000000000000000000000000000000000"


async def buy(service, session, chain, tx_hash, wallet=PAYER, **kwargs):
    chain[tx_hash] = jetton_tx(sender=wallet)
    return await service.purchase(
        session, PurchaseRequest(tx_hash=tx_hash, wallet_address=wallet, **kwargs)
    )


class TestPurchase:
    """Покупка пакета по хешу оплаты."""

    @pytest.mark.asyncio
    async def test_first_purchase(self, service, session, chain):
        result = await buy(service, session, chain, "h1")
        assert result.ok
        assert result.data["business_id"].startswith("IEPR")
        assert result.data["referral_link"].startswith("https://indempower.com/?ref=")
        assert result.data["first_activation"] is True

        account = await get_account_by_wallet(session, PAYER)
        assert account.has_active_package()
        assert account.tokens_entitled == 300
        record = await get_by_hash(session, "h1")
        assert record.status == TransactionStatus.SUCCESS
        assert record.account_id == account.id
        assert record.business_id == account.business_id

    @pytest.mark.asyncio
    async def test_referrer_gets_commission(self, service, session, chain):
        await buy(service, session, chain, "h0", wallet=REFERRER_WALLET)
        referrer = await get_account_by_wallet(session, REFERRER_WALLET)

        result = await buy(service, session, chain, "h1", referral_code=referrer.referral_code)
        assert result.ok
        referrer = await get_account(session, referrer.id, fresh=True)
        assert referrer.rewards_balance_usdt == pytest.approx(6.0)

    @pytest.mark.asyncio
    async def test_hash_used_twice(self, service, session, chain):
        assert (await buy(service, session, chain, "h1")).ok
        result = await buy(service, session, chain, "h1", wallet=REFERRER_WALLET)
        assert result.reason == "tx_already_used"
        assert result.kind is ErrorKind.CONFLICT
        assert await get_account_by_wallet(session, REFERRER_WALLET) is None

    @pytest.mark.asyncio
    async def test_active_package_rejected_before_chain(self, service, session, chain, reader):
        await buy(service, session, chain, "h1")
        reader.get_transaction.reset_mock()
        result = await buy(service, session, chain, "h2")
        assert result.reason == "package_active"
        reader.get_transaction.assert_not_called()

    @pytest.mark.asyncio
    async def test_failed_verification_recorded_and_retryable(self, service, session, chain):
        result = await service.purchase(session, PurchaseRequest(tx_hash="late", wallet_address=PAYER))
        assert result.reason == "tx_not_found"
        record = await get_by_hash(session, "late")
        assert record.status == TransactionStatus.FAILED
        assert record.details["reason"] == "tx_not_found"

        chain["late"] = jetton_tx()
        retry = await service.purchase(session, PurchaseRequest(tx_hash="late", wallet_address=PAYER))
        assert retry.ok
        assert (await get_by_hash(session, "late")).status == TransactionStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_payer_mismatch(self, service, session, chain):
        chain["h1"] = jetton_tx(sender="EQStranger")
        result = await service.purchase(session, PurchaseRequest(tx_hash="h1", wallet_address=PAYER))
        assert result.reason == "payer_mismatch"
        assert await get_account_by_wallet(session, PAYER) is None

    @pytest.mark.asyncio
    async def test_missing_identity(self, service, session):
        result = await service.purchase(session, PurchaseRequest(tx_hash="h1"))
        assert result.reason == "missing_identity"

    @pytest.mark.asyncio
    async def test_repurchase_after_expiry_pays_no_commission(self, service, session, chain):
        await buy(service, session, chain, "h0", wallet=REFERRER_WALLET)
        referrer = await get_account_by_wallet(session, REFERRER_WALLET)
        await buy(service, session, chain, "h1", referral_code=referrer.referral_code)

        account = await get_account_by_wallet(session, PAYER)
        account.package_expiry = datetime.now(timezone.utc) - timedelta(days=1)
        session.add(account)
        await session.commit()

        result = await buy(service, session, chain, "h2")
        assert result.ok
        assert result.data["first_activation"] is False
        referrer = await get_account(session, referrer.id, fresh=True)
        assert referrer.rewards_balance_usdt == pytest.approx(6.0)


class TestVerifiedPaymentKept:
    """Подтверждённая, но не применённая оплата не может перейти к другому аккаунту."""

    @pytest.mark.asyncio
    async def test_payment_that_lost_the_race_stays_locked(
        self, service, session, chain, ledger, verifier, make_account, monkeypatch
    ):
        account = await make_account(wallet_address=PAYER)
        account_id = account.id
        original_verify = verifier.verify

        async def verify_while_rival_activates(tx_hash, expected_payer=None):
            result = await original_verify(tx_hash, expected_payer)
            # параллельная покупка того же плательщика успела активировать пакет
            rival = await get_account(session, account_id)
            await ledger.activate_package(session, rival)
            return result

        monkeypatch.setattr(verifier, "verify", verify_while_rival_activates)
        chain["h2"] = jetton_tx()
        result = await service.purchase(session, PurchaseRequest(tx_hash="h2", wallet_address=PAYER))
        assert result.reason == "package_active"

        record = await get_by_hash(session, "h2")
        assert record.status == TransactionStatus.REVIEW
        assert record.details["verified"] is True

        monkeypatch.undo()
        reuse = await service.purchase(session, PurchaseRequest(tx_hash="h2", telegram_id=777))
        assert reuse.reason == "tx_already_used"
        assert reuse.kind is ErrorKind.CONFLICT
        assert await get_account_by_telegram(session, 777) is None
        assert (await get_by_hash(session, "h2")).status == TransactionStatus.REVIEW

    @pytest.mark.asyncio
    async def test_activation_error_keeps_hash_locked(self, service, session, chain, ledger, monkeypatch):
        chain["h1"] = jetton_tx()
        monkeypatch.setattr(ledger, "activate_package", AsyncMock(side_effect=RuntimeError("db down")))
        with pytest.raises(RuntimeError):
            await service.purchase(session, PurchaseRequest(tx_hash="h1", wallet_address=PAYER))

        record = await get_by_hash(session, "h1")
        assert record.status == TransactionStatus.REVIEW
        assert record.details["reason"] == "activation_error"

        monkeypatch.undo()
        reuse = await service.purchase(session, PurchaseRequest(tx_hash="h1", telegram_id=777))
        assert reuse.reason == "tx_already_used"
        assert await get_account_by_telegram(session, 777) is None


class TestRenew:
    """Продление истёкшего пакета."""

    @pytest.mark.asyncio
    async def test_unknown_account(self, service, session):
        result = await service.renew(session, tx_hash="h1", wallet_address=PAYER)
        assert result.reason == "account_not_found"
        assert result.kind is ErrorKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_still_active(self, service, session, chain):
        await buy(service, session, chain, "h1")
        chain["h2"] = jetton_tx()
        result = await service.renew(session, tx_hash="h2", wallet_address=PAYER)
        assert result.reason == "package_still_active"

    @pytest.mark.asyncio
    async def test_renewal_resets_quota(self, service, session, chain):
        await buy(service, session, chain, "h1")
        account = await get_account_by_wallet(session, PAYER)
        account.package_expiry = datetime.now(timezone.utc) - timedelta(days=1)
        account.tokens_claimed = 300
        session.add(account)
        await session.commit()

        chain["h2"] = jetton_tx()
        result = await service.renew(session, tx_hash="h2", account_id=account.id)
        assert result.ok
        assert result.data["tokens_entitled"] == 300
        account = await get_account(session, account.id, fresh=True)
        assert account.tokens_claimed == 0
        assert account.has_active_package()


class TestClaimTokens:
    """Ежемесячный клейм IEPR."""

    @pytest.mark.asyncio
    async def test_claim_then_too_soon(self, service, session, chain):
        await buy(service, session, chain, "h1")
        account = await get_account_by_wallet(session, PAYER)

        result = await service.claim_tokens(session, account_id=account.id)
        assert result.ok
        assert result.data["amount_claimed"] == 25
        assert result.data["amount_remaining"] == 275
        assert result.data["tx_hash"].startswith("sim_")

        record = await get_by_hash(session, result.data["tx_hash"])
        assert record.kind == "token_claim"
        assert record.asset == "IEPR"

        again = await service.claim_tokens(session, wallet_address=PAYER)
        assert again.reason == "too_soon"

    @pytest.mark.asyncio
    async def test_inactive_package(self, service, session, make_account):
        account = await make_account(wallet_address=PAYER)
        result = await service.claim_tokens(session, account_id=account.id)
        assert result.reason == "package_inactive"

    @pytest.mark.asyncio
    async def test_transfer_failure_keeps_counters(
        self, session, chain, verifier, ledger, referrals, locks
    ):
        disabled = JettonTransferService(
            settings=TransferSettings(mode="disabled", reward_jetton_address=IEPR_MASTER),
            payment=PaymentSettings(jetton_address=USDT_MASTER),
        )
        service = MembershipService(
            verifier=verifier, transfers=disabled, ledger=ledger, referrals=referrals, locks=locks
        )
        await buy(service, session, chain, "h1")
        account = await get_account_by_wallet(session, PAYER)

        result = await service.claim_tokens(session, account_id=account.id)
        assert result.reason == "transfers_disabled"
        account = await get_account(session, account.id, fresh=True)
        assert account.tokens_claimed == 0
        assert account.last_monthly_claim is None

    @pytest.mark.asyncio
    async def test_unknown_account(self, service, session):
        assert (await service.claim_tokens(session, account_id=404)).reason == "account_not_found"


class TestCoinsAndStatus:
    @pytest.mark.asyncio
    async def test_coin_claim(self, service, session, make_account):
        account = await make_account(wallet_address=PAYER)
        result = await service.claim_coins(session, account_id=account.id)
        assert result.ok
        assert result.data["claimed"] == 25
        assert result.data["coins"] == 25
        assert (await service.claim_coins(session, account_id=account.id)).reason == "too_soon"

    @pytest.mark.asyncio
    async def test_claim_status(self, service, session, chain):
        await buy(service, session, chain, "h1")
        account = await get_account_by_wallet(session, PAYER)
        result = await service.claim_status(session, account_id=account.id)
        assert result.data["package_active"] is True
        assert result.data["tokens"]["base"] == 25
        assert result.data["coins"]["total_limit"] == 300


class TestWithdraw:
    """Вывод реферального баланса."""

    @pytest.mark.asyncio
    async def test_success(self, service, session, make_account):
        account = await make_account(wallet_address=PAYER, rewards_balance_usdt=9.0)
        result = await service.withdraw(session, account_id=account.id, amount=6)
        assert result.ok
        assert result.data["amount_withdrawn"] == 6
        assert result.data["balance"] == pytest.approx(3.0)

        rows = (await session.exec(select(TransactionRecord))).all()
        assert [(r.kind, r.asset, r.to_address) for r in rows] == [
            ("reward_withdrawal", "USDT", PAYER)
        ]

    @pytest.mark.asyncio
    async def test_insufficient(self, service, session, make_account):
        account = await make_account(wallet_address=PAYER, rewards_balance_usdt=5.0)
        result = await service.withdraw(session, account_id=account.id, amount=6)
        assert result.reason == "insufficient_balance"
        assert result.kind is ErrorKind.INSUFFICIENT

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, -1, "x", float("nan")])
    async def test_invalid_amount(self, service, session, make_account, amount):
        account = await make_account(wallet_address=PAYER, rewards_balance_usdt=5.0)
        result = await service.withdraw(session, account_id=account.id, amount=amount)
        assert result.reason == "invalid_amount"

    @pytest.mark.asyncio
    async def test_explicit_destination(self, service, session, make_account):
        account = await make_account(rewards_balance_usdt=5.0)
        assert (await service.withdraw(session, account_id=account.id, amount=1)).reason == (
            "missing_destination"
        )
        result = await service.withdraw(
            session, account_id=account.id, amount=1, destination="EQElsewhere"
        )
        assert result.ok

    @pytest.mark.asyncio
    async def test_simulated_payout_refused_in_prod(self, verifier, session, make_account, payment_settings):
        transfers = JettonTransferService(
            settings=TransferSettings(mode="simulate", reward_jetton_address=IEPR_MASTER),
            payment=payment_settings,
            production=True,
        )
        prod_service = MembershipService(verifier=verifier, transfers=transfers)
        account = await make_account(wallet_address=PAYER, rewards_balance_usdt=9.0)

        result = await prod_service.withdraw(session, account_id=account.id, amount=6)
        assert result.reason == "transfers_disabled"
        account = await get_account(session, account.id, fresh=True)
        assert account.rewards_balance_usdt == pytest.approx(9.0)
        assert (await session.exec(select(TransactionRecord))).all() == []


class TestProfile:
    """Дашборд, статистика, рефералы, ссылка."""

    @pytest.mark.asyncio
    async def test_dashboard_creates_account_lazily(self, service, session):
        result = await service.dashboard(session, wallet_address="EQNewcomer")
        assert result.ok
        assert result.data["package"]["active"] is False
        assert result.data["profile"]["business_id"] is None
        assert await get_account_by_wallet(session, "EQNewcomer") is not None

    @pytest.mark.asyncio
    async def test_dashboard_requires_identity(self, service, session):
        assert (await service.dashboard(session)).reason == "account_not_found"

    @pytest.mark.asyncio
    async def test_lists_and_stats(self, service, session, chain):
        await buy(service, session, chain, "h0", wallet=REFERRER_WALLET)
        referrer = await get_account_by_wallet(session, REFERRER_WALLET)
        await buy(service, session, chain, "h1", referral_code=referrer.referral_code)

        members = await service.list_referrals(session, referrer.id, 1)
        assert [m["business_id"] for m in members.data["referrals"]] == [
            (await get_account_by_wallet(session, PAYER)).business_id
        ]
        assert (await service.list_referrals(session, referrer.id, 3)).reason == "invalid_level"

        stats = await service.stats(session, referrer.id)
        assert stats.data["level1_count"] == 1
        assert stats.data["rewards_balance"] == pytest.approx(6.0)

        link = await service.referral_link(session, referrer.id)
        assert link.data["referral_link"].endswith(referrer.referral_code)

    @pytest.mark.asyncio
    async def test_process_referral(self, service, session, make_account):
        referrer = await make_account()
        result = await service.process_referral(
            session, telegram_id=555, referral_code=referrer.referral_code, username="neo"
        )
        assert result.data["created"] is True
        assert result.data["referrer_linked"] is True

        again = await service.process_referral(session, telegram_id=555, referral_code=referrer.referral_code)
        assert again.data["created"] is False
        assert again.data["referrer_linked"] is False
        account = await get_account(session, result.data["account_id"])
        assert account.referrer_id == referrer.id
