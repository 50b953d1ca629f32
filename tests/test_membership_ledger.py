"""Тесты реестра членства."""

import re
from datetime import datetime, timedelta, timezone

import pytest

from smartnet.models.base import as_utc
from smartnet.repositories import get_account
from smartnet.services.core.results import ErrorKind

from helpers import PAYER


class TestAccountCreation:
    """Создание и поиск аккаунта."""

    @pytest.mark.asyncio
    async def test_new_account_codes(self, session, ledger):
        account = await ledger.create_or_find_account(session, wallet_address=PAYER, telegram_id=42)
        assert re.fullmatch(r"IEPR\d{5}", account.business_id)
        assert re.fullmatch(r"[0-9A-F]{16}", account.referral_code)
        assert account.package_active is False
        assert account.tokens_entitled == 0
        assert account.coin_limit_total == 300

    @pytest.mark.asyncio
    async def test_finds_by_wallet_then_chat(self, session, ledger):
        first = await ledger.create_or_find_account(session, wallet_address=PAYER)
        again = await ledger.create_or_find_account(session, wallet_address=PAYER, telegram_id=7)
        assert again.id == first.id
        assert again.telegram_id == 7
        by_chat = await ledger.create_or_find_account(session, telegram_id=7)
        assert by_chat.id == first.id

    @pytest.mark.asyncio
    async def test_lazy_wallet_account_gets_business_id_later(self, session, ledger):
        lazy = await ledger.ensure_account_for_wallet(session, PAYER)
        assert lazy.business_id is None
        account = await ledger.create_or_find_account(session, wallet_address=PAYER)
        assert account.id == lazy.id
        assert account.business_id.startswith("IEPR")

    def test_referral_link_format(self, ledger):
        class Stub:
            referral_code = "ABCDEF0123456789"

        assert ledger.build_referral_link(Stub()) == "https://indempower.com/?ref=ABCDEF0123456789"


class TestReferrerLinking:
    """Привязка реферера: первая запись побеждает."""

    @pytest.mark.asyncio
    async def test_links_referrer(self, session, ledger, make_account):
        referrer = await make_account(wallet_address="EQRef")
        invitee = await make_account(wallet_address="EQInv")
        linked = await ledger.link_referrer(session, invitee, referrer.referral_code)
        assert linked.id == referrer.id
        assert invitee.referrer_id == referrer.id

    @pytest.mark.asyncio
    async def test_self_referral_ignored(self, session, ledger, make_account):
        account = await make_account(wallet_address="EQSelf")
        assert await ledger.link_referrer(session, account, account.referral_code) is None
        assert account.referrer_id is None

    @pytest.mark.asyncio
    async def test_referrer_is_immutable(self, session, ledger, make_account):
        first = await make_account()
        second = await make_account()
        invitee = await make_account()
        await ledger.link_referrer(session, invitee, first.referral_code)
        assert await ledger.link_referrer(session, invitee, second.referral_code) is None
        assert invitee.referrer_id == first.id

    @pytest.mark.asyncio
    async def test_unknown_code(self, session, ledger, make_account):
        invitee = await make_account()
        assert await ledger.link_referrer(session, invitee, "NOPE") is None

    @pytest.mark.asyncio
    async def test_two_account_cycle_rejected(self, session, ledger, make_account):
        a = await make_account()
        b = await make_account(referrer_id=a.id)
        assert await ledger.link_referrer(session, a, b.referral_code) is None


class TestPackageLifecycle:
    """Активация и продление."""

    @pytest.mark.asyncio
    async def test_activation_sets_term_and_quota(self, session, ledger, make_account):
        now = datetime(2024, 1, 31, 12, tzinfo=timezone.utc)
        account = await make_account(tokens_claimed=50)
        account = await ledger.activate_package(session, account, now=now)
        assert account.package_active
        assert as_utc(account.package_expiry) == datetime(2025, 1, 31, 12, tzinfo=timezone.utc)
        assert account.tokens_entitled == 300
        assert account.tokens_claimed == 0
        assert account.referral_link.endswith(account.referral_code)

    @pytest.mark.asyncio
    async def test_activation_links_referrer(self, session, ledger, make_account):
        referrer = await make_account()
        account = await make_account()
        account = await ledger.activate_package(session, account, referrer.referral_code)
        assert account.referrer_id == referrer.id

    @pytest.mark.asyncio
    async def test_renewal_refused_while_active(self, session, ledger, make_account):
        account = await make_account()
        await ledger.activate_package(session, account)
        result = await ledger.renew_package(session, account)
        assert not result.ok
        assert result.reason == "package_still_active"
        assert result.kind is ErrorKind.CONFLICT

    @pytest.mark.asyncio
    async def test_renewal_after_expiry(self, session, ledger, make_account):
        past = datetime.now(timezone.utc) - timedelta(days=400)
        account = await make_account()
        await ledger.activate_package(session, account, now=past)
        account.tokens_claimed = 300
        account.last_monthly_claim = past
        result = await ledger.renew_package(session, account)
        assert result.ok
        fresh = await get_account(session, account.id, fresh=True)
        assert fresh.has_active_package()
        assert fresh.tokens_claimed == 0
        assert fresh.tokens_entitled == 300
        assert fresh.last_monthly_claim is None
