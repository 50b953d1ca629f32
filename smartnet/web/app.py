"""FastAPI backend Mini App: покупка пакета, клеймы, выводы и реферальная статистика."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlmodel.ext.asyncio.session import AsyncSession

from smartnet.context import membership_service, session_maker
from smartnet.services.core.membership_service import MembershipService, PurchaseRequest
from smartnet.services.core.results import ErrorKind, ServiceResult
from smartnet.services.ton.transaction_reader import close_transaction_reader

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.INVALID: 400,
    ErrorKind.VERIFICATION: 400,
    ErrorKind.CADENCE: 400,
    ErrorKind.INSUFFICIENT: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.TRANSFER: 502,
    ErrorKind.TRANSIENT: 502,
    ErrorKind.CONFIGURATION: 503,
}


class ApiModel(BaseModel):
    """Принимает и snake_case, и camelCase поля от фронтенда."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PurchaseBody(ApiModel):
    tx_hash: str = Field(..., min_length=1)
    wallet_address: str | None = None
    telegram_id: int | None = None
    referral_code: str | None = None
    username: str | None = None


class RenewBody(ApiModel):
    tx_hash: str = Field(..., min_length=1)
    account_id: int | None = None
    wallet_address: str | None = None


class AccountRef(ApiModel):
    account_id: int | None = None
    wallet_address: str | None = None


class WithdrawBody(ApiModel):
    account_id: int
    amount: float
    destination_address: str | None = None


class ProcessReferralBody(ApiModel):
    telegram_id: int
    referral_code: str | None = None
    username: str | None = None


async def get_db_session():
    async with session_maker() as session:
        yield session


def get_membership_service() -> MembershipService:
    return membership_service


def respond(result: ServiceResult) -> JSONResponse:
    if result.ok:
        return JSONResponse(status_code=200, content={"ok": True, **result.as_dict()})
    status_code = STATUS_BY_KIND.get(result.kind, 400) if result.kind else 400
    return JSONResponse(status_code=status_code, content={"ok": False, **result.as_dict()})


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await close_transaction_reader()
    logger.info("SmartNet API остановлен")


app = FastAPI(title="SmartNet Mini App API", lifespan=lifespan)


@app.middleware("http")
async def unexpected_errors(request: Request, call_next):
    try:
        return await call_next(request)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Необработанная ошибка {path}: {error}", path=request.url.path, error=exc)
        return JSONResponse(status_code=500, content={"ok": False, "reason": "internal_error"})


@app.get("/healthz")
async def healthz() -> dict[str, Any]:
    return {"status": "ok"}


@app.post("/api/referrals/purchase")
async def purchase(
    body: PurchaseBody,
    session: AsyncSession = Depends(get_db_session),
    service: MembershipService = Depends(get_membership_service),
) -> JSONResponse:
    result = await service.purchase(
        session,
        PurchaseRequest(
            tx_hash=body.tx_hash,
            wallet_address=body.wallet_address,
            telegram_id=body.telegram_id,
            username=body.username,
            referral_code=body.referral_code,
        ),
    )
    return respond(result)


@app.post("/api/referrals/renew")
async def renew(
    body: RenewBody,
    session: AsyncSession = Depends(get_db_session),
    service: MembershipService = Depends(get_membership_service),
) -> JSONResponse:
    result = await service.renew(
        session,
        tx_hash=body.tx_hash,
        account_id=body.account_id,
        wallet_address=body.wallet_address,
    )
    return respond(result)


@app.post("/api/referrals/claim")
async def claim_tokens(
    body: AccountRef,
    session: AsyncSession = Depends(get_db_session),
    service: MembershipService = Depends(get_membership_service),
) -> JSONResponse:
    result = await service.claim_tokens(
        session, account_id=body.account_id, wallet_address=body.wallet_address
    )
    return respond(result)


@app.post("/api/referrals/coins/claim")
async def claim_coins(
    body: AccountRef,
    session: AsyncSession = Depends(get_db_session),
    service: MembershipService = Depends(get_membership_service),
) -> JSONResponse:
    result = await service.claim_coins(
        session, account_id=body.account_id, wallet_address=body.wallet_address
    )
    return respond(result)


@app.get("/api/referrals/claim-status")
async def claim_status(
    account_id: int | None = Query(None, alias="accountId"),
    wallet_address: str | None = Query(None, alias="walletAddress"),
    session: AsyncSession = Depends(get_db_session),
    service: MembershipService = Depends(get_membership_service),
) -> JSONResponse:
    result = await service.claim_status(session, account_id=account_id, wallet_address=wallet_address)
    return respond(result)


@app.post("/api/referrals/withdraw")
async def withdraw(
    body: WithdrawBody,
    session: AsyncSession = Depends(get_db_session),
    service: MembershipService = Depends(get_membership_service),
) -> JSONResponse:
    result = await service.withdraw(
        session,
        amount=body.amount,
        account_id=body.account_id,
        destination=body.destination_address,
    )
    return respond(result)


@app.post("/api/referrals/process")
async def process_referral(
    body: ProcessReferralBody,
    session: AsyncSession = Depends(get_db_session),
    service: MembershipService = Depends(get_membership_service),
) -> JSONResponse:
    result = await service.process_referral(
        session,
        telegram_id=body.telegram_id,
        referral_code=body.referral_code,
        username=body.username,
    )
    return respond(result)


@app.get("/api/referrals/dashboard")
async def dashboard(
    account_id: int | None = Query(None, alias="accountId"),
    wallet_address: str | None = Query(None, alias="walletAddress"),
    session: AsyncSession = Depends(get_db_session),
    service: MembershipService = Depends(get_membership_service),
) -> JSONResponse:
    result = await service.dashboard(session, account_id=account_id, wallet_address=wallet_address)
    return respond(result)


@app.get("/api/referrals/{account_id}/stats")
async def stats(
    account_id: int,
    session: AsyncSession = Depends(get_db_session),
    service: MembershipService = Depends(get_membership_service),
) -> JSONResponse:
    return respond(await service.stats(session, account_id))


@app.get("/api/referrals/{account_id}/list")
async def list_referrals(
    account_id: int,
    level: int = Query(1),
    session: AsyncSession = Depends(get_db_session),
    service: MembershipService = Depends(get_membership_service),
) -> JSONResponse:
    return respond(await service.list_referrals(session, account_id, level))


@app.get("/api/referrals/{account_id}/link")
async def referral_link(
    account_id: int,
    session: AsyncSession = Depends(get_db_session),
    service: MembershipService = Depends(get_membership_service),
) -> JSONResponse:
    return respond(await service.referral_link(session, account_id))


__all__ = ["app", "get_db_session", "get_membership_service", "respond"]
