"""Points ledger router."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Literal, Optional
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from database import get_db
from models.user import User
from routers.auth_scope import AuthContext, get_auth_context, get_optional_auth_context
from services.point_rules import list_rules_with_usage
from services.points import (
    AccountNotFoundError,
    AwardSkipped,
    InsufficientBalanceError,
    InvalidAmountError,
    LedgerError,
    award_for_action,
    get_history,
    get_summary,
    open_account,
)

router = APIRouter()
logger = logging.getLogger(__name__)


def ledger_http_error(exc: LedgerError) -> HTTPException:
    """Map ledger failures onto user-facing HTTP errors."""
    if isinstance(exc, InsufficientBalanceError):
        return HTTPException(
            status_code=402,
            detail={
                "code": "INSUFFICIENT_POINTS",
                "message": str(exc),
                "required": exc.required,
                "available": exc.available,
                "shortage": exc.shortage,
            },
        )
    if isinstance(exc, InvalidAmountError):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, AccountNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


async def _ensure_account(db: AsyncSession, auth: AuthContext) -> User:
    result = await db.execute(select(User).where(User.id == auth.user_id))
    user = result.scalar_one_or_none()
    if user:
        return user
    logger.info("Opening point account for user %s", auth.user_id)
    try:
        return await open_account(
            db,
            user_id=auth.user_id,
            email=auth.email or f"{auth.user_id}@local.invalid",
            role=auth.role,
        )
    except IntegrityError:
        # A concurrent request opened the account first.
        result = await db.execute(select(User).where(User.id == auth.user_id))
        user = result.scalar_one_or_none()
        if user is None:
            raise HTTPException(status_code=409, detail="Email is already linked to another account.")
        return user


@router.get("/summary")
async def points_summary(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    await _ensure_account(db, auth)
    try:
        return await get_summary(auth.user_id, db)
    except LedgerError as exc:
        raise ledger_http_error(exc) from exc


@router.get("/transactions")
async def points_transactions(
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1),
    source: Optional[str] = Query(default=None),
    type: Optional[Literal["EARN", "SPEND"]] = Query(default=None),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    await _ensure_account(db, auth)
    history = await get_history(
        auth.user_id,
        db,
        page=page,
        page_size=page_size,
        source=source,
        direction=type,
    )
    history["summary"] = await get_summary(auth.user_id, db)
    return history


@router.get("/rules")
async def points_rules(
    auth: Optional[AuthContext] = Depends(get_optional_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await list_rules_with_usage(db, user_id=auth.user_id if auth else None)


@router.post("/daily-login")
async def daily_login_reward(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    await _ensure_account(db, auth)
    local_day = datetime.now(timezone.utc).astimezone(ZoneInfo(settings.POINTS_TIMEZONE or "UTC")).date()
    try:
        result = await award_for_action(
            auth.user_id,
            db,
            action="daily_login",
            reference_id=local_day.isoformat(),
            reference_type="login_day",
            description="Daily login reward",
        )
    except LedgerError as exc:
        raise ledger_http_error(exc) from exc

    if isinstance(result, AwardSkipped):
        return {"awarded": False, "points": 0, "reason": result.reason}
    return {"awarded": True, "points": result.amount, "balance_after": result.balance_after}
