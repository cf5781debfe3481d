"""Point ledger: balance mutations, reward awards, history and summaries."""

from __future__ import annotations

import asyncio
import logging
import math
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, AsyncIterator, Dict, Iterable, List, Literal, Mapping, Optional, Union

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.point_rule import PointRule
from models.point_transaction import PointTransaction
from models.user import User
from services.levels import level_for_points, next_level_threshold
from services.point_rules import (
    evaluate_conditions,
    get_active_rule,
    points_day_start,
    sum_earned_for_source,
)

logger = logging.getLogger(__name__)


Direction = Literal["EARN", "SPEND"]
EARN: Direction = "EARN"
SPEND: Direction = "SPEND"

SURVEY_COMPLETE_BASE_POINTS = 20
TEXT_ANSWER_BONUS = 5
TEXT_ANSWER_MIN_LENGTH = 10
ALL_ANSWERED_BONUS = 10


class LedgerError(Exception):
    """Base class for point ledger failures."""


class InvalidAmountError(LedgerError, ValueError):
    """Raised when a non-positive or non-integer amount reaches the ledger."""


class InsufficientBalanceError(LedgerError):
    """Raised when a spend would drive the balance negative."""

    def __init__(self, required: int, available: int):
        self.required = int(required)
        self.available = int(available)
        self.shortage = max(self.required - self.available, 0)
        super().__init__(
            f"Insufficient points. Required: {self.required}, available: {self.available}, "
            f"shortage: {self.shortage}."
        )


class AccountNotFoundError(LedgerError, LookupError):
    """Raised when the ledger is asked to touch an unknown or anonymous user."""


class DuplicateTransactionError(LedgerError):
    """Raised when an idempotency key has already been written."""


@dataclass(frozen=True)
class AwardSkipped:
    """A legitimate no-op award: rule missing, condition unmet, cap reached or duplicate."""

    action: str
    reason: str


@dataclass(frozen=True)
class TemplatePurchaseResult:
    buyer_transaction: PointTransaction
    creator_transaction: Optional[PointTransaction]
    buyer_balance: int
    creator_earning: int


AwardResult = Union[PointTransaction, AwardSkipped]


_user_locks: Dict[str, asyncio.Lock] = {}
_user_lock_holders: Dict[str, int] = {}


@asynccontextmanager
async def user_ledger_lock(*user_ids: str) -> AsyncIterator[None]:
    """
    Serialize ledger writes per user inside this process.

    Locks are taken in sorted id order so multi-user operations cannot
    deadlock. Entries are dropped once nobody holds or waits on them.
    """
    ordered = sorted(set(user_ids))
    for user_id in ordered:
        _user_lock_holders[user_id] = _user_lock_holders.get(user_id, 0) + 1
        _user_locks.setdefault(user_id, asyncio.Lock())
    acquired: List[str] = []
    try:
        for user_id in ordered:
            await _user_locks[user_id].acquire()
            acquired.append(user_id)
        yield
    finally:
        for user_id in reversed(acquired):
            _user_locks[user_id].release()
        for user_id in ordered:
            remaining = _user_lock_holders.get(user_id, 1) - 1
            if remaining <= 0:
                _user_lock_holders.pop(user_id, None)
                _user_locks.pop(user_id, None)
            else:
                _user_lock_holders[user_id] = remaining


def _normalize_direction(direction: str) -> Direction:
    value = str(direction or "").strip().upper()
    if value not in (EARN, SPEND):
        raise ValueError(f"Unknown transaction direction: {direction!r}")
    return value  # type: ignore[return-value]


def _validate_amount(amount: Any) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmountError(f"Amount must be a positive integer, got {amount!r}.")
    if amount <= 0:
        raise InvalidAmountError(f"Amount must be a positive integer, got {amount}.")
    return amount


def _require_user_id(user_id: Optional[str]) -> str:
    if not user_id:
        raise AccountNotFoundError("Anonymous users have no point account.")
    return user_id


def award_idempotency_key(user_id: str, action: str, reference_id: str) -> str:
    return f"{user_id}:{action}:{reference_id}"


async def get_balance(user_id: str, db: AsyncSession) -> Optional[int]:
    result = await db.execute(select(User.points).where(User.id == user_id))
    value = result.scalar_one_or_none()
    return int(value) if value is not None else None


async def _transaction_exists(db: AsyncSession, idempotency_key: str) -> bool:
    result = await db.execute(
        select(PointTransaction.id).where(PointTransaction.idempotency_key == idempotency_key).limit(1)
    )
    return result.scalar_one_or_none() is not None


async def _apply_locked(
    db: AsyncSession,
    *,
    user_id: str,
    direction: Direction,
    amount: int,
    source: str,
    reference_id: Optional[str] = None,
    reference_type: Optional[str] = None,
    description: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    idempotency_key: Optional[str] = None,
) -> PointTransaction:
    """Adjust the balance and stage the matching ledger row. Caller holds the user lock and commits."""
    if direction == EARN:
        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(points=User.points + amount, lifetime_points=User.lifetime_points + amount)
        )
    else:
        stmt = (
            update(User)
            .where(User.id == user_id, User.points >= amount)
            .values(points=User.points - amount)
        )
    stmt = stmt.returning(User.points, User.lifetime_points, User.level).execution_options(
        synchronize_session=False
    )
    row = (await db.execute(stmt)).first()
    if row is None:
        available = await get_balance(user_id, db)
        if available is None:
            raise AccountNotFoundError(f"User {user_id} not found.")
        raise InsufficientBalanceError(required=amount, available=available)

    balance_after, lifetime_points, current_level = int(row[0]), int(row[1]), int(row[2])
    new_level = level_for_points(lifetime_points)
    if new_level != current_level:
        await db.execute(
            update(User)
            .where(User.id == user_id)
            .values(level=new_level)
            .execution_options(synchronize_session=False)
        )
        logger.info("User %s moved from level %s to %s", user_id, current_level, new_level)

    entry = PointTransaction(
        id=str(uuid.uuid4()),
        user_id=user_id,
        type=direction,
        amount=amount,
        balance_after=balance_after,
        source=source,
        reference_id=reference_id,
        reference_type=reference_type,
        description=description,
        metadata_json=metadata,
        idempotency_key=idempotency_key,
    )
    db.add(entry)
    await db.flush()
    return entry


async def apply_transaction(
    user_id: str,
    db: AsyncSession,
    *,
    direction: str,
    amount: int,
    source: str,
    reference_id: Optional[str] = None,
    reference_type: Optional[str] = None,
    description: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    idempotency_key: Optional[str] = None,
) -> PointTransaction:
    """
    Move points for one user and record the transaction in a single commit.

    Raises:
        InvalidAmountError: amount is not a positive integer
        InsufficientBalanceError: a SPEND exceeds the current balance
        AccountNotFoundError: user is anonymous or unknown
        DuplicateTransactionError: idempotency_key was already used
    """
    normalized = _normalize_direction(direction)
    checked_amount = _validate_amount(amount)
    owner_id = _require_user_id(user_id)

    async with user_ledger_lock(owner_id):
        try:
            entry = await _apply_locked(
                db,
                user_id=owner_id,
                direction=normalized,
                amount=checked_amount,
                source=source,
                reference_id=reference_id,
                reference_type=reference_type,
                description=description,
                metadata=metadata,
                idempotency_key=idempotency_key,
            )
            await db.commit()
        except IntegrityError as exc:
            await db.rollback()
            raise DuplicateTransactionError(f"Transaction {idempotency_key} already recorded.") from exc
        except Exception:
            await db.rollback()
            raise

    logger.info(
        "Ledger %s %s points for user %s (source=%s, balance_after=%s)",
        normalized,
        checked_amount,
        owner_id,
        source,
        entry.balance_after,
    )
    return entry


def calculate_survey_completion_points(
    answers: Iterable[Mapping[str, Any]],
    question_count: int,
    *,
    base_points: int = SURVEY_COMPLETE_BASE_POINTS,
) -> int:
    """Base points, plus a bonus per substantive text answer and for answering everything."""
    answer_list = list(answers or [])
    points = int(base_points)
    text_answers = [
        answer
        for answer in answer_list
        if answer.get("answer_type") == "text"
        and len(str(answer.get("text_value") or "")) > TEXT_ANSWER_MIN_LENGTH
    ]
    points += len(text_answers) * TEXT_ANSWER_BONUS
    if question_count and len(answer_list) == int(question_count):
        points += ALL_ANSWERED_BONUS
    return points


def compute_award_amount(rule: PointRule, context: Optional[Mapping[str, Any]]) -> int:
    ctx = context or {}
    if rule.action == "survey_complete" and "answers" in ctx:
        return calculate_survey_completion_points(
            ctx.get("answers") or [],
            int(ctx.get("question_count", 0) or 0),
            base_points=int(rule.points),
        )
    return int(rule.points)


async def award_for_action(
    user_id: str,
    db: AsyncSession,
    *,
    action: str,
    context: Optional[Mapping[str, Any]] = None,
    reference_id: Optional[str] = None,
    reference_type: Optional[str] = None,
    description: Optional[str] = None,
) -> AwardResult:
    """
    Award the configured points for ``action`` unless a rule, condition or cap says otherwise.

    Awards are all-or-nothing: when the full amount does not fit under a
    daily or lifetime cap the award is skipped. With a reference id the
    award is idempotent per (user, action, reference).
    """
    owner_id = _require_user_id(user_id)
    rule = await get_active_rule(db, action, rule_type=EARN)
    if rule is None:
        return AwardSkipped(action=action, reason="rule_not_found")
    if not evaluate_conditions(rule.conditions, context):
        return AwardSkipped(action=action, reason="conditions_unmet")

    amount = compute_award_amount(rule, context)
    if amount <= 0:
        return AwardSkipped(action=action, reason="zero_amount")

    idempotency_key = award_idempotency_key(owner_id, action, reference_id) if reference_id else None

    async with user_ledger_lock(owner_id):
        try:
            if idempotency_key and await _transaction_exists(db, idempotency_key):
                return AwardSkipped(action=action, reason="duplicate")
            if rule.daily_limit is not None:
                used_today = await sum_earned_for_source(db, owner_id, action, since=points_day_start())
                if used_today + amount > int(rule.daily_limit):
                    return AwardSkipped(action=action, reason="daily_limit_reached")
            if rule.total_limit is not None:
                used_total = await sum_earned_for_source(db, owner_id, action)
                if used_total + amount > int(rule.total_limit):
                    return AwardSkipped(action=action, reason="total_limit_reached")

            entry = await _apply_locked(
                db,
                user_id=owner_id,
                direction=EARN,
                amount=amount,
                source=action,
                reference_id=reference_id,
                reference_type=reference_type,
                description=description or f"Reward: {rule.rule_name}",
                idempotency_key=idempotency_key,
            )
            await db.commit()
        except IntegrityError:
            await db.rollback()
            logger.info("Duplicate award ignored for user %s action %s ref %s", owner_id, action, reference_id)
            return AwardSkipped(action=action, reason="duplicate")
        except Exception:
            await db.rollback()
            raise

    logger.info("Awarded %s points to user %s for %s", amount, owner_id, action)
    return entry


async def purchase_template(
    buyer_id: str,
    creator_id: Optional[str],
    db: AsyncSession,
    *,
    template_id: str,
    price: int,
    purchase_id: str,
    title: Optional[str] = None,
) -> TemplatePurchaseResult:
    """Charge the buyer and credit the creator's share in one commit."""
    buyer = _require_user_id(buyer_id)
    checked_price = _validate_amount(price)
    if creator_id and creator_id == buyer:
        raise LedgerError("You cannot purchase your own template.")

    share = Decimal(str(settings.TEMPLATE_CREATOR_SHARE))
    creator_earning = int(math.floor(Decimal(checked_price) * share)) if creator_id else 0
    label = title or template_id
    reference = {"template_id": template_id}

    lock_ids = [buyer] + ([creator_id] if creator_id else [])
    async with user_ledger_lock(*lock_ids):
        try:
            buyer_entry = await _apply_locked(
                db,
                user_id=buyer,
                direction=SPEND,
                amount=checked_price,
                source="template_purchase",
                reference_id=purchase_id,
                reference_type="purchase",
                description=f"Template purchase: {label}",
                metadata=reference,
                idempotency_key=award_idempotency_key(buyer, "template_purchase", purchase_id),
            )
            creator_entry = None
            if creator_id and creator_earning > 0:
                creator_entry = await _apply_locked(
                    db,
                    user_id=creator_id,
                    direction=EARN,
                    amount=creator_earning,
                    source="template_sale",
                    reference_id=purchase_id,
                    reference_type="purchase",
                    description=f"Template sale: {label}",
                    metadata=reference,
                    idempotency_key=award_idempotency_key(creator_id, "template_sale", purchase_id),
                )
            await db.commit()
        except IntegrityError as exc:
            await db.rollback()
            raise DuplicateTransactionError(f"Purchase {purchase_id} already recorded.") from exc
        except Exception:
            await db.rollback()
            raise

    logger.info(
        "Template %s purchased by %s for %s points (creator %s earned %s)",
        template_id,
        buyer,
        checked_price,
        creator_id,
        creator_earning,
    )
    return TemplatePurchaseResult(
        buyer_transaction=buyer_entry,
        creator_transaction=creator_entry,
        buyer_balance=buyer_entry.balance_after,
        creator_earning=creator_earning if creator_entry is not None else 0,
    )


async def open_account(
    db: AsyncSession,
    *,
    email: str,
    user_id: Optional[str] = None,
    nickname: Optional[str] = None,
    role: str = "consumer",
    signup_bonus: Optional[int] = None,
) -> User:
    """Create a user with an empty balance plus an optional signup bonus seed transaction."""
    bonus = settings.POINTS_SIGNUP_BONUS if signup_bonus is None else int(signup_bonus)
    user = User(
        id=user_id or str(uuid.uuid4()),
        email=email,
        nickname=nickname,
        role=role,
        points=0,
        lifetime_points=0,
        level=1,
    )
    async with user_ledger_lock(user.id):
        try:
            db.add(user)
            await db.flush()
            if bonus > 0:
                await _apply_locked(
                    db,
                    user_id=user.id,
                    direction=EARN,
                    amount=bonus,
                    source="signup_bonus",
                    reference_id=user.id,
                    reference_type="user",
                    description="Welcome bonus",
                    idempotency_key=award_idempotency_key(user.id, "signup_bonus", user.id),
                )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
    await db.refresh(user)
    return user


async def get_history(
    user_id: str,
    db: AsyncSession,
    *,
    page: int = 1,
    page_size: int = 20,
    source: Optional[str] = None,
    direction: Optional[str] = None,
) -> Dict[str, Any]:
    page = max(int(page or 1), 1)
    max_page_size = max(int(settings.POINTS_HISTORY_MAX_PAGE_SIZE), 1)
    page_size = min(max(int(page_size or 1), 1), max_page_size)

    filters = [PointTransaction.user_id == user_id]
    if source:
        filters.append(PointTransaction.source == source)
    if direction:
        filters.append(PointTransaction.type == _normalize_direction(direction))

    total_result = await db.execute(select(func.count(PointTransaction.id)).where(*filters))
    total = int(total_result.scalar() or 0)

    result = await db.execute(
        select(PointTransaction)
        .where(*filters)
        .order_by(PointTransaction.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    entries = result.scalars().all()
    return {
        "items": [entry.to_dict() for entry in entries],
        "pagination": {
            "page": page,
            "page_size": page_size,
            "total": total,
            "total_pages": math.ceil(total / page_size) if total else 0,
            "has_more": page * page_size < total,
        },
    }


async def get_summary(user_id: str, db: AsyncSession) -> Dict[str, Any]:
    result = await db.execute(
        select(User.points, User.level, User.lifetime_points).where(User.id == user_id)
    )
    row = result.first()
    if row is None:
        raise AccountNotFoundError(f"User {user_id} not found.")

    totals_result = await db.execute(
        select(
            PointTransaction.type,
            func.coalesce(func.sum(PointTransaction.amount), 0),
            func.count(PointTransaction.id),
        )
        .where(PointTransaction.user_id == user_id)
        .group_by(PointTransaction.type)
    )
    earned = spent = count = 0
    for direction, amount_sum, row_count in totals_result.all():
        if direction == EARN:
            earned = int(amount_sum or 0)
        elif direction == SPEND:
            spent = int(amount_sum or 0)
        count += int(row_count or 0)

    upcoming = next_level_threshold(earned)
    return {
        "current_balance": int(row[0]),
        "current_level": int(row[1]),
        "lifetime_earned": earned,
        "lifetime_spent": spent,
        "transaction_count": count,
        "next_level": upcoming["level"] if upcoming else None,
        "points_to_next_level": upcoming["points_needed"] if upcoming else 0,
    }
