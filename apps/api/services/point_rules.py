"""Reward rule lookup, eligibility checks and default seed data."""

from __future__ import annotations

import logging
from datetime import datetime, time, timezone
from typing import Any, Dict, List, Mapping, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.point_rule import PointRule
from models.point_transaction import PointTransaction
from services.levels import level_table

logger = logging.getLogger(__name__)


DEFAULT_POINT_RULES: List[Dict[str, Any]] = [
    {
        "rule_name": "survey_complete",
        "rule_type": "EARN",
        "action": "survey_complete",
        "points": 20,
        "conditions": {"min_questions": 3},
        "daily_limit": 200,
        "total_limit": None,
    },
    {
        "rule_name": "survey_create",
        "rule_type": "EARN",
        "action": "survey_create",
        "points": 50,
        "conditions": {"min_questions": 5},
        "daily_limit": 500,
        "total_limit": None,
    },
    {
        "rule_name": "template_create",
        "rule_type": "EARN",
        "action": "template_create",
        "points": 100,
        "conditions": {"is_public": True, "is_free": True},
        "daily_limit": None,
        "total_limit": None,
    },
    {
        "rule_name": "daily_login",
        "rule_type": "EARN",
        "action": "daily_login",
        "points": 5,
        "conditions": {},
        "daily_limit": 5,
        "total_limit": None,
    },
    {
        "rule_name": "template_purchase",
        "rule_type": "SPEND",
        "action": "template_purchase",
        "points": 100,
        "conditions": {},
        "daily_limit": None,
        "total_limit": None,
    },
]


def points_day_start(now: Optional[datetime] = None) -> datetime:
    """Start of the current local day (POINTS_TIMEZONE) as an aware UTC datetime."""
    tz = ZoneInfo(settings.POINTS_TIMEZONE or "UTC")
    local_now = (now or datetime.now(timezone.utc)).astimezone(tz)
    local_midnight = datetime.combine(local_now.date(), time.min, tzinfo=tz)
    return local_midnight.astimezone(timezone.utc)


async def get_active_rule(db: AsyncSession, action: str, rule_type: str = "EARN") -> Optional[PointRule]:
    result = await db.execute(
        select(PointRule)
        .where(
            PointRule.action == action,
            PointRule.rule_type == rule_type,
            PointRule.is_active.is_(True),
        )
        .limit(1)
    )
    return result.scalar_one_or_none()


def evaluate_conditions(conditions: Optional[Mapping[str, Any]], context: Optional[Mapping[str, Any]]) -> bool:
    """
    Check rule eligibility against the caller's context.

    ``min_questions`` compares against ``context["question_count"]``; every
    other key must equal the context value of the same name.
    """
    if not conditions:
        return True
    ctx = dict(context or {})
    for key, expected in conditions.items():
        if key == "min_questions":
            try:
                if int(ctx.get("question_count", 0) or 0) < int(expected):
                    return False
            except (TypeError, ValueError):
                return False
            continue
        if ctx.get(key) != expected:
            return False
    return True


async def seed_default_point_rules(db: AsyncSession) -> int:
    """Insert missing default rules. Existing rows are left untouched."""
    result = await db.execute(select(PointRule.rule_name))
    existing = {row for row in result.scalars().all()}
    created = 0
    for rule in DEFAULT_POINT_RULES:
        if rule["rule_name"] in existing:
            continue
        db.add(PointRule(**rule, is_active=True))
        created += 1
    if created:
        await db.commit()
        logger.info("Seeded %s default point rules", created)
    return created


async def sum_earned_for_source(
    db: AsyncSession,
    user_id: str,
    source: str,
    since: Optional[datetime] = None,
) -> int:
    query = select(func.coalesce(func.sum(PointTransaction.amount), 0)).where(
        PointTransaction.user_id == user_id,
        PointTransaction.source == source,
        PointTransaction.type == "EARN",
    )
    if since is not None:
        query = query.where(PointTransaction.created_at >= since)
    result = await db.execute(query)
    return int(result.scalar() or 0)


async def list_rules_with_usage(db: AsyncSession, user_id: Optional[str] = None) -> Dict[str, Any]:
    result = await db.execute(
        select(PointRule).where(PointRule.is_active.is_(True)).order_by(PointRule.rule_type, PointRule.rule_name)
    )
    rules = result.scalars().all()

    earn_rules: List[Dict[str, Any]] = []
    spend_rules: List[Dict[str, Any]] = []
    day_start = points_day_start()
    for rule in rules:
        payload = rule.to_dict()
        if rule.rule_type == "SPEND":
            spend_rules.append(payload)
            continue
        daily_used = 0
        if user_id:
            daily_used = await sum_earned_for_source(db, user_id, rule.action, since=day_start)
        payload["daily_used"] = daily_used
        payload["daily_remaining"] = (
            max(int(rule.daily_limit) - daily_used, 0) if rule.daily_limit is not None else None
        )
        earn_rules.append(payload)

    return {
        "earn_rules": earn_rules,
        "spend_rules": spend_rules,
        "level_system": {"levels": level_table()},
    }
