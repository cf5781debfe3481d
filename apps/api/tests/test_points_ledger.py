import asyncio
from datetime import datetime, timezone

import pytest
from sqlalchemy import func
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload

from models.point_rule import PointRule
from models.point_transaction import PointTransaction
from models.user import User
from services.levels import level_for_points, next_level_threshold
from services.point_rules import evaluate_conditions, list_rules_with_usage, points_day_start
from services.points import (
    AccountNotFoundError,
    AwardSkipped,
    DuplicateTransactionError,
    InsufficientBalanceError,
    InvalidAmountError,
    LedgerError,
    apply_transaction,
    award_for_action,
    calculate_survey_completion_points,
    get_balance,
    get_history,
    get_summary,
    open_account,
    purchase_template,
)


async def _open(session_maker, user_id: str, balance: int = 0):
    async with session_maker() as db:
        await open_account(db, user_id=user_id, email=f"{user_id}@example.com", signup_bonus=balance)


async def _balance(session_maker, user_id: str) -> int:
    async with session_maker() as db:
        return await get_balance(user_id, db)


async def _transactions(session_maker, user_id: str):
    async with session_maker() as db:
        result = await db.execute(
            select(PointTransaction)
            .where(PointTransaction.user_id == user_id)
            .order_by(PointTransaction.created_at.asc())
        )
        return result.scalars().all()


def _survey_answers():
    return [
        {"question_id": "q1", "answer_type": "text", "text_value": "The onboarding was very smooth"},
        {"question_id": "q2", "answer_type": "text", "text_value": "Support replied within an hour"},
        {"question_id": "q3", "answer_type": "text", "text_value": "Pricing page needs more detail"},
        {"question_id": "q4", "answer_type": "single_choice", "choice_value": "opt2"},
        {"question_id": "q5", "answer_type": "rating", "rating_value": 4},
    ]


@pytest.mark.asyncio
async def test_open_account_records_signup_bonus_as_single_transaction(ledger_sessions):
    async with ledger_sessions() as db:
        user = await open_account(db, user_id="new-user", email="new@example.com", signup_bonus=100)
        assert user.points == 100
        assert user.lifetime_points == 100
        assert user.level == 1

    rows = await _transactions(ledger_sessions, "new-user")
    assert len(rows) == 1
    assert rows[0].type == "EARN"
    assert rows[0].source == "signup_bonus"
    assert rows[0].balance_after == 100


@pytest.mark.asyncio
async def test_spend_over_balance_is_rejected_without_side_effects(ledger_sessions):
    await _open(ledger_sessions, "spender", balance=100)

    async with ledger_sessions() as db:
        with pytest.raises(InsufficientBalanceError) as exc_info:
            await apply_transaction("spender", db, direction="SPEND", amount=150, source="template_purchase")

    assert exc_info.value.required == 150
    assert exc_info.value.available == 100
    assert exc_info.value.shortage == 50
    assert await _balance(ledger_sessions, "spender") == 100
    rows = await _transactions(ledger_sessions, "spender")
    assert [row.type for row in rows] == ["EARN"]


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [0, -5, 2.5, True, "10"])
async def test_non_positive_or_non_integer_amounts_are_rejected(ledger_sessions, amount):
    await _open(ledger_sessions, "amount-user", balance=10)
    async with ledger_sessions() as db:
        with pytest.raises(InvalidAmountError):
            await apply_transaction("amount-user", db, direction="EARN", amount=amount, source="manual")
    assert await _balance(ledger_sessions, "amount-user") == 10


@pytest.mark.asyncio
async def test_anonymous_and_unknown_users_are_rejected(ledger_sessions):
    async with ledger_sessions() as db:
        with pytest.raises(AccountNotFoundError):
            await apply_transaction("", db, direction="EARN", amount=5, source="manual")
        with pytest.raises(AccountNotFoundError):
            await apply_transaction("ghost", db, direction="EARN", amount=5, source="manual")
        with pytest.raises(AccountNotFoundError):
            await award_for_action(None, db, action="daily_login", reference_id="2026-01-01")


@pytest.mark.asyncio
async def test_concurrent_mutations_keep_balance_and_snapshots_consistent(ledger_sessions):
    await _open(ledger_sessions, "busy-user", balance=100)

    async def _apply(direction: str, amount: int):
        async with ledger_sessions() as db:
            try:
                return await apply_transaction("busy-user", db, direction=direction, amount=amount, source="manual")
            except InsufficientBalanceError:
                return None

    operations = [("EARN", 10) if index % 2 == 0 else ("SPEND", 15) for index in range(20)]
    await asyncio.gather(*(_apply(direction, amount) for direction, amount in operations))

    rows = await _transactions(ledger_sessions, "busy-user")
    earned = sum(row.amount for row in rows if row.type == "EARN")
    spent = sum(row.amount for row in rows if row.type == "SPEND")
    final_balance = await _balance(ledger_sessions, "busy-user")
    assert final_balance == earned - spent

    running = 0
    for row in rows:
        running += row.amount if row.type == "EARN" else -row.amount
        assert row.balance_after == running
        assert row.balance_after >= 0
    assert running == final_balance


@pytest.mark.asyncio
async def test_concurrent_earns_for_different_users_do_not_interfere(ledger_sessions):
    for user_id in ("user-a", "user-b"):
        await _open(ledger_sessions, user_id)

    async def _earn(user_id: str):
        async with ledger_sessions() as db:
            await apply_transaction(user_id, db, direction="EARN", amount=7, source="manual")

    await asyncio.gather(*(_earn(user_id) for user_id in ["user-a", "user-b"] * 5))
    assert await _balance(ledger_sessions, "user-a") == 35
    assert await _balance(ledger_sessions, "user-b") == 35


@pytest.mark.asyncio
async def test_survey_completion_award_includes_text_and_completion_bonuses(ledger_sessions):
    await _open(ledger_sessions, "respondent")
    answers = _survey_answers()
    assert calculate_survey_completion_points(answers, 5) == 45

    async with ledger_sessions() as db:
        result = await award_for_action(
            "respondent",
            db,
            action="survey_complete",
            context={"answers": answers, "question_count": 5},
            reference_id="response-1",
            reference_type="response",
        )

    assert not isinstance(result, AwardSkipped)
    assert result.type == "EARN"
    assert result.amount == 45
    assert result.balance_after == 45
    assert await _balance(ledger_sessions, "respondent") == 45


@pytest.mark.asyncio
async def test_award_is_idempotent_per_reference(ledger_sessions):
    await _open(ledger_sessions, "repeat-user")
    context = {"answers": _survey_answers(), "question_count": 5}

    async with ledger_sessions() as db:
        first = await award_for_action(
            "repeat-user", db, action="survey_complete", context=context, reference_id="response-7"
        )
        second = await award_for_action(
            "repeat-user", db, action="survey_complete", context=context, reference_id="response-7"
        )

    assert not isinstance(first, AwardSkipped)
    assert second == AwardSkipped(action="survey_complete", reason="duplicate")
    rows = await _transactions(ledger_sessions, "repeat-user")
    assert len(rows) == 1
    assert await _balance(ledger_sessions, "repeat-user") == 45


@pytest.mark.asyncio
async def test_concurrent_duplicate_awards_produce_one_transaction(ledger_sessions):
    await _open(ledger_sessions, "racer")

    async def _award():
        async with ledger_sessions() as db:
            return await award_for_action(
                "racer",
                db,
                action="survey_create",
                context={"question_count": 6},
                reference_id="survey-42",
                reference_type="survey",
            )

    results = await asyncio.gather(*(_award() for _ in range(5)))
    awarded = [item for item in results if not isinstance(item, AwardSkipped)]
    assert len(awarded) == 1
    assert awarded[0].amount == 50
    assert len(await _transactions(ledger_sessions, "racer")) == 1


@pytest.mark.asyncio
async def test_award_skips_missing_rule_and_unmet_conditions(ledger_sessions):
    await _open(ledger_sessions, "skipper")
    async with ledger_sessions() as db:
        missing = await award_for_action("skipper", db, action="no_such_action", reference_id="x")
        unmet = await award_for_action(
            "skipper", db, action="survey_complete", context={"question_count": 2}, reference_id="r-1"
        )
        private_template = await award_for_action(
            "skipper",
            db,
            action="template_create",
            context={"is_public": False, "is_free": True},
            reference_id="tpl-1",
        )

    assert missing.reason == "rule_not_found"
    assert unmet.reason == "conditions_unmet"
    assert private_template.reason == "conditions_unmet"
    assert await _balance(ledger_sessions, "skipper") == 0


@pytest.mark.asyncio
async def test_daily_cap_skips_awards_that_would_exceed_it(ledger_sessions):
    await _open(ledger_sessions, "grinder")
    context = {"answers": _survey_answers(), "question_count": 5}

    results = []
    async with ledger_sessions() as db:
        for index in range(5):
            results.append(
                await award_for_action(
                    "grinder", db, action="survey_complete", context=context, reference_id=f"resp-{index}"
                )
            )

    awarded = [item for item in results if not isinstance(item, AwardSkipped)]
    assert len(awarded) == 4
    assert results[-1] == AwardSkipped(action="survey_complete", reason="daily_limit_reached")
    assert await _balance(ledger_sessions, "grinder") == 180


@pytest.mark.asyncio
async def test_lifetime_cap_is_enforced(ledger_sessions):
    await _open(ledger_sessions, "referrer")
    async with ledger_sessions() as db:
        db.add(
            PointRule(
                rule_name="referral_signup",
                rule_type="EARN",
                action="referral_signup",
                points=30,
                conditions={},
                total_limit=50,
                is_active=True,
            )
        )
        await db.commit()
        first = await award_for_action("referrer", db, action="referral_signup", reference_id="friend-1")
        second = await award_for_action("referrer", db, action="referral_signup", reference_id="friend-2")

    assert first.amount == 30
    assert second.reason == "total_limit_reached"


@pytest.mark.asyncio
async def test_template_purchase_moves_points_between_buyer_and_creator(ledger_sessions):
    await _open(ledger_sessions, "buyer", balance=150)
    await _open(ledger_sessions, "creator")

    async with ledger_sessions() as db:
        result = await purchase_template(
            "buyer",
            "creator",
            db,
            template_id="tpl-100",
            price=100,
            purchase_id="purchase-1",
            title="NPS starter",
        )

    assert result.buyer_balance == 50
    assert result.creator_earning == 70
    assert result.buyer_transaction.type == "SPEND"
    assert result.buyer_transaction.amount == 100
    assert result.creator_transaction.type == "EARN"
    assert result.creator_transaction.amount == 70
    assert result.creator_transaction.source == "template_sale"
    assert await _balance(ledger_sessions, "buyer") == 50
    assert await _balance(ledger_sessions, "creator") == 70


@pytest.mark.asyncio
async def test_template_purchase_rounds_creator_share_down(ledger_sessions):
    await _open(ledger_sessions, "buyer-2", balance=30)
    await _open(ledger_sessions, "creator-2")
    async with ledger_sessions() as db:
        result = await purchase_template(
            "buyer-2", "creator-2", db, template_id="tpl-30", price=30, purchase_id="purchase-30"
        )
    assert result.creator_earning == 21


@pytest.mark.asyncio
async def test_failed_template_purchase_leaves_both_accounts_untouched(ledger_sessions):
    await _open(ledger_sessions, "poor-buyer", balance=40)
    await _open(ledger_sessions, "seller")

    async with ledger_sessions() as db:
        with pytest.raises(InsufficientBalanceError):
            await purchase_template(
                "poor-buyer", "seller", db, template_id="tpl-1", price=100, purchase_id="purchase-2"
            )
        with pytest.raises(LedgerError):
            await purchase_template(
                "seller", "seller", db, template_id="tpl-1", price=10, purchase_id="purchase-3"
            )

    assert await _balance(ledger_sessions, "poor-buyer") == 40
    assert await _balance(ledger_sessions, "seller") == 0
    assert await _transactions(ledger_sessions, "seller") == []


@pytest.mark.asyncio
async def test_replayed_purchase_is_rejected(ledger_sessions):
    await _open(ledger_sessions, "buyer-3", balance=500)
    await _open(ledger_sessions, "creator-3")
    async with ledger_sessions() as db:
        await purchase_template("buyer-3", "creator-3", db, template_id="tpl", price=100, purchase_id="p-9")
        with pytest.raises(DuplicateTransactionError):
            await purchase_template("buyer-3", "creator-3", db, template_id="tpl", price=100, purchase_id="p-9")

    assert await _balance(ledger_sessions, "buyer-3") == 400
    assert await _balance(ledger_sessions, "creator-3") == 70


@pytest.mark.asyncio
async def test_history_is_newest_first_with_filters_and_page_ceiling(ledger_sessions):
    await _open(ledger_sessions, "historian", balance=10)
    async with ledger_sessions() as db:
        for _ in range(4):
            await apply_transaction("historian", db, direction="EARN", amount=5, source="manual")
        await apply_transaction("historian", db, direction="SPEND", amount=3, source="template_purchase")

        page = await get_history("historian", db, page=1, page_size=2)
        everything = await get_history("historian", db, page=1, page_size=500)
        spends = await get_history("historian", db, direction="SPEND")
        manual = await get_history("historian", db, source="manual")

    assert page["pagination"] == {"page": 1, "page_size": 2, "total": 6, "total_pages": 3, "has_more": True}
    assert page["items"][0]["type"] == "SPEND"
    assert everything["pagination"]["page_size"] == 100
    timestamps = [item["created_at"] for item in everything["items"]]
    assert timestamps == sorted(timestamps, reverse=True)
    assert spends["pagination"]["total"] == 1
    assert manual["pagination"]["total"] == 4


@pytest.mark.asyncio
async def test_summary_and_level_follow_lifetime_earned(ledger_sessions):
    await _open(ledger_sessions, "climber", balance=100)
    async with ledger_sessions() as db:
        await apply_transaction("climber", db, direction="EARN", amount=450, source="manual")
        await apply_transaction("climber", db, direction="SPEND", amount=300, source="template_purchase")
        summary = await get_summary("climber", db)
        count = (
            await db.execute(
                select(func.count(PointTransaction.id)).where(PointTransaction.user_id == "climber")
            )
        ).scalar()

    assert summary["current_balance"] == 250
    assert summary["lifetime_earned"] == 550
    assert summary["lifetime_spent"] == 300
    assert summary["transaction_count"] == count == 3
    # Spending does not demote: the level basis is lifetime earned points.
    assert summary["current_level"] == 2
    assert summary["next_level"] == 3
    assert summary["points_to_next_level"] == 950


@pytest.mark.asyncio
async def test_user_transactions_relationship_loads_eagerly(ledger_sessions):
    await _open(ledger_sessions, "related", balance=20)
    async with ledger_sessions() as db:
        await apply_transaction("related", db, direction="SPEND", amount=5, source="template_purchase")

    async with ledger_sessions() as db:
        result = await db.execute(
            select(User).options(selectinload(User.point_transactions)).where(User.id == "related")
        )
        user = result.scalar_one()

    assert sorted(entry.type for entry in user.point_transactions) == ["EARN", "SPEND"]
    assert all(entry.user_id == "related" for entry in user.point_transactions)


def test_level_thresholds():
    assert level_for_points(0) == 1
    assert level_for_points(499) == 1
    assert level_for_points(500) == 2
    assert level_for_points(1500) == 3
    assert level_for_points(3000) == 4
    assert level_for_points(6000) == 5
    assert level_for_points(99999) == 5
    assert next_level_threshold(6000) is None


def test_condition_evaluation():
    assert evaluate_conditions(None, {})
    assert evaluate_conditions({"min_questions": 3}, {"question_count": 3})
    assert not evaluate_conditions({"min_questions": 3}, {"question_count": "two"})
    assert not evaluate_conditions({"is_public": True}, {})


def test_points_day_starts_at_local_midnight(monkeypatch):
    from config import settings

    monkeypatch.setattr(settings, "POINTS_TIMEZONE", "Asia/Shanghai")
    now = datetime(2026, 3, 1, 18, 30, tzinfo=timezone.utc)
    assert points_day_start(now) == datetime(2026, 3, 1, 16, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_rule_listing_reports_daily_usage(ledger_sessions):
    await _open(ledger_sessions, "lister")
    async with ledger_sessions() as db:
        await award_for_action("lister", db, action="daily_login", reference_id="2026-03-01")
        listing = await list_rules_with_usage(db, user_id="lister")

    daily = next(rule for rule in listing["earn_rules"] if rule["action"] == "daily_login")
    assert daily["daily_used"] == 5
    assert daily["daily_remaining"] == 0
    assert [rule["action"] for rule in listing["spend_rules"]] == ["template_purchase"]
    assert len(listing["level_system"]["levels"]) == 5


def test_services_is_a_namespace_package():
    import services

    assert getattr(services, "__file__", None) is None
    assert any(path.endswith("services") for path in services.__path__)
