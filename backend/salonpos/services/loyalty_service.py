# Overview: Branch-scoped loyalty points (balance, redemption, accrual, history).

from __future__ import annotations

import math
from decimal import Decimal

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import LoyaltyAccount, LoyaltyTransaction
from ..errors import InsufficientPointsError, RedemptionExceedsTotalError, ValidationError
from ..time_utils import utcnow
from .concurrency import begin_write, run_atomic
from .ledger_service import append_ledger_event
"""
Loyalty invariants

- One account per (client_id, branch_id); points never cross branches.
- 1 point redeems 1 currency unit.
- Balance changes only through conditional UPDATEs, and each change appends a
  LoyaltyTransaction with the balance after it.
- Redemption and accrual happen inside finalize_sale; previews never write.
"""


TXN_EARN = "EARN"
TXN_REDEEM = "REDEEM"


def _require_points(points) -> int:
    if isinstance(points, bool) or not isinstance(points, int) or points < 0:
        raise ValidationError("loyalty points must be a non-negative integer", details={"points": points})
    return points


def get_account(client_id: str, branch_id: str) -> LoyaltyAccount | None:
    return (
        db.session.query(LoyaltyAccount)
        .filter_by(client_id=client_id, branch_id=branch_id)
        .first()
    )


def get_loyalty_points(client_id: str | None, branch_id: str) -> int:
    """Current balance at one branch. Unknown clients have 0 points."""
    if not client_id:
        return 0
    balance = (
        db.session.query(LoyaltyAccount.points_balance)
        .filter_by(client_id=client_id, branch_id=branch_id)
        .scalar()
    )
    return balance or 0


def get_all_branch_loyalty_points(client_id: str) -> list[dict]:
    accounts = (
        db.session.query(LoyaltyAccount)
        .filter_by(client_id=client_id)
        .order_by(LoyaltyAccount.branch_id.asc())
        .all()
    )
    return [{"branch_id": a.branch_id, "points_balance": a.points_balance} for a in accounts]


def check_redemption(client_id: str | None, branch_id: str, points: int, pre_redemption_total) -> None:
    """
    Raise if `points` cannot be redeemed against a bill. Read-only.
    """
    points = _require_points(points)
    if points == 0:
        return

    available = get_loyalty_points(client_id, branch_id)
    if points > available:
        raise InsufficientPointsError(requested=points, available=available)

    total = Decimal(str(pre_redemption_total))
    if points > total:
        raise RedemptionExceedsTotalError(requested=points, total=total)


def calculate_points_earned(qualifying_spend, accrual_rate=None) -> int:
    """floor(spend * rate), never negative."""
    if accrual_rate is None:
        accrual_rate = current_app.config.get("LOYALTY_ACCRUAL_RATE", 0.01)
    spend = Decimal(str(qualifying_spend))
    rate = Decimal(str(accrual_rate))
    if spend <= 0 or rate <= 0:
        return 0
    return int(math.floor(spend * rate))


def _get_or_create_account(client_id: str, branch_id: str) -> LoyaltyAccount:
    account = get_account(client_id, branch_id)
    if account:
        return account
    try:
        with db.session.begin_nested():
            account = LoyaltyAccount(client_id=client_id, branch_id=branch_id, points_balance=0)
            db.session.add(account)
    except IntegrityError:
        account = get_account(client_id, branch_id)
    return account


def _redeem_inner(
    *,
    client_id: str,
    branch_id: str,
    points: int,
    pre_redemption_total,
    sale_id: int | None = None,
    processed_by: str | None = None,
) -> LoyaltyTransaction | None:
    """Deduct points in the caller's transaction."""
    points = _require_points(points)
    if points == 0:
        return None

    total = Decimal(str(pre_redemption_total))
    if points > total:
        raise RedemptionExceedsTotalError(requested=points, total=total)

    stmt = (
        update(LoyaltyAccount)
        .where(
            LoyaltyAccount.client_id == client_id,
            LoyaltyAccount.branch_id == branch_id,
            LoyaltyAccount.points_balance >= points,
        )
        .values(
            points_balance=LoyaltyAccount.points_balance - points,
            lifetime_points_redeemed=LoyaltyAccount.lifetime_points_redeemed + points,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    if not db.session.execute(stmt).rowcount:
        raise InsufficientPointsError(requested=points, available=get_loyalty_points(client_id, branch_id))

    account = get_account(client_id, branch_id)
    db.session.refresh(account)

    txn = LoyaltyTransaction(
        account_id=account.id,
        client_id=client_id,
        branch_id=branch_id,
        transaction_type=TXN_REDEEM,
        points=-points,
        balance_after=account.points_balance,
        amount=Decimal(points),
        sale_id=sale_id,
        description=f"Redeemed {points} points",
        processed_by=processed_by,
        occurred_at=utcnow(),
    )
    db.session.add(txn)
    db.session.flush()

    append_ledger_event(
        branch_id=branch_id,
        event_type="loyalty.redeemed",
        event_category="loyalty",
        entity_type="loyalty_transaction",
        entity_id=txn.id,
        actor_id=processed_by,
        sale_id=sale_id,
        payload={"client_id": client_id, "points": points, "balance_after": account.points_balance},
    )
    return txn


def _accrue_inner(
    *,
    client_id: str,
    branch_id: str,
    qualifying_spend,
    accrual_rate=None,
    sale_id: int | None = None,
    processed_by: str | None = None,
) -> LoyaltyTransaction | None:
    """Award floor(spend * rate) points in the caller's transaction."""
    points = calculate_points_earned(qualifying_spend, accrual_rate)
    if points <= 0:
        return None

    account = _get_or_create_account(client_id, branch_id)
    stmt = (
        update(LoyaltyAccount)
        .where(LoyaltyAccount.id == account.id)
        .values(
            points_balance=LoyaltyAccount.points_balance + points,
            lifetime_points_earned=LoyaltyAccount.lifetime_points_earned + points,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    db.session.execute(stmt)
    db.session.refresh(account)

    txn = LoyaltyTransaction(
        account_id=account.id,
        client_id=client_id,
        branch_id=branch_id,
        transaction_type=TXN_EARN,
        points=points,
        balance_after=account.points_balance,
        amount=Decimal(str(qualifying_spend)),
        sale_id=sale_id,
        description=f"Earned {points} points",
        processed_by=processed_by,
        occurred_at=utcnow(),
    )
    db.session.add(txn)
    db.session.flush()

    append_ledger_event(
        branch_id=branch_id,
        event_type="loyalty.earned",
        event_category="loyalty",
        entity_type="loyalty_transaction",
        entity_id=txn.id,
        actor_id=processed_by,
        sale_id=sale_id,
        payload={"client_id": client_id, "points": points, "balance_after": account.points_balance},
    )
    return txn


def redeem_loyalty_points(
    client_id: str,
    branch_id: str,
    points: int,
    pre_redemption_total,
    *,
    sale_id: int | None = None,
    processed_by: str | None = None,
) -> LoyaltyTransaction | None:
    def _op():
        begin_write()
        txn = _redeem_inner(
            client_id=client_id,
            branch_id=branch_id,
            points=points,
            pre_redemption_total=pre_redemption_total,
            sale_id=sale_id,
            processed_by=processed_by,
        )
        db.session.commit()
        return txn

    return run_atomic(_op, operation="redeem_loyalty_points")


def accrue_loyalty_points(
    client_id: str,
    branch_id: str,
    qualifying_spend,
    accrual_rate=None,
    *,
    sale_id: int | None = None,
    processed_by: str | None = None,
) -> LoyaltyTransaction | None:
    def _op():
        begin_write()
        txn = _accrue_inner(
            client_id=client_id,
            branch_id=branch_id,
            qualifying_spend=qualifying_spend,
            accrual_rate=accrual_rate,
            sale_id=sale_id,
            processed_by=processed_by,
        )
        db.session.commit()
        return txn

    return run_atomic(_op, operation="accrue_loyalty_points")


def get_loyalty_history(client_id: str, branch_id: str | None = None, *, limit: int = 50) -> list[LoyaltyTransaction]:
    q = db.session.query(LoyaltyTransaction).filter_by(client_id=client_id)
    if branch_id:
        q = q.filter_by(branch_id=branch_id)
    return (
        q.order_by(LoyaltyTransaction.occurred_at.desc(), LoyaltyTransaction.id.desc())
        .limit(limit)
        .all()
    )
