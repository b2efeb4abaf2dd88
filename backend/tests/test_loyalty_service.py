# Overview: Pytest coverage for branch-scoped loyalty points.

from decimal import Decimal

import pytest

from salonpos.errors import InsufficientPointsError, RedemptionExceedsTotalError, ValidationError
from salonpos.models import LedgerEvent, LoyaltyAccount, LoyaltyTransaction
from salonpos.services import loyalty_service
from conftest import BRANCH, OTHER_BRANCH


def _balance(db_session, client_id="C1", branch_id=BRANCH):
    db_session.expire_all()
    return loyalty_service.get_loyalty_points(client_id, branch_id)


class TestBalances:
    def test_unknown_client_has_zero(self, db_session):
        assert loyalty_service.get_loyalty_points("NOBODY", BRANCH) == 0
        assert loyalty_service.get_loyalty_points(None, BRANCH) == 0

    def test_points_are_branch_scoped(self, db_session, make_loyalty_account):
        make_loyalty_account("C1", 100, branch_id=BRANCH)
        make_loyalty_account("C1", 40, branch_id=OTHER_BRANCH)

        assert loyalty_service.get_loyalty_points("C1", BRANCH) == 100
        assert loyalty_service.get_loyalty_points("C1", OTHER_BRANCH) == 40
        assert loyalty_service.get_all_branch_loyalty_points("C1") == [
            {"branch_id": BRANCH, "points_balance": 100},
            {"branch_id": OTHER_BRANCH, "points_balance": 40},
        ]


class TestCheckRedemption:
    def test_scenario_c_rejected(self, db_session, make_loyalty_account):
        """100 points available, 150 requested: rejected, balance untouched."""
        make_loyalty_account("C1", 100)

        with pytest.raises(InsufficientPointsError) as exc:
            loyalty_service.check_redemption("C1", BRANCH, 150, Decimal("500"))

        assert exc.value.requested == 150
        assert exc.value.available == 100
        assert _balance(db_session) == 100

    def test_cannot_exceed_bill_total(self, db_session, make_loyalty_account):
        make_loyalty_account("C1", 1000)

        with pytest.raises(RedemptionExceedsTotalError):
            loyalty_service.check_redemption("C1", BRANCH, 600, Decimal("599.99"))

    def test_other_branch_points_do_not_count(self, db_session, make_loyalty_account):
        make_loyalty_account("C1", 500, branch_id=OTHER_BRANCH)

        with pytest.raises(InsufficientPointsError):
            loyalty_service.check_redemption("C1", BRANCH, 10, Decimal("100"))

    def test_zero_points_always_ok(self, db_session):
        loyalty_service.check_redemption(None, BRANCH, 0, Decimal("0"))

    @pytest.mark.parametrize("points", [-1, 2.5, "10", True])
    def test_invalid_points(self, db_session, points):
        with pytest.raises(ValidationError):
            loyalty_service.check_redemption("C1", BRANCH, points, Decimal("100"))


class TestRedeem:
    def test_redeem_deducts_and_logs(self, db_session, make_loyalty_account):
        make_loyalty_account("C1", 100)

        txn = loyalty_service.redeem_loyalty_points("C1", BRANCH, 30, Decimal("200"), processed_by="cashier")

        assert txn.transaction_type == loyalty_service.TXN_REDEEM
        assert txn.points == -30
        assert txn.balance_after == 70
        assert _balance(db_session) == 70

        account = db_session.query(LoyaltyAccount).filter_by(client_id="C1").one()
        assert account.lifetime_points_redeemed == 30

        events = db_session.query(LedgerEvent).filter_by(event_type="loyalty.redeemed").all()
        assert len(events) == 1
        assert events[0].payload["points"] == 30

    def test_failed_redeem_writes_nothing(self, db_session, make_loyalty_account):
        make_loyalty_account("C1", 20)

        with pytest.raises(InsufficientPointsError):
            loyalty_service.redeem_loyalty_points("C1", BRANCH, 50, Decimal("200"))

        assert _balance(db_session) == 20
        assert db_session.query(LoyaltyTransaction).count() == 0

    def test_redeem_zero_is_noop(self, db_session, make_loyalty_account):
        make_loyalty_account("C1", 20)
        assert loyalty_service.redeem_loyalty_points("C1", BRANCH, 0, Decimal("10")) is None
        assert _balance(db_session) == 20


class TestAccrue:
    @pytest.mark.parametrize(
        "spend, rate, expected",
        [
            (Decimal("470.00"), Decimal("0.01"), 4),
            (Decimal("99.99"), Decimal("0.01"), 0),
            (Decimal("1000"), Decimal("0.05"), 50),
            (Decimal("-10"), Decimal("0.01"), 0),
        ],
    )
    def test_points_earned_is_floored(self, app, spend, rate, expected):
        assert loyalty_service.calculate_points_earned(spend, rate) == expected

    def test_default_rate_from_config(self, app):
        # conftest sets LOYALTY_ACCRUAL_RATE = 0.01
        assert loyalty_service.calculate_points_earned(Decimal("250")) == 2

    def test_accrue_creates_account(self, db_session):
        txn = loyalty_service.accrue_loyalty_points("NEW", BRANCH, Decimal("1200"), Decimal("0.01"))

        assert txn.points == 12
        assert txn.balance_after == 12
        assert _balance(db_session, "NEW") == 12
        assert loyalty_service.get_loyalty_points("NEW", OTHER_BRANCH) == 0

    def test_accrue_below_one_point_writes_nothing(self, db_session):
        assert loyalty_service.accrue_loyalty_points("NEW", BRANCH, Decimal("50"), Decimal("0.01")) is None
        assert db_session.query(LoyaltyAccount).count() == 0


class TestHistory:
    def test_history_newest_first_and_branch_filter(self, db_session, make_loyalty_account):
        make_loyalty_account("C1", 100)
        loyalty_service.redeem_loyalty_points("C1", BRANCH, 10, Decimal("100"))
        loyalty_service.accrue_loyalty_points("C1", BRANCH, Decimal("500"), Decimal("0.01"))
        loyalty_service.accrue_loyalty_points("C1", OTHER_BRANCH, Decimal("300"), Decimal("0.01"))

        history = loyalty_service.get_loyalty_history("C1", BRANCH)
        assert [t.transaction_type for t in history] == ["EARN", "REDEEM"]
        assert len(loyalty_service.get_loyalty_history("C1")) == 3
