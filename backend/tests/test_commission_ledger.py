"""
Commission ledger tests.

Verifies:
- amount = round_half_up(deal_value * percent), deal_value = rcv ?? total_price
- rep default percent applies when none is given
- idempotency keys make add_commission safe to retry
- paying twice raises AlreadyPaidError and keeps the first paid_date
- totals: owed counts unpaid rows, paid counts paid rows
"""

from datetime import date

import pytest

from dealflow.models import Commission
from dealflow.services import commission_service, deal_service
from dealflow.services.commission_service import AlreadyPaidError
from dealflow.validation import NotFoundError, ValidationError, parse_percent_bps


@pytest.fixture
def deal(db_session):
    return deal_service.create_deal(
        {"homeowner_name": "Pat Doe", "address": "9 Elm St", "total_price_cents": 1_000_000},
    )


class TestCommissionMath:
    @pytest.mark.parametrize(
        "value,bps,expected",
        [
            (1_000_000, 1000, 100_000),
            (1_000_000, 500, 50_000),
            (12_345, 750, 926),     # 925.875
            (10_001, 50, 50),       # 50.005 -> 50 (half-up on cents, not sub-cent)
            (1, 5000, 1),           # 0.5 rounds up
            (0, 1000, 0),
        ],
    )
    def test_compute_amount(self, value, bps, expected):
        assert commission_service.compute_commission_amount_cents(value, bps) == expected

    def test_percent_parsing_is_exact(self):
        assert parse_percent_bps("10.1") == 1010
        assert parse_percent_bps(10.1) == 1010
        assert parse_percent_bps(7) == 700

    @pytest.mark.parametrize("bad", ["101", "-1", "10.125", "abc", None, True])
    def test_percent_parsing_rejects(self, bad):
        with pytest.raises(ValidationError):
            parse_percent_bps(bad)


class TestAddCommission:
    def test_default_percent_from_rep(self, deal, rep_a):
        c = commission_service.add_commission(deal.id, rep_a.id, "self_gen")
        assert c.commission_percent_bps == 1000
        assert c.commission_amount_cents == 100_000
        assert c.paid is False

    def test_rcv_wins_over_total_price(self, db_session, rep_a):
        deal = deal_service.create_deal(
            {"homeowner_name": "X", "address": "5 E St", "total_price_cents": 1_000_000, "rcv_cents": 1_200_000},
        )
        c = commission_service.add_commission(deal.id, rep_a.id, "setter", "10")
        assert c.deal_value_cents == 1_200_000
        assert c.commission_amount_cents == 120_000

    def test_zero_value_deal(self, db_session, rep_a):
        deal = deal_service.create_deal({"homeowner_name": "X", "address": "6 F St"})
        c = commission_service.add_commission(deal.id, rep_a.id, "referral", "10")
        assert c.commission_amount_cents == 0

    def test_inactive_rep_rejected(self, deal, inactive_rep):
        with pytest.raises(ValidationError):
            commission_service.add_commission(deal.id, inactive_rep.id, "self_gen")

    def test_unknown_rep_rejected(self, deal):
        with pytest.raises(ValidationError):
            commission_service.add_commission(deal.id, 4242, "self_gen")

    def test_bad_type_rejected(self, deal, rep_a):
        with pytest.raises(ValidationError):
            commission_service.add_commission(deal.id, rep_a.id, "bonus")

    def test_missing_deal(self, db_session, rep_a):
        with pytest.raises(NotFoundError):
            commission_service.add_commission(9999, rep_a.id, "self_gen")

    def test_without_key_creates_duplicates(self, deal, rep_a, db_session):
        commission_service.add_commission(deal.id, rep_a.id, "self_gen")
        commission_service.add_commission(deal.id, rep_a.id, "self_gen")
        assert db_session.query(Commission).filter_by(deal_id=deal.id).count() == 2

    def test_idempotency_key_returns_existing(self, deal, rep_a, db_session):
        first = commission_service.add_commission(deal.id, rep_a.id, "self_gen", idempotency_key="k-1")
        second = commission_service.add_commission(deal.id, rep_a.id, "self_gen", "50", idempotency_key="k-1")
        assert first.id == second.id
        assert second.commission_percent_bps == 1000
        assert db_session.query(Commission).filter_by(deal_id=deal.id).count() == 1


class TestMarkPaid:
    def test_mark_paid(self, deal, rep_a):
        c = commission_service.add_commission(deal.id, rep_a.id, "self_gen")
        paid = commission_service.mark_commission_paid(c.id, paid_date=date(2024, 6, 30))
        assert paid.paid is True
        assert paid.paid_date == date(2024, 6, 30)

    def test_double_pay_keeps_first_date(self, deal, rep_a):
        c = commission_service.add_commission(deal.id, rep_a.id, "self_gen")
        commission_service.mark_commission_paid(c.id, paid_date=date(2024, 6, 30))

        with pytest.raises(AlreadyPaidError) as exc_info:
            commission_service.mark_commission_paid(c.id, paid_date=date(2024, 7, 1))
        assert exc_info.value.commission.paid_date == date(2024, 6, 30)

    def test_missing_commission(self, db_session):
        with pytest.raises(NotFoundError):
            commission_service.mark_commission_paid(9999)


class TestTotals:
    def test_owed_and_paid(self, deal, rep_a, rep_b):
        c1 = commission_service.add_commission(deal.id, rep_a.id, "self_gen")        # 100,000
        commission_service.add_commission(deal.id, rep_b.id, "closer")               # 50,000
        assert commission_service.total_owed(deal.id) == 150_000
        assert commission_service.total_paid(deal.id) == 0

        commission_service.mark_commission_paid(c1.id)
        assert commission_service.total_owed(deal.id) == 50_000
        assert commission_service.total_paid(deal.id) == 100_000

    def test_summary_flags_over_100_percent(self, deal, rep_a, rep_b):
        commission_service.add_commission(deal.id, rep_a.id, "self_gen", "60")
        commission_service.add_commission(deal.id, rep_b.id, "closer", "45")
        summary = commission_service.get_commission_summary(deal.id)
        assert summary["percent_total"] == "105.00"
        assert summary["exceeds_100_percent"] is True
        assert summary["commission_count"] == 2

    def test_listing_filters(self, deal, rep_a, rep_b):
        c1 = commission_service.add_commission(deal.id, rep_a.id, "self_gen")
        commission_service.add_commission(deal.id, rep_b.id, "closer")
        commission_service.mark_commission_paid(c1.id)

        assert [c.id for c in commission_service.list_commissions(rep_id=rep_a.id)] == [c1.id]
        assert len(commission_service.list_commissions(deal_id=deal.id, paid=False)) == 1
        assert len(commission_service.list_commissions(paid=True)) == 1
