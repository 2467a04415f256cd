"""
Payment request workflow tests.

Verifies:
- Requests only from installed-or-later, non-terminal deals
- Approval: deal terminal, every open commission paid, pin synced
- Second approval -> AlreadyProcessed with the first paid_date intact
- Rejection leaves commissions untouched and allows re-request
- Pin sync failure does not undo the approval
"""

from datetime import date, datetime, timezone

import pytest
from sqlalchemy.exc import OperationalError

from dealflow.models import Commission, Deal, DealEvent, Pin
from dealflow.services import commission_service, deal_service, payment_request_service, pin_service
from dealflow.services.deal_service import InvalidTransitionError
from dealflow.services.payment_request_service import AlreadyProcessedError, NotRequestedError
from dealflow.time_utils import today


class TestRequestPayment:
    def test_request_from_installed(self, installed_deal):
        deal = payment_request_service.request_payment(installed_deal.id, actor_user_id="rep-a")
        assert deal.payment_requested is True
        assert deal.payment_status == "requested"
        assert deal.payment_requested_at is not None

    def test_request_is_idempotent_while_pending(self, installed_deal):
        first = payment_request_service.request_payment(installed_deal.id)
        requested_at = first.payment_requested_at
        again = payment_request_service.request_payment(installed_deal.id)
        assert again.payment_requested_at == requested_at

    def test_request_before_install_rejected(self, db_session, rep_a):
        deal = deal_service.create_deal({"homeowner_name": "X", "address": "1 A St"})
        with pytest.raises(InvalidTransitionError):
            payment_request_service.request_payment(deal.id)
        assert db_session.get(Deal, deal.id).payment_requested is False

    def test_request_on_terminal_deal_rejected(self, installed_deal, advance):
        advance(installed_deal.id, "invoice_sent", "depreciation_collected", "complete")
        with pytest.raises(InvalidTransitionError):
            payment_request_service.request_payment(installed_deal.id)

    def test_legacy_complete_is_payable(self, db_session, advance):
        deal = deal_service.create_deal({"homeowner_name": "X", "address": "2 L St"}, vocabulary="legacy")
        advance(deal.id, "signed", "permit", "install_scheduled", "installed", "complete")
        requested = payment_request_service.request_payment(deal.id)
        assert requested.payment_requested is True

    def test_pending_request_blocks_manual_terminal_move(self, installed_deal, advance):
        payment_request_service.request_payment(installed_deal.id)
        advance(installed_deal.id, "invoice_sent", "depreciation_collected")
        with pytest.raises(InvalidTransitionError):
            deal_service.transition_deal(installed_deal.id, "complete", is_admin=True)

    def test_pending_queue(self, installed_deal):
        assert payment_request_service.list_pending_requests() == []
        payment_request_service.request_payment(installed_deal.id)
        assert [d.id for d in payment_request_service.list_pending_requests()] == [installed_deal.id]

    def test_pending_queue_newest_first(self, db_session, advance):
        older = deal_service.create_deal({"homeowner_name": "A", "address": "10 Q St"}, vocabulary="legacy")
        newer = deal_service.create_deal({"homeowner_name": "B", "address": "11 Q St"}, vocabulary="legacy")
        for deal, requested_at in (
            (older, datetime(2026, 1, 1, tzinfo=timezone.utc)),
            (newer, datetime(2026, 2, 1, tzinfo=timezone.utc)),
        ):
            advance(deal.id, "signed", "permit", "install_scheduled", "installed")
            payment_request_service.request_payment(deal.id)
            db_session.get(Deal, deal.id).payment_requested_at = requested_at
        db_session.commit()

        ids = [d.id for d in payment_request_service.list_pending_requests()]
        assert ids == [newer.id, older.id]


class TestApprove:
    def test_end_to_end_settlement(self, installed_deal, db_session):
        deal_id = installed_deal.id
        assert commission_service.total_owed(deal_id) == 150_000

        payment_request_service.request_payment(deal_id)
        result = payment_request_service.approve_payment_request(deal_id, approved_by_user_id="admin-1")

        deal = db_session.get(Deal, deal_id)
        assert deal.status == "complete"
        assert deal.payment_requested is False
        assert deal.payment_status == "approved"
        assert deal.payment_reviewed_by == "admin-1"
        assert deal.completion_date == today()

        assert len(result.commissions_paid) == 2
        assert all(c.paid and c.paid_date == today() for c in deal.commissions)
        assert commission_service.total_owed(deal_id) == 0
        assert commission_service.total_paid(deal_id) == 150_000

        assert result.pin_synced is True
        assert result.warnings == []
        pin = db_session.query(Pin).filter_by(deal_id=deal_id).one()
        assert pin.status == "installed"

    def test_approve_writes_events(self, installed_deal, db_session):
        payment_request_service.request_payment(installed_deal.id)
        payment_request_service.approve_payment_request(installed_deal.id)
        types = [e.event_type for e in db_session.query(DealEvent).filter_by(deal_id=installed_deal.id)]
        assert types.count("COMMISSION_PAID") == 2
        assert "PAYMENT_APPROVED" in types
        assert "PIN_SYNCED" in types

    def test_already_paid_commission_keeps_its_date(self, installed_deal, db_session):
        first = installed_deal.commissions[0]
        commission_service.mark_commission_paid(first.id, paid_date=date(2024, 1, 2))

        payment_request_service.request_payment(installed_deal.id)
        result = payment_request_service.approve_payment_request(installed_deal.id)

        assert len(result.commissions_paid) == 1
        assert db_session.get(Commission, first.id).paid_date == date(2024, 1, 2)

    def test_legacy_approval_moves_to_paid(self, db_session, rep_a, advance):
        deal = deal_service.create_deal(
            {"homeowner_name": "X", "address": "3 L St", "total_price_cents": 500_000},
            vocabulary="legacy",
            commissions=[{"rep_id": rep_a.id}],
        )
        advance(deal.id, "signed", "permit", "install_scheduled", "installed")
        payment_request_service.request_payment(deal.id)
        result = payment_request_service.approve_payment_request(deal.id)
        assert result.deal.status == "paid"
        assert result.pin_id is None

    def test_never_requested(self, installed_deal, db_session):
        with pytest.raises(NotRequestedError):
            payment_request_service.approve_payment_request(installed_deal.id)
        deal = db_session.get(Deal, installed_deal.id)
        assert deal.status == "installed"
        assert all(not c.paid for c in deal.commissions)

    def test_second_approval_already_processed(self, installed_deal, db_session):
        payment_request_service.request_payment(installed_deal.id)
        payment_request_service.approve_payment_request(installed_deal.id)
        paid_dates = [c.paid_date for c in db_session.get(Deal, installed_deal.id).commissions]

        with pytest.raises(AlreadyProcessedError):
            payment_request_service.approve_payment_request(installed_deal.id)
        assert [c.paid_date for c in db_session.get(Deal, installed_deal.id).commissions] == paid_dates

    def test_pin_sync_failure_keeps_approval(self, installed_deal, db_session, monkeypatch):
        def broken_sync(deal_id, **kwargs):
            raise OperationalError("UPDATE pins", {}, Exception("database is locked"))

        monkeypatch.setattr(pin_service, "sync_pin_for_deal", broken_sync)

        payment_request_service.request_payment(installed_deal.id)
        result = payment_request_service.approve_payment_request(installed_deal.id)

        assert result.pin_synced is False
        assert result.pin_id is not None
        assert len(result.warnings) == 1

        deal = db_session.get(Deal, installed_deal.id)
        assert deal.status == "complete"
        assert all(c.paid for c in deal.commissions)
        assert db_session.get(Pin, result.pin_id).status == "appointment"

    def test_pin_lookup_failure_keeps_approval(self, installed_deal, db_session, monkeypatch):
        def broken_lookup(deal_id):
            raise OperationalError("SELECT pins", {}, Exception("database is locked"))

        monkeypatch.setattr(pin_service, "find_pin_for_deal", broken_lookup)

        payment_request_service.request_payment(installed_deal.id)
        result = payment_request_service.approve_payment_request(installed_deal.id)

        assert result.pin_synced is False
        assert result.pin_id is None
        assert len(result.warnings) == 1
        assert len(result.commissions_paid) == 2

        deal = db_session.get(Deal, installed_deal.id)
        assert deal.status == "complete"
        assert deal.payment_status == "approved"
        assert all(c.paid for c in deal.commissions)

    def test_misconfigured_pin_status_keeps_approval(self, app, installed_deal, db_session, monkeypatch):
        monkeypatch.setitem(app.config, "PIN_INSTALLED_STATUS", "not_a_pin_status")

        payment_request_service.request_payment(installed_deal.id)
        result = payment_request_service.approve_payment_request(installed_deal.id)

        assert result.pin_synced is False
        assert result.pin_id is not None
        assert len(result.warnings) == 1
        assert db_session.get(Deal, installed_deal.id).status == "complete"

    def test_reconcile_repairs_missed_pin(self, installed_deal, db_session, monkeypatch):
        def broken_sync(deal_id, **kwargs):
            raise OperationalError("UPDATE pins", {}, Exception("database is locked"))

        monkeypatch.setattr(pin_service, "sync_pin_for_deal", broken_sync)
        payment_request_service.request_payment(installed_deal.id)
        payment_request_service.approve_payment_request(installed_deal.id)
        monkeypatch.undo()

        assert pin_service.reconcile_approved_pins(dry_run=True) != []
        repaired = pin_service.reconcile_approved_pins()
        assert len(repaired) == 1
        assert pin_service.reconcile_approved_pins(dry_run=True) == []


class TestReject:
    def test_reject_leaves_commissions(self, installed_deal, db_session):
        payment_request_service.request_payment(installed_deal.id)
        deal = payment_request_service.reject_payment_request(
            installed_deal.id, rejected_by_user_id="admin-1", reason="No permit photo"
        )
        assert deal.payment_requested is False
        assert deal.payment_requested_at is None
        assert deal.payment_status == "rejected"
        assert deal.status == "installed"
        assert all(not c.paid for c in deal.commissions)

    def test_reject_then_rerequest_then_approve(self, installed_deal):
        payment_request_service.request_payment(installed_deal.id)
        payment_request_service.reject_payment_request(installed_deal.id)

        with pytest.raises(AlreadyProcessedError):
            payment_request_service.reject_payment_request(installed_deal.id)

        payment_request_service.request_payment(installed_deal.id)
        result = payment_request_service.approve_payment_request(installed_deal.id)
        assert result.deal.payment_status == "approved"

    def test_reject_never_requested(self, installed_deal):
        with pytest.raises(NotRequestedError):
            payment_request_service.reject_payment_request(installed_deal.id)
