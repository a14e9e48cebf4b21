"""Tests for partial payments and invoice reconciliation."""

import threading
from datetime import date, datetime
from decimal import Decimal

import pytest

from eltuff.errors import InvalidInputError, NotFoundError
from eltuff.models.invoice import InvoiceDraft


class TestAddPayment:
    def test_partial_then_full_payment(self, store, ledger, invoice):
        """131.25 invoice: 100.00 leaves it sent, 31.25 more settles it."""
        ledger.add_payment(invoice.id, "100.00", "cash", collected_by="Kofi")

        inv = store.get_invoice(invoice.id)
        assert inv.amount_paid == Decimal("100.00")
        assert inv.status == "sent"
        assert inv.paid_date is None

        ledger.add_payment(invoice.id, "31.25", "mobile_money", momo_network="MTN")

        inv = store.get_invoice(invoice.id)
        assert inv.amount_paid == Decimal("131.25")
        assert inv.status == "paid"
        assert inv.paid_date == date.today()

    def test_overpayment_counts_as_paid(self, store, ledger, invoice):
        ledger.add_payment(invoice.id, "150", "card")

        inv = store.get_invoice(invoice.id)
        assert inv.status == "paid"
        assert inv.amount_paid == Decimal("150")
        assert inv.balance_due() == 0

    def test_overdue_invoice_partial_payment_goes_back_to_sent(self, store, ledger, invoice):
        store.update_status("invoice", invoice.id, "sent")
        store.update_status("invoice", invoice.id, "overdue")

        ledger.add_payment(invoice.id, "10", "cash")

        assert store.get_invoice(invoice.id).status == "sent"

    @pytest.mark.parametrize("amounts", [["100.00", "31.25"], ["50", "50", "50"], ["0.01"], ["131.24", "0.01"]])
    def test_paid_iff_amount_covers_total(self, store, ledger, invoice, amounts):
        for amt in amounts:
            ledger.add_payment(invoice.id, amt, "cash")
            inv = store.get_invoice(invoice.id)
            assert (inv.status == "paid") == (inv.amount_paid >= inv.total_amount)

    def test_paid_date_set_once(self, store, ledger, db, invoice):
        ledger.add_payment(invoice.id, "131.25", "cash")
        db.invoices.update(invoice.id, {"paid_date": "2026-01-01"})

        ledger.add_payment(invoice.id, "5", "cash")

        assert store.get_invoice(invoice.id).paid_date == date(2026, 1, 1)

    def test_payment_fields_persisted(self, ledger, invoice):
        at = datetime(2026, 5, 4, 9, 30)
        p = ledger.add_payment(
            invoice.id, "20", "bank_transfer", collected_by="Esi", received_at=at, reference="TRX-1", notes="part"
        )

        [stored] = ledger.list_payments(invoice.id)
        assert stored.id == p.id
        assert stored.amount == Decimal("20")
        assert stored.method == "bank_transfer"
        assert stored.received_at == at
        assert stored.reference == "TRX-1"

    def test_list_payments_newest_first(self, ledger, invoice):
        ledger.add_payment(invoice.id, "1", "cash", received_at=datetime(2026, 1, 1, 8, 0))
        ledger.add_payment(invoice.id, "2", "cash", received_at=datetime(2026, 3, 1, 8, 0))
        ledger.add_payment(invoice.id, "3", "cash", received_at=datetime(2026, 2, 1, 8, 0))

        assert [p.amount for p in ledger.list_payments(invoice.id)] == [Decimal("2"), Decimal("3"), Decimal("1")]


class TestPaymentValidation:
    @pytest.mark.parametrize("amount", ["0", "-5", 0])
    def test_amount_must_be_positive(self, ledger, db, invoice, amount):
        with pytest.raises(InvalidInputError):
            ledger.add_payment(invoice.id, amount, "cash")

        assert db.payments.list_all() == []

    def test_unknown_method(self, ledger, invoice):
        with pytest.raises(InvalidInputError):
            ledger.add_payment(invoice.id, "5", "cheque")

    def test_unknown_momo_network(self, ledger, invoice):
        with pytest.raises(InvalidInputError):
            ledger.add_payment(invoice.id, "5", "mobile_money", momo_network="Glo")

    def test_unknown_invoice(self, ledger, db):
        with pytest.raises(NotFoundError):
            ledger.add_payment("missing", "5", "cash")

        assert db.payments.list_all() == []

    def test_cancelled_invoice_refuses_payments(self, store, ledger, invoice):
        store.update_status("invoice", invoice.id, "cancelled")

        with pytest.raises(InvalidInputError):
            ledger.add_payment(invoice.id, "5", "cash")


class TestDeletePayment:
    def test_delete_keeps_paid_status(self, store, ledger, invoice):
        """Retracting 31.25 from a settled 131.25 invoice leaves it paid, flagged for a re-check."""
        ledger.add_payment(invoice.id, "100.00", "cash")
        last = ledger.add_payment(invoice.id, "31.25", "cash")
        assert store.get_invoice(invoice.id).status == "paid"

        remaining = ledger.delete_payment(last.id, invoice.id)

        inv = store.get_invoice(invoice.id)
        assert remaining == Decimal("100.00")
        assert inv.amount_paid == Decimal("100.00")
        assert inv.status == "paid"
        assert ledger.needs_status_recheck(invoice.id)

    def test_delete_on_unpaid_invoice(self, store, ledger, invoice):
        p = ledger.add_payment(invoice.id, "40", "cash")
        ledger.add_payment(invoice.id, "10", "cash")

        ledger.delete_payment(p.id, invoice.id)

        inv = store.get_invoice(invoice.id)
        assert inv.amount_paid == Decimal("10")
        assert inv.status == "sent"
        assert not ledger.needs_status_recheck(invoice.id)

    def test_delete_requires_matching_invoice(self, store, ledger, invoice, items):
        other = store.create_invoice(InvoiceDraft(items=items))
        p = ledger.add_payment(invoice.id, "10", "cash")

        with pytest.raises(NotFoundError):
            ledger.delete_payment(p.id, other.id)
        with pytest.raises(NotFoundError):
            ledger.delete_payment("missing", invoice.id)

        assert len(ledger.list_payments(invoice.id)) == 1


class TestRecompute:
    def test_recompute_is_idempotent(self, ledger, invoice):
        ledger.add_payment(invoice.id, "12.50", "cash")
        ledger.add_payment(invoice.id, "7.25", "card")

        first = ledger.recompute_amount_paid(invoice.id)
        second = ledger.recompute_amount_paid(invoice.id)

        assert first == second == Decimal("19.75")

    def test_recompute_heals_manual_drift(self, store, ledger, db, invoice):
        ledger.add_payment(invoice.id, "12.50", "cash")
        db.invoices.update(invoice.id, {"amount_paid": "999"})

        ledger.recompute_amount_paid(invoice.id)

        assert store.get_invoice(invoice.id).amount_paid == Decimal("12.50")

    def test_failed_recompute_is_healed_by_next_payment(self, store, ledger, db, invoice, monkeypatch):
        calls = {"n": 0}
        real_write = store.write_payment_state

        def flaky(*args, **kwargs):
            calls["n"] += 1
            if calls["n"] == 1:
                raise OSError("connection reset")
            return real_write(*args, **kwargs)

        monkeypatch.setattr(store, "write_payment_state", flaky)

        with pytest.raises(OSError):
            ledger.add_payment(invoice.id, "100.00", "cash")

        # payment row kept, invoice transiently behind
        assert len(db.payments.list_all()) == 1
        assert store.get_invoice(invoice.id).amount_paid == 0

        ledger.add_payment(invoice.id, "31.25", "cash")

        inv = store.get_invoice(invoice.id)
        assert inv.amount_paid == Decimal("131.25")
        assert inv.status == "paid"


class TestConcurrentPayments:
    def test_concurrent_payments_do_not_lose_updates(self, store, ledger, invoice):
        errors = []

        def pay():
            try:
                ledger.add_payment(invoice.id, "13.125", "cash")
            except Exception as e:  # pragma: no cover
                errors.append(e)

        threads = [threading.Thread(target=pay) for _ in range(10)]
        for th in threads:
            th.start()
        for th in threads:
            th.join()

        inv = store.get_invoice(invoice.id)
        assert errors == []
        assert len(ledger.list_payments(invoice.id)) == 10
        assert inv.amount_paid == Decimal("131.25")
        assert inv.status == "paid"

    def _run_during_invoice_check(self, monkeypatch, store, action):
        """Start `action` in another thread right after the ledger has read the invoice."""
        original = store.invoice_header
        state = {"thread": None, "blocked": None}

        def header(invoice_id):
            row = original(invoice_id)
            if state["thread"] is None:
                state["thread"] = threading.Thread(target=action)
                state["thread"].start()
                state["thread"].join(timeout=0.2)
                state["blocked"] = state["thread"].is_alive()
            return row

        monkeypatch.setattr(store, "invoice_header", header)
        return state

    def test_cancel_waits_for_payment_in_progress(self, store, ledger, invoice, monkeypatch):
        state = self._run_during_invoice_check(
            monkeypatch, store, lambda: store.update_status("invoice", invoice.id, "cancelled")
        )

        ledger.add_payment(invoice.id, "50", "cash")
        state["thread"].join()

        inv = store.get_invoice(invoice.id)
        assert state["blocked"] is True
        assert inv.amount_paid == Decimal("50")
        assert inv.status == "cancelled"

    def test_delete_invoice_waits_for_payment_in_progress(self, store, ledger, db, invoice, monkeypatch):
        state = self._run_during_invoice_check(monkeypatch, store, lambda: store.delete_invoice(invoice.id))

        ledger.add_payment(invoice.id, "50", "cash")
        state["thread"].join()

        assert state["blocked"] is True
        assert db.invoices.get_by_id(invoice.id) is None
        assert db.payments.select_eq("invoice_id", invoice.id) == []

    def test_concurrent_delete_of_same_payment(self, store, ledger, db, invoice, monkeypatch):
        p = ledger.add_payment(invoice.id, "50", "cash")
        original = db.payments.get_by_id
        state = {"thread": None, "blocked": None, "errors": []}

        def second_delete():
            try:
                ledger.delete_payment(p.id, invoice.id)
            except NotFoundError as e:
                state["errors"].append(e)

        def get_by_id(obj_id):
            row = original(obj_id)
            if state["thread"] is None:
                state["thread"] = threading.Thread(target=second_delete)
                state["thread"].start()
                state["thread"].join(timeout=0.2)
                state["blocked"] = state["thread"].is_alive()
            return row

        monkeypatch.setattr(db.payments, "get_by_id", get_by_id)

        assert ledger.delete_payment(p.id, invoice.id) == Decimal("0")
        state["thread"].join()

        assert state["blocked"] is True
        assert len(state["errors"]) == 1
        assert store.get_invoice(invoice.id).amount_paid == Decimal("0")
