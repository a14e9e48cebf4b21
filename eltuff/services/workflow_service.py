from __future__ import annotations
import logging
import os
from collections import Counter
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from eltuff.models.common import ZERO
from eltuff.services.conversion_service import QuoteConversionService
from eltuff.services.document_store import DocumentStore
from eltuff.services.payment_ledger import PaymentLedger
from eltuff.services.status_rules import is_expired, is_overdue
from eltuff.settings import DATA_DIR
from eltuff.storage.repo import Database

logger = logging.getLogger(__name__)


class BillingSummary(BaseModel):
    outstanding: Decimal = ZERO  # reste dû sur sent + overdue
    collected: Decimal = ZERO  # total encaissé (hors factures annulées)
    paid_total: Decimal = ZERO  # total des factures soldées
    invoice_counts: Dict[str, int] = Field(default_factory=dict)
    quote_counts: Dict[str, int] = Field(default_factory=dict)


class BillingWorkflow:
    def __init__(self, data_dir: Optional[os.PathLike | str] = None, db: Optional[Database] = None):
        self.db = db or Database(data_dir or DATA_DIR)
        self.documents = DocumentStore(self.db)
        self.ledger = PaymentLedger(self.documents)
        self.conversion = QuoteConversionService(self.documents)

    # Envoi au client
    def send_quote(self, quote_id: str) -> None:
        self.documents.update_status("quote", quote_id, "sent")

    def send_invoice(self, invoice_id: str) -> None:
        self.documents.update_status("invoice", invoice_id, "sent")

    def cancel_invoice(self, invoice_id: str) -> None:
        self.documents.update_status("invoice", invoice_id, "cancelled")

    # Contrôles d'échéance, lancés par l'appelant
    def mark_overdue(self, today: Optional[date] = None) -> List[str]:
        today = today or date.today()
        moved: List[str] = []
        for inv in self.documents.list_invoices(status="sent"):
            if is_overdue(inv, today):
                self.documents.update_status("invoice", inv.id, "overdue")
                moved.append(inv.id)
        if moved:
            logger.info("%s facture(s) passée(s) en retard", len(moved))
        return moved

    def expire_quotes(self, today: Optional[date] = None) -> List[str]:
        today = today or date.today()
        moved: List[str] = []
        for q in self.documents.list_quotes(status="sent"):
            if is_expired(q, today):
                self.documents.update_status("quote", q.id, "expired")
                moved.append(q.id)
        if moved:
            logger.info("%s devis expiré(s)", len(moved))
        return moved

    def summary(self) -> BillingSummary:
        invoices = self.documents.list_invoices()
        quotes = self.documents.list_quotes()
        s = BillingSummary(
            invoice_counts=dict(Counter(i.status for i in invoices)),
            quote_counts=dict(Counter(q.status for q in quotes)),
        )
        for inv in invoices:
            if inv.status in ("sent", "overdue"):
                s.outstanding += inv.balance_due()
            if inv.status != "cancelled":
                s.collected += inv.amount_paid
            if inv.status == "paid":
                s.paid_total += inv.total_amount
        return s
