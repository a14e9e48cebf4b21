# eltuff/services/payment_ledger.py
from __future__ import annotations
import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, get_args

from pydantic import ValidationError

from eltuff.errors import InvalidInputError, NotFoundError
from eltuff.models.common import ZERO
from eltuff.models.payment import MomoNetwork, Payment, PaymentMethod
from eltuff.services.calculator import to_decimal
from eltuff.services.document_store import DocumentStore
from eltuff.services.status_rules import needs_status_recheck, status_after_payment

logger = logging.getLogger(__name__)

PAYMENT_METHODS = frozenset(get_args(PaymentMethod))
MOMO_NETWORKS = frozenset(get_args(MomoNetwork))


class PaymentLedger:
    """
    Encaissements partiels d'une facture.
    Après chaque ajout/suppression, amount_paid est recalculé à partir de TOUTES
    les lignes de paiement (jamais par incrément) : un recalcul manqué est
    rattrapé au prochain évènement.
    """

    def __init__(self, store: DocumentStore):
        self.store = store
        self.db = store.db
        self.repo = store.db.payments

    # ----------- lecture -----------
    def list_payments(self, invoice_id: str) -> List[Payment]:
        out: List[Payment] = []
        for d in self.repo.select_eq("invoice_id", invoice_id, order_by="received_at", descending=True):
            try:
                out.append(Payment(**d))
            except ValidationError:
                logger.warning("paiement %s illisible, ignoré", d.get("id"))
                continue
        return out

    def _sum_payments(self, invoice_id: str) -> Decimal:
        rows = self.repo.select_eq("invoice_id", invoice_id)
        return sum((Decimal(str(r.get("amount") or 0)) for r in rows), ZERO)

    # ----------- recalcul -----------
    def _reconcile(self, invoice_id: str, *, update_status: bool) -> Decimal:
        # relecture des paiements et écriture sous le même verrou
        with self.db.transaction():
            total_paid = self._sum_payments(invoice_id)
            status = None
            if update_status:
                row = self.store.invoice_header(invoice_id)
                total = Decimal(str(row.get("total_amount") or 0))
                status = status_after_payment(row.get("status") or "draft", total_paid, total)
            self.store.write_payment_state(invoice_id, total_paid, status)
        logger.info("invoice %s: amount_paid=%s%s", invoice_id, total_paid, f" status={status}" if status else "")
        return total_paid

    def recompute_amount_paid(self, invoice_id: str) -> Decimal:
        """Recalcul complet et idempotent de amount_paid ; le statut n'est pas touché."""
        return self._reconcile(invoice_id, update_status=False)

    def needs_status_recheck(self, invoice_id: str) -> bool:
        return needs_status_recheck(self.store.get_invoice(invoice_id))

    # ----------- écriture -----------
    def add_payment(
        self,
        invoice_id: str,
        amount,
        method: str,
        *,
        collected_by: str = "",
        momo_network: Optional[str] = None,
        received_at: Optional[datetime] = None,
        reference: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Payment:
        amt = to_decimal(amount, "amount")
        if amt <= 0:
            raise InvalidInputError(f"payment amount must be positive, got {amt}")
        if method not in PAYMENT_METHODS:
            raise InvalidInputError(f"unknown payment method {method!r}")
        if momo_network is not None and momo_network not in MOMO_NETWORKS:
            raise InvalidInputError(f"unknown mobile money network {momo_network!r}")
        if not invoice_id:
            raise InvalidInputError("payment needs an invoice reference")

        payment = Payment(
            invoice_id=invoice_id,
            amount=amt,
            method=method,
            momo_network=momo_network,
            collected_by=collected_by,
            reference=reference,
            notes=notes,
            **({"received_at": received_at} if received_at else {}),
        )
        # contrôle de la facture, insertion et recalcul sous le même verrou
        with self.db.transaction():
            header = self.store.invoice_header(invoice_id)
            if header.get("status") == "cancelled":
                raise InvalidInputError(f"invoice {invoice_id} is cancelled")
            self.repo.insert(payment)
            logger.info("paiement %s de %s (%s) sur invoice %s", payment.id, amt, method, invoice_id)

            try:
                self._reconcile(invoice_id, update_status=True)
            except Exception:
                logger.exception("recalcul échoué après le paiement %s ; corrigé au prochain évènement", payment.id)
                raise
        return payment

    def delete_payment(self, payment_id: str, invoice_id: str) -> Decimal:
        """
        Supprime un paiement (correction) et réécrit amount_paid seulement.
        Le statut n'est jamais rétrogradé ici : une facture `paid` le reste.
        """
        with self.db.transaction():
            row = self.repo.get_by_id(payment_id)
            if row is None or row.get("invoice_id") != invoice_id:
                raise NotFoundError("payment", payment_id)
            self.repo.delete(payment_id)
            logger.info("paiement %s supprimé de invoice %s", payment_id, invoice_id)

            try:
                total_paid = self._reconcile(invoice_id, update_status=False)
            except Exception:
                logger.exception("recalcul échoué après suppression du paiement %s", payment_id)
                raise
        if self.needs_status_recheck(invoice_id):
            logger.warning("invoice %s reste 'paid' avec amount_paid=%s : à revérifier", invoice_id, total_paid)
        return total_paid
