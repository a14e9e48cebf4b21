from __future__ import annotations
import logging
from datetime import date
from typing import Optional

from eltuff.errors import AlreadyInvoicedError, InvalidTransitionError, MissingClientError
from eltuff.models.document import LineItem
from eltuff.models.invoice import Invoice
from eltuff.models.quote import Quote
from eltuff.services.document_store import DocumentStore
from eltuff.services.status_rules import CONVERTIBLE_QUOTE_STATUSES

logger = logging.getLogger(__name__)


class QuoteConversionService:
    def __init__(self, store: DocumentStore):
        self.store = store

    def convert_quote(self, quote_id: str, *, due_date: Optional[date] = None) -> Invoice:
        return self.convert_to_invoice(self.store.get_quote(quote_id), due_date=due_date)

    def convert_to_invoice(self, quote: Quote, *, due_date: Optional[date] = None) -> Invoice:
        """
        Crée une facture brouillon à partir d'un devis :
        - le devis est relu en base, l'objet reçu peut être périmé
        - totaux et notes repris tels quels (pas de recalcul)
        - lignes copiées une à une
        - un devis ne donne qu'une seule facture
        - le devis passe à `accepted` une fois les lignes écrites
        """
        with self.store.db.transaction():
            stored = self.store.get_quote(quote.id)
            if not stored.client_id:
                raise MissingClientError(stored.id)
            if stored.status not in CONVERTIBLE_QUOTE_STATUSES:
                raise InvalidTransitionError("quote", stored.status, "accepted")
            existing = self.store.db.invoices.select_eq("quote_id", stored.id)
            if existing:
                raise AlreadyInvoicedError(stored.id, existing[0]["id"])

            invoice = Invoice(
                user_id=stored.client_id,
                quote_id=stored.id,
                items=[
                    LineItem(
                        description=it.description,
                        quantity=it.quantity,
                        unit_price=it.unit_price,
                        position=pos,
                    )
                    for pos, it in enumerate(stored.items)
                ],
                amount=stored.subtotal,
                tax_amount=stored.tax_amount,
                total_amount=stored.total_amount,
                billing_name=stored.billing_name,
                billing_phone=stored.billing_phone,
                billing_address=stored.billing_address,
                notes=stored.notes or "",
                due_date=due_date or self.store.default_due_date(),
                status="draft",
            )
            # PartialWriteError remonte tel quel : le devis n'est pas marqué accepté
            self.store.insert_invoice(invoice)

            if stored.status != "accepted":
                self.store.update_status("quote", stored.id, "accepted")
        quote.status = "accepted"
        logger.info("quote %s converti en invoice %s", stored.number or stored.id, invoice.number)
        return invoice
