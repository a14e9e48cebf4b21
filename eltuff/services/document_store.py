# eltuff/services/document_store.py
from __future__ import annotations
import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple, Type

from pydantic import TypeAdapter, ValidationError

from eltuff.errors import InvalidInputError, NotFoundError, PartialWriteError
from eltuff.models.common import utcnow
from eltuff.models.document import BillingDocument, DocumentKind, LineItem, LineItemInput, line_rows
from eltuff.models.invoice import Document, Invoice, InvoiceDraft
from eltuff.models.quote import Quote, QuoteDraft
from eltuff.services.calculator import compute_totals, line_total, to_decimal
from eltuff.services.status_rules import check_transition, is_fully_paid
from eltuff.settings import load_settings, next_number
from eltuff.storage.repo import Database, JsonTable

logger = logging.getLogger(__name__)

_DOCUMENT = TypeAdapter(Document)

# kind -> (modèle, table en-tête, table lignes)
_LAYOUT: Dict[str, Tuple[Type[BillingDocument], str, str]] = {
    "quote": (Quote, "quotes", "quote_items"),
    "invoice": (Invoice, "invoices", "invoice_items"),
}


class DocumentStore:
    """
    Persistance des devis et factures (en-tête + lignes).
    - Création en deux écritures : en-tête puis lignes ; un échec sur les lignes
      lève PartialWriteError et laisse l'en-tête (jamais supprimé automatiquement)
    - Suppression en cascade : lignes, et paiements pour une facture
    """

    def __init__(self, db: Database) -> None:
        self.db = db
        self.settings = load_settings(db.data_dir)

    # ----------- tables -----------
    def _layout(self, kind: str) -> Tuple[Type[BillingDocument], JsonTable, JsonTable]:
        try:
            model, header, items = _LAYOUT[kind]
        except KeyError:
            raise InvalidInputError(f"unknown document kind {kind!r}") from None
        return model, getattr(self.db, header), getattr(self.db, items)

    def _header(self, kind: str, doc_id: str) -> Dict[str, Any]:
        _, header, _ = self._layout(kind)
        row = header.get_by_id(doc_id)
        if row is None:
            raise NotFoundError(kind, doc_id)
        return row

    def _hydrate(self, kind: str, row: Dict[str, Any]):
        model, _, items_table = self._layout(kind)
        items = items_table.select_eq(model.items_fk, row["id"], order_by="position")
        return _DOCUMENT.validate_python({**row, "kind": kind, "items": items})

    # ----------- lignes -----------
    def build_items(self, inputs: Iterable[LineItemInput]) -> List[LineItem]:
        items: List[LineItem] = []
        for pos, it in enumerate(inputs):
            qty = to_decimal(it.quantity, "quantity")
            price = to_decimal(it.unit_price, "unit_price")
            line_total(qty, price)  # lève InvalidInputError si négatif
            if qty == 0:
                raise InvalidInputError(f"line {pos + 1}: quantity must be greater than zero")
            items.append(LineItem(description=it.description, quantity=qty, unit_price=price, position=pos))
        if not items:
            raise InvalidInputError("a document needs at least one line item")
        return items

    def _tax_pct(self, tax_pct: Optional[Decimal]) -> Decimal:
        return to_decimal(self.settings.default_tax_pct if tax_pct is None else tax_pct, "tax_pct")

    def default_due_date(self, today: Optional[date] = None) -> Optional[date]:
        days = self.settings.default_due_days
        if days is None:
            return None
        return (today or date.today()) + timedelta(days=days)

    # ----------- création -----------
    def create_quote(self, draft: QuoteDraft) -> Quote:
        items = self.build_items(draft.items)
        tax_pct = self._tax_pct(draft.tax_pct)
        totals = compute_totals(items, tax_pct, self.settings.minor_unit_places)
        quote = Quote(
            client_id=draft.client_id,
            items=items,
            subtotal=totals.subtotal,
            tax_pct=tax_pct,
            tax_amount=totals.tax_amount,
            total_amount=totals.total_amount,
            valid_until=draft.valid_until,
            billing_name=draft.billing_name,
            billing_phone=draft.billing_phone,
            billing_address=draft.billing_address,
            notes=draft.notes or "",
            status="draft",
        )
        return self._insert_document(quote)

    def create_invoice(self, draft: InvoiceDraft) -> Invoice:
        items = self.build_items(draft.items)
        totals = compute_totals(items, self._tax_pct(draft.tax_pct), self.settings.minor_unit_places)
        invoice = Invoice(
            user_id=draft.user_id,
            order_id=draft.order_id,
            items=items,
            amount=totals.subtotal,
            tax_amount=totals.tax_amount,
            total_amount=totals.total_amount,
            due_date=draft.due_date or self.default_due_date(),
            billing_name=draft.billing_name,
            billing_phone=draft.billing_phone,
            billing_address=draft.billing_address,
            notes=draft.notes or "",
            status="draft",
        )
        return self._insert_document(invoice)

    def insert_invoice(self, invoice: Invoice) -> Invoice:
        """Persiste une facture déjà constituée (totaux non recalculés)."""
        return self._insert_document(invoice)

    def _insert_document(self, doc: BillingDocument):
        kind = doc.kind
        _, header, items_table = self._layout(kind)

        with self.db.transaction():
            if not doc.number:
                doc.number = next_number(kind, self.db.data_dir)
            header.insert(doc.header_row())
        logger.info("%s %s créé (%s lignes, total %s)", kind, doc.number, len(doc.items), doc.total_amount)

        if doc.items:
            try:
                items_table.insert_many(doc.item_rows())
            except Exception as e:
                logger.error("%s %s enregistré sans ses lignes: %s", kind, doc.id, e)
                raise PartialWriteError(kind, doc.id, e, document=doc) from e
        return doc

    def attach_items(self, kind: DocumentKind, doc_id: str, items: List[LineItem]) -> None:
        """Relance l'écriture des lignes d'un document orphelin."""
        model, _, items_table = self._layout(kind)
        rows = line_rows(items, model.items_fk, doc_id)
        with self.db.transaction():
            self._header(kind, doc_id)
            if items_table.select_eq(model.items_fk, doc_id):
                raise InvalidInputError(f"{kind} {doc_id} already has line items")
            items_table.insert_many(rows)
        logger.info("%s lignes rattachées à %s %s", len(rows), kind, doc_id)

    # ----------- lecture -----------
    def get_invoice(self, invoice_id: str) -> Invoice:
        return self._hydrate("invoice", self._header("invoice", invoice_id))

    def get_quote(self, quote_id: str) -> Quote:
        return self._hydrate("quote", self._header("quote", quote_id))

    def get_document(self, kind: DocumentKind, doc_id: str):
        return self._hydrate(kind, self._header(kind, doc_id))

    def invoice_header(self, invoice_id: str) -> Dict[str, Any]:
        return self._header("invoice", invoice_id)

    def _list(self, kind: str, **filters: Any) -> list:
        _, header, _ = self._layout(kind)
        rows = [
            r for r in header.list_all()
            if all(v is None or r.get(k) == v for k, v in filters.items())
        ]
        rows.sort(key=lambda r: str(r.get("created_at") or ""), reverse=True)
        out = []
        for r in rows:
            try:
                out.append(self._hydrate(kind, r))
            except ValidationError:
                logger.warning("%s %s illisible, ignoré", kind, r.get("id"))
                continue
        return out

    def list_invoices(self, status: Optional[str] = None, user_id: Optional[str] = None) -> List[Invoice]:
        return self._list("invoice", status=status, user_id=user_id)

    def list_quotes(self, status: Optional[str] = None, client_id: Optional[str] = None) -> List[Quote]:
        return self._list("quote", status=status, client_id=client_id)

    # ----------- statut -----------
    def update_status(self, kind: DocumentKind, doc_id: str, status: str, *, force: bool = False) -> None:
        _, header, _ = self._layout(kind)
        with self.db.transaction():
            row = self._header(kind, doc_id)
            current = row.get("status") or "draft"
            check_transition(kind, current, status, force=force)
            patch: Dict[str, Any] = {"status": status, "updated_at": utcnow()}
            if kind == "invoice" and status == "paid":
                if not force and not is_fully_paid(
                    Decimal(str(row.get("amount_paid") or 0)), Decimal(str(row.get("total_amount") or 0))
                ):
                    raise InvalidInputError(f"invoice {doc_id} is not fully paid")
                if not row.get("paid_date"):
                    patch["paid_date"] = date.today()
            header.update(doc_id, patch)
        logger.info("%s %s: %s -> %s%s", kind, doc_id, current, status, " (forcé)" if force else "")

    def write_payment_state(self, invoice_id: str, amount_paid: Decimal, status: Optional[str] = None) -> Dict[str, Any]:
        """Écrit amount_paid (et le statut si fourni) ; paid_date posée une seule fois."""
        with self.db.transaction():
            row = self._header("invoice", invoice_id)
            patch: Dict[str, Any] = {"amount_paid": amount_paid, "updated_at": utcnow()}
            if status is not None:
                patch["status"] = status
                if status == "paid" and not row.get("paid_date"):
                    patch["paid_date"] = date.today()
            return self.db.invoices.update(invoice_id, patch)

    # ----------- suppression -----------
    def delete_invoice(self, invoice_id: str) -> None:
        with self.db.transaction():
            self._header("invoice", invoice_id)
            n_pay = self.db.payments.delete_eq("invoice_id", invoice_id)
            self.db.invoice_items.delete_eq("invoice_id", invoice_id)
            self.db.invoices.delete(invoice_id)
        logger.info("invoice %s supprimée (%s paiements)", invoice_id, n_pay)

    def delete_quote(self, quote_id: str) -> None:
        with self.db.transaction():
            self._header("quote", quote_id)
            self.db.quote_items.delete_eq("quote_id", quote_id)
            self.db.quotes.delete(quote_id)
        logger.info("quote %s supprimé", quote_id)
