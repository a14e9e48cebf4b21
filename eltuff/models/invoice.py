from __future__ import annotations
from pydantic import BaseModel, Field
from typing import Annotated, ClassVar, List, Literal, Optional, Union
from datetime import date
from decimal import Decimal
from .common import ZERO
from .document import BillingDocument, LineItemInput
from .quote import Quote

InvoiceStatus = Literal["draft", "sent", "overdue", "paid", "cancelled"]


class InvoiceDraft(BaseModel):
    user_id: Optional[str] = None  # absent -> client de passage (billing_*)
    order_id: Optional[str] = None
    items: List[LineItemInput] = Field(default_factory=list)
    tax_pct: Optional[Decimal] = None
    due_date: Optional[date] = None
    billing_name: Optional[str] = None
    billing_phone: Optional[str] = None
    billing_address: Optional[str] = None
    notes: Optional[str] = ""


class Invoice(BillingDocument):
    items_fk: ClassVar[str] = "invoice_id"

    kind: Literal["invoice"] = "invoice"
    user_id: Optional[str] = None
    order_id: Optional[str] = None
    quote_id: Optional[str] = None
    status: InvoiceStatus = "draft"

    amount: Decimal = ZERO  # sous-total HT
    amount_paid: Decimal = ZERO  # dérivé des paiements, jamais saisi

    due_date: Optional[date] = None
    paid_date: Optional[date] = None

    def balance_due(self) -> Decimal:
        return max(ZERO, self.total_amount - self.amount_paid)


Document = Annotated[Union[Quote, Invoice], Field(discriminator="kind")]
