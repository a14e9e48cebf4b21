from __future__ import annotations
from pydantic import BaseModel, Field
from typing import ClassVar, List, Literal, Optional
from datetime import date
from decimal import Decimal
from .common import ZERO
from .document import BillingDocument, LineItemInput

QuoteStatus = Literal["draft", "sent", "accepted", "rejected", "expired"]


class QuoteDraft(BaseModel):
    client_id: Optional[str] = None
    items: List[LineItemInput] = Field(default_factory=list)
    tax_pct: Optional[Decimal] = None  # None -> taux par défaut des réglages
    valid_until: Optional[date] = None
    billing_name: Optional[str] = None
    billing_phone: Optional[str] = None
    billing_address: Optional[str] = None
    notes: Optional[str] = ""


class Quote(BillingDocument):
    items_fk: ClassVar[str] = "quote_id"

    kind: Literal["quote"] = "quote"
    client_id: Optional[str] = None
    status: QuoteStatus = "draft"

    subtotal: Decimal = ZERO
    tax_pct: Decimal = ZERO

    valid_until: Optional[date] = None
