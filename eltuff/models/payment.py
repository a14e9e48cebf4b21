from __future__ import annotations
from pydantic import BaseModel, Field
from typing import Literal, Optional
from datetime import datetime
from decimal import Decimal
from .common import gen_id, utcnow

PaymentMethod = Literal["cash", "bank_transfer", "mobile_money", "card", "other"]
MomoNetwork = Literal["MTN", "Vodafone", "AirtelTigo"]


class Payment(BaseModel):
    id: str = Field(default_factory=gen_id)
    invoice_id: str
    amount: Decimal
    method: PaymentMethod = "cash"
    momo_network: Optional[str] = None  # MTN, Vodafone, AirtelTigo
    collected_by: str = ""
    received_at: datetime = Field(default_factory=utcnow)
    reference: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
