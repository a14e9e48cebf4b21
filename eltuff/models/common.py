from __future__ import annotations
from pydantic import BaseModel, Field
from datetime import datetime, timezone
from decimal import Decimal
import uuid

ZERO = Decimal("0")

def gen_id() -> str:
    return str(uuid.uuid4())

def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)

class TimeStamped(BaseModel):
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
