from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import Any, ClassVar, Dict, List, Literal, Optional
from decimal import Decimal
from .common import TimeStamped, ZERO, gen_id

DocumentKind = Literal["quote", "invoice"]


def line_rows(items: List[LineItem], fk: str, doc_id: str) -> List[Dict[str, Any]]:
    """Lignes prêtes à stocker : position = rang dans la liste, clé vers le document."""
    rows = []
    for pos, it in enumerate(items):
        row = it.model_dump()
        row["position"] = pos
        row[fk] = doc_id
        rows.append(row)
    return rows


class LineItemInput(BaseModel):
    """Ligne saisie par l'appelant, pas encore validée (voir calculator)."""
    description: str = ""
    quantity: Decimal = Decimal("1")
    unit_price: Decimal = ZERO


class LineItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=gen_id)
    description: str = ""
    quantity: Decimal = Field(gt=0)
    unit_price: Decimal = Field(ge=0)
    total_price: Decimal = ZERO  # toujours quantity * unit_price
    position: int = 0

    @model_validator(mode="after")
    def _derive_total(self):
        object.__setattr__(self, "total_price", self.quantity * self.unit_price)
        return self


class BillingDocument(TimeStamped):
    """
    Socle commun Quote / Invoice : en-tête + lignes.
    - `kind` sert de discriminant (variante fermée)
    - les lignes sont stockées à part, liées par `items_fk`
    """
    items_fk: ClassVar[str] = "document_id"

    id: str = Field(default_factory=gen_id)
    number: Optional[str] = None
    items: List[LineItem] = Field(default_factory=list)

    tax_amount: Decimal = ZERO
    total_amount: Decimal = ZERO

    # client de passage : instantané de l'identité au moment du document
    billing_name: Optional[str] = None
    billing_phone: Optional[str] = None
    billing_address: Optional[str] = None

    notes: Optional[str] = ""

    model_config = ConfigDict(extra="ignore")

    def lines_total(self) -> Decimal:
        return sum((it.total_price for it in self.items), ZERO)

    def header_row(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"items"})

    def item_rows(self) -> List[Dict[str, Any]]:
        return line_rows(self.items, self.items_fk, self.id)
