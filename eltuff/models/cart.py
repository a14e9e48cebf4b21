from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field
from typing import Dict
from decimal import Decimal


class ProductPrice(BaseModel):
    description: str
    unit_price: Decimal


class Cart(BaseModel):
    """Panier : produit -> quantité. Transitions pures, chaque appel renvoie un nouveau panier."""
    model_config = ConfigDict(frozen=True)

    lines: Dict[str, int] = Field(default_factory=dict)

    @property
    def count(self) -> int:
        return sum(self.lines.values())

    def add(self, product_id: str, quantity: int = 1) -> "Cart":
        lines = dict(self.lines)
        lines[product_id] = lines.get(product_id, 0) + quantity
        if lines[product_id] <= 0:
            lines.pop(product_id)
        return Cart(lines=lines)

    def remove(self, product_id: str) -> "Cart":
        return Cart(lines={k: v for k, v in self.lines.items() if k != product_id})

    def update_quantity(self, product_id: str, quantity: int) -> "Cart":
        if quantity <= 0:
            return self.remove(product_id)
        lines = dict(self.lines)
        lines[product_id] = quantity
        return Cart(lines=lines)

    def clear(self) -> "Cart":
        return Cart()
