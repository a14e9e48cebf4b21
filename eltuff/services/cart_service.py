from __future__ import annotations
import logging
import os
from pathlib import Path
from typing import List, Mapping, Optional, Protocol

from pydantic import ValidationError

from eltuff.errors import InvalidInputError
from eltuff.models.cart import Cart, ProductPrice
from eltuff.models.document import LineItemInput
from eltuff.models.invoice import Invoice, InvoiceDraft
from eltuff.services.document_store import DocumentStore
from eltuff.settings import DATA_DIR, _dump_json, _load_json

logger = logging.getLogger(__name__)


class CartStore(Protocol):
    def load(self) -> Cart: ...
    def save(self, cart: Cart) -> None: ...


class MemoryCartStore:
    def __init__(self, cart: Optional[Cart] = None):
        self.cart = cart or Cart()

    def load(self) -> Cart:
        return self.cart

    def save(self, cart: Cart) -> None:
        self.cart = cart


class JsonCartStore:
    def __init__(self, path: os.PathLike | str = DATA_DIR / "cart.json"):
        self.path = Path(path)

    def load(self) -> Cart:
        data = _load_json(self.path)
        if not isinstance(data, dict):
            return Cart()
        try:
            return Cart(**data)
        except ValidationError:
            logger.warning("Panier illisible (%s), panier vide", self.path)
            return Cart()

    def save(self, cart: Cart) -> None:
        _dump_json(self.path, cart.model_dump())


class CartService:
    def __init__(self, store: CartStore):
        self.store = store

    @property
    def cart(self) -> Cart:
        return self.store.load()

    def _apply(self, cart: Cart) -> Cart:
        self.store.save(cart)
        return cart

    def add(self, product_id: str, quantity: int = 1) -> Cart:
        return self._apply(self.cart.add(product_id, quantity))

    def remove(self, product_id: str) -> Cart:
        return self._apply(self.cart.remove(product_id))

    def update_quantity(self, product_id: str, quantity: int) -> Cart:
        return self._apply(self.cart.update_quantity(product_id, quantity))

    def clear(self) -> Cart:
        return self._apply(self.cart.clear())

    def to_line_items(self, prices: Mapping[str, ProductPrice]) -> List[LineItemInput]:
        out: List[LineItemInput] = []
        for product_id, qty in self.cart.lines.items():
            price = prices.get(product_id)
            if price is None:
                raise InvalidInputError(f"no price known for product {product_id}")
            out.append(LineItemInput(description=price.description, quantity=qty, unit_price=price.unit_price))
        return out

    def checkout(self, documents: DocumentStore, prices: Mapping[str, ProductPrice], **draft) -> Invoice:
        """Facture le contenu du panier puis le vide (le panier reste si la création échoue)."""
        invoice = documents.create_invoice(InvoiceDraft(items=self.to_line_items(prices), **draft))
        self.clear()
        return invoice
