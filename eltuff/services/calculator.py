from __future__ import annotations
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable, NamedTuple

from eltuff.errors import InvalidInputError
from eltuff.models.common import ZERO

HUNDRED = Decimal("100")


class Totals(NamedTuple):
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal


def to_decimal(val: Any, field: str = "value") -> Decimal:
    """Conversion en Decimal ; les float passent par str() pour éviter la dérive binaire."""
    if isinstance(val, Decimal):
        d = val
    elif isinstance(val, bool) or val is None:
        raise InvalidInputError(f"{field} must be a number, got {val!r}")
    elif isinstance(val, (int, float, str)):
        try:
            d = Decimal(str(val).strip())
        except InvalidOperation:
            raise InvalidInputError(f"{field} is not a number: {val!r}") from None
    else:
        raise InvalidInputError(f"{field} must be a number, got {type(val).__name__}")
    if not d.is_finite():
        raise InvalidInputError(f"{field} must be finite, got {val!r}")
    return d


def minor_unit(places: int = 2) -> Decimal:
    return Decimal(1).scaleb(-places)


def round_money(amount: Decimal, places: int = 2) -> Decimal:
    return amount.quantize(minor_unit(places), rounding=ROUND_HALF_UP)


def line_total(quantity: Any, unit_price: Any) -> Decimal:
    q = to_decimal(quantity, "quantity")
    p = to_decimal(unit_price, "unit_price")
    if q < 0:
        raise InvalidInputError(f"quantity must not be negative, got {q}")
    if p < 0:
        raise InvalidInputError(f"unit_price must not be negative, got {p}")
    return q * p


def _pair(item: Any):
    if isinstance(item, tuple):
        return item
    if isinstance(item, dict):
        return item.get("quantity"), item.get("unit_price")
    return getattr(item, "quantity", None), getattr(item, "unit_price", None)


def compute_totals(items: Iterable[Any], tax_pct: Any = 0, places: int = 2) -> Totals:
    """
    Sous-total, TVA et total d'une suite de lignes (quantity, unit_price).
    - lignes et sous-total exacts (aucun arrondi par ligne)
    - un seul arrondi, sur le montant de taxe, à l'unité mineure
    """
    pct = to_decimal(tax_pct if tax_pct is not None else 0, "tax_pct")
    if pct < 0:
        raise InvalidInputError(f"tax_pct must not be negative, got {pct}")

    subtotal = ZERO
    for it in items:
        q, p = _pair(it)
        subtotal += line_total(q, p)

    tax = round_money(subtotal * pct / HUNDRED, places)
    return Totals(subtotal=subtotal, tax_amount=tax, total_amount=subtotal + tax)

