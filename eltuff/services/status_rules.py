"""
Règles de cycle de vie des devis et factures.

Devis   : draft -> sent -> {accepted, rejected, expired} ; la conversion en facture
          peut accepter directement un brouillon.
Facture : draft -> sent -> {overdue, paid} ; overdue -> paid ; un paiement peut
          solder un brouillon ; draft/sent/overdue -> cancelled.

`overdue` et `expired` sont décidés par l'appelant (comparaison de dates),
jamais spontanément. Un administrateur peut forcer n'importe quelle transition.
"""
from __future__ import annotations
from datetime import date
from decimal import Decimal
from typing import Dict, FrozenSet, Optional, get_args

from eltuff.errors import InvalidInputError, InvalidTransitionError
from eltuff.models.invoice import Invoice, InvoiceStatus
from eltuff.models.quote import Quote, QuoteStatus

QUOTE_STATUSES = frozenset(get_args(QuoteStatus))
INVOICE_STATUSES = frozenset(get_args(InvoiceStatus))

QUOTE_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "draft": frozenset({"sent", "accepted"}),
    "sent": frozenset({"accepted", "rejected", "expired"}),
    "accepted": frozenset(),
    "rejected": frozenset(),
    "expired": frozenset(),
}

INVOICE_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "draft": frozenset({"sent", "paid", "cancelled"}),
    "sent": frozenset({"overdue", "paid", "cancelled"}),
    "overdue": frozenset({"paid", "cancelled"}),
    "paid": frozenset(),
    "cancelled": frozenset(),
}

# statuts d'une facture encore ouverte aux encaissements
OPEN_INVOICE_STATUSES = frozenset({"draft", "sent", "overdue"})
CONVERTIBLE_QUOTE_STATUSES = frozenset({"draft", "sent", "accepted"})

_TABLES = {
    "quote": (QUOTE_STATUSES, QUOTE_TRANSITIONS),
    "invoice": (INVOICE_STATUSES, INVOICE_TRANSITIONS),
}


def _rules(kind: str):
    try:
        return _TABLES[kind]
    except KeyError:
        raise InvalidInputError(f"unknown document kind {kind!r}") from None


def can_transition(kind: str, current: str, target: str) -> bool:
    statuses, transitions = _rules(kind)
    if target not in statuses:
        return False
    return target == current or target in transitions.get(current, frozenset())


def check_transition(kind: str, current: str, target: str, *, force: bool = False) -> None:
    statuses, _ = _rules(kind)
    if target not in statuses:
        raise InvalidInputError(f"unknown {kind} status {target!r}")
    if force:
        return
    if not can_transition(kind, current, target):
        raise InvalidTransitionError(kind, current, target)


def is_terminal(kind: str, status: str) -> bool:
    _, transitions = _rules(kind)
    return not transitions.get(status)


# ---------- Règles monétaires ---------- #

def is_fully_paid(amount_paid: Decimal, total_amount: Decimal) -> bool:
    # >= : un trop-perçu compte comme soldé, le surplus n'est pas réconcilié
    return amount_paid >= total_amount


def status_after_payment(current: str, amount_paid: Decimal, total_amount: Decimal) -> str:
    if is_fully_paid(amount_paid, total_amount):
        return "paid"
    if current in OPEN_INVOICE_STATUSES:
        return "sent"
    return current


def needs_status_recheck(invoice: Invoice) -> bool:
    """Facture marquée payée alors que le montant encaissé ne couvre plus le total."""
    return invoice.status == "paid" and not is_fully_paid(invoice.amount_paid, invoice.total_amount)


# ---------- Contrôles de dates (appelés par le workflow) ---------- #

def is_overdue(invoice: Invoice, today: Optional[date] = None) -> bool:
    today = today or date.today()
    return (
        invoice.status == "sent"
        and invoice.due_date is not None
        and invoice.due_date < today
    )


def is_expired(quote: Quote, today: Optional[date] = None) -> bool:
    today = today or date.today()
    return (
        quote.status == "sent"
        and quote.valid_until is not None
        and quote.valid_until < today
    )
