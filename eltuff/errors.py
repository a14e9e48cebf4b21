from __future__ import annotations
from typing import Any, Optional


class BillingError(Exception):
    """Erreur de base du module de facturation."""


class InvalidInputError(BillingError, ValueError):
    """Montant/quantité négatif, méthode inconnue, référence manquante..."""


class InvalidTransitionError(InvalidInputError):
    def __init__(self, kind: str, current: str, target: str):
        self.kind = kind
        self.current = current
        self.target = target
        super().__init__(f"{kind} cannot move from '{current}' to '{target}'")


class NotFoundError(BillingError, LookupError):
    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class MissingClientError(BillingError):
    def __init__(self, quote_id: Optional[str] = None):
        self.quote_id = quote_id
        label = f"Quote {quote_id}" if quote_id else "Quote"
        super().__init__(f"{label} has no client assigned")


class AlreadyInvoicedError(InvalidInputError):
    def __init__(self, quote_id: str, invoice_id: str):
        self.quote_id = quote_id
        self.invoice_id = invoice_id
        super().__init__(f"quote {quote_id} is already invoiced by {invoice_id}")


class PartialWriteError(BillingError):
    """
    Le document parent existe mais l'écriture des lignes a échoué.
    L'appelant décide : supprimer l'orphelin ou réessayer l'insertion des lignes.
    """

    def __init__(self, kind: str, document_id: str, cause: Optional[BaseException] = None, document: Any = None):
        self.kind = kind
        self.document_id = document_id
        self.cause = cause
        self.document = document
        super().__init__(f"{kind} {document_id} was saved without its line items: {cause}")
