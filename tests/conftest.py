from decimal import Decimal

import pytest

from eltuff.models.document import LineItemInput
from eltuff.models.invoice import InvoiceDraft
from eltuff.models.quote import QuoteDraft
from eltuff.services.conversion_service import QuoteConversionService
from eltuff.services.document_store import DocumentStore
from eltuff.services.payment_ledger import PaymentLedger
from eltuff.services.workflow_service import BillingWorkflow
from eltuff.storage.repo import Database


def scenario_items():
    """2 x 50.00 + 1 x 25.00 -> subtotal 125.00."""
    return [
        LineItemInput(description="Block 6in", quantity=Decimal("2"), unit_price=Decimal("50.00")),
        LineItemInput(description="Cement bag", quantity=Decimal("1"), unit_price=Decimal("25.00")),
    ]


@pytest.fixture
def items():
    return scenario_items()


@pytest.fixture
def db(tmp_path):
    return Database(tmp_path / "data")


@pytest.fixture
def store(db):
    return DocumentStore(db)


@pytest.fixture
def ledger(store):
    return PaymentLedger(store)


@pytest.fixture
def conversion(store):
    return QuoteConversionService(store)


@pytest.fixture
def workflow(db):
    return BillingWorkflow(db=db)


@pytest.fixture
def invoice(store):
    """Facture de 131.25 (125.00 + 5 %)."""
    return store.create_invoice(
        InvoiceDraft(user_id="client-1", items=scenario_items(), tax_pct=Decimal("5"))
    )


@pytest.fixture
def quote(store):
    return store.create_quote(
        QuoteDraft(
            client_id="client-1",
            items=scenario_items()
            + [LineItemInput(description="Delivery", quantity=Decimal("1"), unit_price=Decimal("40.00"))],
            tax_pct=Decimal("5"),
            notes="Delivery within 7 days",
        )
    )
