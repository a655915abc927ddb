"""Pytest configuration and fixtures."""

from datetime import date, timedelta
from decimal import Decimal
import uuid

import pytest

from lending_core.currency import Money, Currency
from lending_core.storage import InMemoryStorage
from lending_core.engine import LendingEngine
from lending_core.ledger import DEFAULT_CHART
from lending_core.loans import ApplicationStatus
from lending_core.products import FeeCategory, Tax, TaxStatus
from lending_core.disbursement import DisbursementRequest


DISBURSED_ON = date(2025, 1, 1)
DUE_ON = DISBURSED_ON + timedelta(days=30)


def etb(value) -> Money:
    return Money(Decimal(str(value)), Currency.ETB)


class LendingSetup:
    """Seeds providers, products, taxes and applications for a test"""

    def __init__(self, engine: LendingEngine):
        self.engine = engine

    def provider(self, balance="100000", chart=DEFAULT_CHART, npl_threshold_days=60):
        return self.engine.registry.register_provider(
            name=f"Provider {uuid.uuid4().hex[:6]}",
            initial_balance=etb(balance),
            chart=chart,
            npl_threshold_days=npl_threshold_days,
        )

    def product(self, provider, service_fee=None, daily_fee=None, penalty_rules=(), duration_days=30):
        return self.engine.catalog.create_product(
            provider_id=provider.id,
            name="Personal Loan",
            currency=Currency.ETB,
            duration_days=duration_days,
            service_fee=service_fee,
            daily_fee=daily_fee,
            penalty_rules=penalty_rules,
        )

    def tax(self, rate="0.15", applied_to=(FeeCategory.SERVICE_FEE,), status=TaxStatus.ACTIVE):
        tax = Tax(
            id=str(uuid.uuid4()),
            name="VAT",
            rate=Decimal(rate),
            applied_to=frozenset(applied_to),
            status=status,
        )
        self.engine.catalog.save_tax(tax)
        return tax

    def application(self, product, amount="1000", borrower_id="borrower-123",
                    status=ApplicationStatus.APPROVED):
        return self.engine.book.create_application(
            application_id=str(uuid.uuid4()),
            borrower_id=borrower_id,
            product_id=product.id,
            loan_amount=etb(amount),
            status=status,
        )

    def request(self, application, disbursed_date=DISBURSED_ON, due_date=DUE_ON):
        return DisbursementRequest(
            borrower_id=application.borrower_id,
            product_id=application.product_id,
            loan_application_id=application.id,
            loan_amount=application.loan_amount,
            disbursed_date=disbursed_date,
            due_date=due_date,
        )

    def disbursed_loan(self, product, amount="1000", borrower_id="borrower-123"):
        application = self.application(product, amount, borrower_id)
        return self.engine.disburse_loan(self.request(application))


@pytest.fixture
def storage():
    """In-memory storage backend."""
    storage = InMemoryStorage()
    yield storage
    storage.close()


@pytest.fixture
def engine(storage) -> LendingEngine:
    return LendingEngine(storage)


@pytest.fixture
def lending(engine) -> LendingSetup:
    return LendingSetup(engine)
