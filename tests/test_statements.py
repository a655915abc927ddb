"""
Test suite for loan statements

Borrower history, overdue scans and non-performing loan detection, all
computed live for the requested date.
"""

from decimal import Decimal
from datetime import timedelta
import pytest

from lending_core.currency import Money, Currency
from lending_core.products import FixedFee, PercentageFee, PenaltyRule
from lending_core.errors import NotFound

from conftest import DISBURSED_ON, DUE_ON


def etb(value) -> Money:
    return Money(Decimal(str(value)), Currency.ETB)


class TestLoanStatements:

    def test_breakdown_for_unknown_loan(self, engine):
        with pytest.raises(NotFound):
            engine.statements.get_breakdown("missing", DUE_ON)

    def test_loan_history(self, engine, lending):
        provider = lending.provider()
        product = lending.product(provider, service_fee=PercentageFee(Decimal('0.10')))
        first = lending.disbursed_loan(product, amount="1000", borrower_id="borrower-1")
        second = lending.disbursed_loan(product, amount="200", borrower_id="borrower-1")
        lending.disbursed_loan(product, amount="300", borrower_id="borrower-2")
        engine.record_payment(first.id, etb("1100"), DUE_ON)

        history = engine.statements.get_loan_history("borrower-1", DUE_ON)

        assert [s.loan.id for s in history] == [first.id, second.id]
        assert history[0].outstanding == etb("0")
        assert len(history[0].payments) == 1
        assert history[1].outstanding == etb("220")
        assert history[1].payments == []

    def test_history_for_unknown_borrower(self, engine):
        assert engine.statements.get_loan_history("nobody", DUE_ON) == []

    def test_overdue_loans_most_overdue_first(self, engine, lending):
        provider = lending.provider()
        product = lending.product(provider,
                                  penalty_rules=(PenaltyRule(1, FixedFee(etb("25"))),))
        on_time = lending.disbursed_loan(product, borrower_id="borrower-1")
        late = lending.disbursed_loan(product, borrower_id="borrower-2")
        engine.record_payment(on_time.id, etb("1000"), DUE_ON)

        early_app = lending.application(product, borrower_id="borrower-3")
        earlier = engine.disburse_loan(lending.request(
            early_app,
            disbursed_date=DISBURSED_ON - timedelta(days=10),
            due_date=DUE_ON - timedelta(days=10),
        ))

        as_of = DUE_ON + timedelta(days=3)
        overdue = engine.statements.find_overdue_loans(as_of)

        assert [s.loan.id for s in overdue] == [earlier.id, late.id]
        assert [s.days_overdue for s in overdue] == [13, 3]
        assert overdue[1].breakdown.penalty == etb("25")
        assert engine.statements.find_overdue_loans(as_of, min_days=5)[0].loan.id == earlier.id
        assert engine.statements.find_overdue_loans(DUE_ON - timedelta(days=10)) == []

    def test_npl_borrowers(self, engine, lending):
        strict = lending.provider(npl_threshold_days=30)
        lenient = lending.provider(npl_threshold_days=90)
        strict_product = lending.product(strict)
        lenient_product = lending.product(lenient)
        lending.disbursed_loan(strict_product, borrower_id="borrower-strict")
        lending.disbursed_loan(lenient_product, borrower_id="borrower-lenient")
        repaid = lending.disbursed_loan(strict_product, borrower_id="borrower-repaid")
        engine.record_payment(repaid.id, etb("1000"), DUE_ON)

        as_of = DISBURSED_ON + timedelta(days=45)
        assert engine.statements.find_npl_borrowers(as_of) == {"borrower-strict"}

        as_of = DISBURSED_ON + timedelta(days=91)
        assert engine.statements.find_npl_borrowers(as_of) == {
            "borrower-strict", "borrower-lenient"
        }

    def test_threshold_is_exclusive(self, engine, lending):
        provider = lending.provider(npl_threshold_days=60)
        product = lending.product(provider)
        lending.disbursed_loan(product, borrower_id="borrower-1")

        assert engine.statements.find_npl_borrowers(DISBURSED_ON + timedelta(days=60)) == set()
        assert engine.statements.find_npl_borrowers(DISBURSED_ON + timedelta(days=61)) == {
            "borrower-1"
        }
