"""
Loan Statement Module

Read paths over the loan book: borrower history, current amount owed,
overdue scans and non-performing loan detection. Every figure is computed
live by the repayment calculator for the requested as-of date; nothing
here writes to storage.
"""

from datetime import date, timedelta
from dataclasses import dataclass
from typing import Dict, List, Optional, Set

from .storage import StorageInterface
from .products import LoanProduct, ProductCatalog, Tax
from .providers import LoanProvider, ProviderRegistry
from .loans import Loan, LoanBook, Payment
from .calculator import RepaymentBreakdown, calculate_total_repayable, overdue_days
from .errors import NotFound


@dataclass(frozen=True)
class LoanStatement:
    """A loan with its live breakdown and payment history"""
    loan: Loan
    breakdown: RepaymentBreakdown
    payments: List[Payment]
    days_overdue: int

    @property
    def outstanding(self):
        return self.breakdown.total


class LoanStatements:
    """Calculator-backed views over stored loans"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.book = LoanBook(storage)
        self.catalog = ProductCatalog(storage)
        self.registry = ProviderRegistry(storage)

    def _product(self, product_id: str, cache: Dict[str, LoanProduct]) -> LoanProduct:
        if product_id not in cache:
            product = self.catalog.get_product(product_id)
            if product is None:
                raise NotFound(f"Loan product {product_id} not found")
            cache[product_id] = product
        return cache[product_id]

    def _statement(self, loan: Loan, product: LoanProduct, taxes: List[Tax],
                   as_of: date) -> LoanStatement:
        return LoanStatement(
            loan=loan,
            breakdown=calculate_total_repayable(loan, product, taxes, as_of),
            payments=self.book.get_payments(loan.id),
            days_overdue=0 if loan.is_paid else overdue_days(loan, as_of),
        )

    def get_breakdown(self, loan_id: str, as_of: date) -> RepaymentBreakdown:
        """
        Amount owed on one loan as of a date.

        Raises:
            NotFound: If the loan or its product does not exist
        """
        loan = self.book.require_loan(loan_id)
        product = self._product(loan.product_id, {})
        return calculate_total_repayable(loan, product, self.catalog.list_taxes(), as_of)

    def get_loan_history(self, borrower_id: str, as_of: date) -> List[LoanStatement]:
        """All of a borrower's loans, oldest disbursement first"""
        taxes = self.catalog.list_taxes()
        products: Dict[str, LoanProduct] = {}
        return [
            self._statement(loan, self._product(loan.product_id, products), taxes, as_of)
            for loan in self.book.get_loans_for_borrower(borrower_id)
        ]

    def find_overdue_loans(self, as_of: date, min_days: int = 1) -> List[LoanStatement]:
        """Unpaid loans at least min_days past due, most overdue first"""
        taxes = self.catalog.list_taxes()
        products: Dict[str, LoanProduct] = {}
        statements = []
        for loan in self.book.get_unpaid_loans():
            if overdue_days(loan, as_of) < min_days:
                continue
            statements.append(
                self._statement(loan, self._product(loan.product_id, products), taxes, as_of)
            )
        statements.sort(key=lambda s: s.days_overdue, reverse=True)
        return statements

    def find_npl_borrowers(self, as_of: date) -> Set[str]:
        """
        Borrowers holding an unpaid loan disbursed more than the provider's
        NPL threshold before as_of.
        """
        products: Dict[str, LoanProduct] = {}
        providers: Dict[str, Optional[LoanProvider]] = {}
        borrowers = set()
        for loan in self.book.get_unpaid_loans():
            product = self._product(loan.product_id, products)
            if product.provider_id not in providers:
                providers[product.provider_id] = self.registry.get_provider(product.provider_id)
            provider = providers[product.provider_id]
            if provider is None:
                continue
            threshold_date = as_of - timedelta(days=provider.npl_threshold_days)
            if loan.disbursed_date < threshold_date:
                borrowers.add(loan.borrower_id)
        return borrowers
