"""
Lending Engine Facade

Wires storage, configuration and logging to the disbursement, repayment and
statement components for callers that do not manage their own unit of
work.
"""

from datetime import date
from typing import Optional

from .currency import Money
from .storage import StorageInterface, create_storage
from .config import LendingConfig, get_config
from .logging_config import setup_logging, correlation_scope
from .products import ProductCatalog
from .providers import ProviderRegistry
from .loans import Loan, LoanBook, Payment
from .disbursement import DisbursementLedger, DisbursementRequest
from .repayments import RepaymentLedger
from .statements import LoanStatements
from .calculator import RepaymentBreakdown


class LendingEngine:
    """Entry point for in-process collaborators"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.catalog = ProductCatalog(storage)
        self.registry = ProviderRegistry(storage)
        self.book = LoanBook(storage)
        self.statements = LoanStatements(storage)
        self.disbursements = DisbursementLedger()
        self.repayments = RepaymentLedger()

    @classmethod
    def from_config(cls, config: Optional[LendingConfig] = None) -> 'LendingEngine':
        config = config or get_config()
        setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)
        return cls(create_storage(config.database_url))

    def disburse_loan(self, request: DisbursementRequest,
                      correlation_id: Optional[str] = None) -> Loan:
        """Disburse in a unit of work of its own; no retry on failure"""
        with correlation_scope(correlation_id), self.storage.atomic() as tx:
            return self.disbursements.disburse(tx, request)

    def record_payment(self, loan_id: str, amount: Money, payment_date: date,
                       correlation_id: Optional[str] = None) -> Payment:
        with correlation_scope(correlation_id), self.storage.atomic() as tx:
            return self.repayments.record_payment(tx, loan_id, amount, payment_date)

    def get_breakdown(self, loan_id: str, as_of: date) -> RepaymentBreakdown:
        return self.statements.get_breakdown(loan_id, as_of)

    def close(self) -> None:
        self.storage.close()
