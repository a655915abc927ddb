"""
Loan Disbursement Module

Turns an approved loan application into a loan: prices the service fee,
checks and draws down the provider's lending capital, and posts a balanced
journal entry. Runs inside the caller's unit of work so it can be composed
with other writes (e.g. order confirmation) and commits or rolls back with
them.
"""

from datetime import datetime, timezone, date
from dataclasses import dataclass
import uuid

from .currency import Money
from .storage import StorageInterface
from .products import ProductCatalog
from .providers import ProviderRegistry
from .loans import Loan, LoanBook, ApplicationStatus
from .ledger import (
    GeneralLedger, JournalBuilder,
    PRINCIPAL_RECEIVABLE, PRINCIPAL_FUND, SERVICE_FEE_RECEIVABLE, SERVICE_FEE_INCOME
)
from .calculator import calculate_total_repayable
from .errors import (
    LendingError, NotFound, InvalidState, InvalidConfiguration, InsufficientFunds
)
from .logging_config import get_logger, log_action


@dataclass(frozen=True)
class DisbursementRequest:
    """Parameters supplied by the collaborator that triggers a disbursement"""
    borrower_id: str
    product_id: str
    loan_application_id: str
    loan_amount: Money
    disbursed_date: date
    due_date: date

    def __post_init__(self):
        if not self.loan_amount.is_positive():
            raise ValueError("Loan amount must be positive")
        if self.due_date < self.disbursed_date:
            raise ValueError("Due date cannot be before disbursement date")


class DisbursementLedger:
    """
    Atomic disbursement of approved loans against a provider's fund pool.

    Concurrency safety comes entirely from the storage unit of work: the
    funds check and the balance decrement happen inside the same
    transaction, which the storage backends serialize.
    """

    def __init__(self, logger=None):
        self.logger = logger or get_logger("lending_core.disbursement")

    def disburse(self, tx: StorageInterface, request: DisbursementRequest) -> Loan:
        """
        Disburse a loan inside the caller's open unit of work.

        Args:
            tx: Storage with an open atomic() block
            request: Disbursement parameters

        Returns:
            The created Loan

        Raises:
            NotFound: Product, provider or application missing
            InvalidState: Application not approved or already disbursed
            InsufficientFunds: Provider balance below the loan amount
            LedgerMisconfigured: Required ledger accounts missing
            InvalidConfiguration: Currency mismatch between request and provider
            TransactionAborted: Storage failure
        """
        if not tx.in_transaction:
            raise ValueError("disburse must be called inside an open unit of work")

        try:
            # Savepoint: nothing written here survives a failure, even if the
            # caller keeps its own unit of work going
            with tx.atomic():
                loan = self._disburse(tx, request)
        except LendingError as e:
            log_action(
                self.logger, "warning", f"Loan disbursement rejected: {e}",
                action="loan_disbursement_rejected",
                resource=f"loan_application:{request.loan_application_id}",
                extra={
                    "error": type(e).__name__,
                    "product_id": request.product_id,
                    "loan_amount": str(request.loan_amount.amount),
                }
            )
            raise

        log_action(
            self.logger, "info", "Loan disbursed",
            action="loan_disbursed",
            resource=f"loan:{loan.id}",
            extra={
                "borrower_id": loan.borrower_id,
                "product_id": loan.product_id,
                "loan_amount": str(loan.loan_amount.amount),
                "service_fee": str(loan.service_fee.amount),
                "due_date": loan.due_date.isoformat(),
            }
        )
        return loan

    def _disburse(self, tx: StorageInterface, request: DisbursementRequest) -> Loan:
        catalog = ProductCatalog(tx)
        registry = ProviderRegistry(tx)
        book = LoanBook(tx)
        ledger = GeneralLedger(tx)

        product = catalog.get_product(request.product_id)
        if product is None:
            raise NotFound(f"Loan product {request.product_id} not found")
        provider = registry.require_provider(product.provider_id)
        chart = registry.get_chart(provider.id)
        taxes = catalog.list_taxes()

        application = book.get_application(request.loan_application_id)
        if application is None:
            raise NotFound(f"Loan application {request.loan_application_id} not found")
        if (application.status == ApplicationStatus.DISBURSED
                or book.find_loan_for_application(application.id) is not None):
            raise InvalidState(f"Loan application {application.id} has already been disbursed")
        if application.status != ApplicationStatus.APPROVED:
            raise InvalidState(
                f"Loan application {application.id} is {application.status.value}, not APPROVED"
            )
        if application.product_id != product.id or application.borrower_id != request.borrower_id:
            raise InvalidState(f"Loan application {application.id} does not match the request")

        amount = request.loan_amount
        if amount.currency != provider.currency or product.currency != provider.currency:
            raise InvalidConfiguration(
                f"Currency mismatch: loan {amount.currency.code}, "
                f"product {product.currency.code}, provider {provider.currency.code}"
            )

        if not provider.can_fund(amount):
            raise InsufficientFunds(provider.initial_balance.amount, amount.amount, provider.id)

        now = datetime.now(timezone.utc)
        pricing_loan = Loan(
            id="pending",
            created_at=now,
            updated_at=now,
            borrower_id=request.borrower_id,
            product_id=product.id,
            loan_application_id=application.id,
            loan_amount=amount,
            disbursed_date=request.disbursed_date,
            due_date=request.due_date,
        )
        service_fee = calculate_total_repayable(
            pricing_loan, product, taxes, request.disbursed_date
        ).service_fee

        principal_receivable = chart.require(PRINCIPAL_RECEIVABLE)
        fund = chart.require(PRINCIPAL_FUND)
        if service_fee.is_positive():
            fee_receivable = chart.require(SERVICE_FEE_RECEIVABLE)
            fee_income = chart.require(SERVICE_FEE_INCOME)

        loan = Loan(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            borrower_id=request.borrower_id,
            product_id=product.id,
            loan_application_id=application.id,
            loan_amount=amount,
            disbursed_date=request.disbursed_date,
            due_date=request.due_date,
            service_fee=service_fee,
        )
        book.save_loan(loan)

        application.status = ApplicationStatus.DISBURSED
        application.updated_at = now
        book.save_application(application)

        journal = JournalBuilder(
            provider_id=provider.id,
            loan_id=loan.id,
            entry_date=request.disbursed_date,
            description=f"Loan disbursement for {product.name} to borrower {request.borrower_id}",
        )
        journal.debit(principal_receivable, amount).credit(fund, amount)
        if service_fee.is_positive():
            journal.debit(fee_receivable, service_fee).credit(fee_income, service_fee)
        ledger.post(journal)

        provider.withdraw(amount)
        registry.save_provider(provider)

        return loan
