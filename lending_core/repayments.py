"""
Loan Repayment Module

Records borrower payments. Each payment is priced as of its date, split
across penalty, service fee, daily fee, tax and principal, and posted as one
balanced journal entry: cash received is debited, and the matching credit
either clears a receivable recognized at disbursement (principal, service
fee) or recognizes income/tax collected at payment time.
"""

from datetime import datetime, timezone, date
from typing import Dict, Tuple
import uuid

from .currency import Money
from .storage import StorageInterface
from .products import ProductCatalog
from .providers import ProviderRegistry
from .loans import LoanBook, Payment, RepaymentStatus
from .ledger import AccountCategory, AccountKey, AccountType, GeneralLedger, JournalBuilder
from .calculator import (
    ChargeComponent, ALLOCATION_ORDER,
    allocate_payment, calculate_total_repayable, classify_repayment_behavior, paid_to_date
)
from .errors import LendingError, NotFound, InvalidState, PaymentRejected
from .logging_config import get_logger, log_action


# component -> (debited account, credited account)
POSTING_ACCOUNTS: Dict[ChargeComponent, Tuple[AccountKey, AccountKey]] = {
    ChargeComponent.PENALTY: (
        (AccountCategory.PENALTY, AccountType.RECEIVED),
        (AccountCategory.PENALTY, AccountType.INCOME),
    ),
    ChargeComponent.SERVICE_FEE: (
        (AccountCategory.SERVICE_FEE, AccountType.RECEIVED),
        (AccountCategory.SERVICE_FEE, AccountType.RECEIVABLE),
    ),
    ChargeComponent.DAILY_FEE: (
        (AccountCategory.INTEREST, AccountType.RECEIVED),
        (AccountCategory.INTEREST, AccountType.INCOME),
    ),
    ChargeComponent.TAX: (
        (AccountCategory.TAX, AccountType.RECEIVED),
        (AccountCategory.TAX, AccountType.PAYABLE),
    ),
    ChargeComponent.PRINCIPAL: (
        (AccountCategory.PRINCIPAL, AccountType.RECEIVED),
        (AccountCategory.PRINCIPAL, AccountType.RECEIVABLE),
    ),
}


class RepaymentLedger:
    """Atomic recording of loan repayments"""

    def __init__(self, logger=None):
        self.logger = logger or get_logger("lending_core.repayments")

    def record_payment(self, tx: StorageInterface, loan_id: str, amount: Money,
                       payment_date: date) -> Payment:
        """
        Record a repayment inside the caller's open unit of work.

        Raises:
            ValueError: Non-positive amount
            NotFound: Loan, product or provider missing
            InvalidState: Loan already paid
            PaymentRejected: Amount exceeds what is owed
            LedgerMisconfigured: An account needed for the allocation is missing
        """
        if not tx.in_transaction:
            raise ValueError("record_payment must be called inside an open unit of work")
        if not amount.is_positive():
            raise ValueError("Payment amount must be positive")

        try:
            with tx.atomic():
                payment = self._record(tx, loan_id, amount, payment_date)
        except LendingError as e:
            log_action(
                self.logger, "warning", f"Repayment rejected: {e}",
                action="loan_repayment_rejected",
                resource=f"loan:{loan_id}",
                extra={"error": type(e).__name__, "amount": str(amount.amount)}
            )
            raise

        log_action(
            self.logger, "info", "Loan repayment recorded",
            action="loan_repayment_recorded",
            resource=f"loan:{loan_id}",
            extra={
                "payment_id": payment.id,
                "amount": str(payment.amount.amount),
                "outstanding_before": str(payment.outstanding_balance_before_payment.amount),
            }
        )
        return payment

    def _record(self, tx: StorageInterface, loan_id: str, amount: Money,
                payment_date: date) -> Payment:
        catalog = ProductCatalog(tx)
        registry = ProviderRegistry(tx)
        book = LoanBook(tx)
        ledger = GeneralLedger(tx)

        loan = book.require_loan(loan_id)
        if loan.is_paid:
            raise InvalidState(f"Loan {loan_id} is already paid")
        product = catalog.get_product(loan.product_id)
        if product is None:
            raise NotFound(f"Loan product {loan.product_id} not found")
        provider = registry.require_provider(product.provider_id)
        chart = registry.get_chart(provider.id)

        breakdown = calculate_total_repayable(loan, product, catalog.list_taxes(), payment_date)
        outstanding = breakdown.total
        if amount > outstanding:
            raise PaymentRejected(
                f"Payment {amount.to_string()} exceeds balance due {outstanding.to_string()}"
            )

        prior = paid_to_date(loan, breakdown)
        allocation = allocate_payment(breakdown, amount, prior)

        journal = JournalBuilder(
            provider_id=provider.id,
            loan_id=loan.id,
            entry_date=payment_date,
            description=f"Repayment for loan {loan.id}",
        )
        for component in ALLOCATION_ORDER:
            paid = allocation.amount_for(component)
            if not paid.is_positive():
                continue
            debit_key, credit_key = POSTING_ACCOUNTS[component]
            journal.debit(chart.require(debit_key), paid)
            journal.credit(chart.require(credit_key), paid)
        posted = ledger.post(journal)

        now = datetime.now(timezone.utc)
        payment = Payment(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            loan_id=loan.id,
            amount=amount,
            date=payment_date,
            outstanding_balance_before_payment=outstanding,
            journal_entry_id=posted.id,
        )
        book.save_payment(payment)

        loan.repaid_amount = loan.repaid_amount + amount
        loan.penalty_amount = breakdown.penalty
        loan.paid_by_component = {
            component.value: prior[component] + allocation.amount_for(component)
            for component in ALLOCATION_ORDER
        }
        if not (outstanding - amount).is_positive():
            loan.repayment_status = RepaymentStatus.PAID
            loan.repayment_behavior = classify_repayment_behavior(payment_date, loan.due_date)
        loan.updated_at = now
        book.save_loan(loan)

        return payment
