"""
Loan Module

Loan applications, disbursed loans and repayment records, plus the book
that persists them. Amount-owed figures are never stored authoritatively:
read paths recompute them with the repayment calculator.
"""

from datetime import datetime, timezone, date
from dataclasses import dataclass
from typing import Dict, List, Optional
from enum import Enum

from .currency import Money
from .storage import StorageInterface, StorageRecord
from .errors import NotFound


class ApplicationStatus(Enum):
    """Loan application lifecycle"""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    DISBURSED = "DISBURSED"


class RepaymentStatus(Enum):
    UNPAID = "Unpaid"
    PAID = "Paid"


class RepaymentBehavior(Enum):
    """When a loan was settled relative to its due date"""
    EARLY = "EARLY"
    ON_TIME = "ON_TIME"
    LATE = "LATE"


def _optional_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


@dataclass
class LoanApplication(StorageRecord):
    """Borrower's request for credit under a product"""
    borrower_id: str
    product_id: str
    loan_amount: Money
    status: ApplicationStatus = ApplicationStatus.PENDING

    @classmethod
    def from_dict(cls, data: Dict) -> 'LoanApplication':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            borrower_id=data['borrower_id'],
            product_id=data['product_id'],
            loan_amount=Money.from_dict(data['loan_amount']),
            status=ApplicationStatus(data['status']),
        )


@dataclass
class Loan(StorageRecord):
    """
    A disbursed credit obligation.

    service_fee is fixed when the loan is disbursed; a loan built only for
    pricing leaves it as None. penalty_amount is the last computed penalty,
    kept for reporting. paid_by_component is the cumulative amount posted to
    each charge component, keyed by component name.
    """
    borrower_id: str
    product_id: str
    loan_application_id: Optional[str]
    loan_amount: Money
    disbursed_date: date
    due_date: date
    service_fee: Optional[Money] = None
    repaid_amount: Optional[Money] = None
    penalty_amount: Optional[Money] = None
    repayment_status: RepaymentStatus = RepaymentStatus.UNPAID
    repayment_behavior: Optional[RepaymentBehavior] = None
    paid_by_component: Optional[Dict[str, Money]] = None

    def __post_init__(self):
        if not self.loan_amount.is_positive():
            raise ValueError("Loan amount must be positive")
        if self.due_date < self.disbursed_date:
            raise ValueError("Due date cannot be before disbursement date")

        zero = Money.zero(self.loan_amount.currency)
        if self.repaid_amount is None:
            self.repaid_amount = zero
        if self.penalty_amount is None:
            self.penalty_amount = zero
        if self.paid_by_component is None:
            self.paid_by_component = {}

    @property
    def currency(self):
        return self.loan_amount.currency

    @property
    def is_paid(self) -> bool:
        return self.repayment_status == RepaymentStatus.PAID

    @classmethod
    def from_dict(cls, data: Dict) -> 'Loan':
        service_fee = data.get('service_fee')
        behavior = data.get('repayment_behavior')
        paid = data.get('paid_by_component') or {}
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            borrower_id=data['borrower_id'],
            product_id=data['product_id'],
            loan_application_id=data.get('loan_application_id'),
            loan_amount=Money.from_dict(data['loan_amount']),
            disbursed_date=date.fromisoformat(data['disbursed_date']),
            due_date=date.fromisoformat(data['due_date']),
            service_fee=Money.from_dict(service_fee) if service_fee else None,
            repaid_amount=Money.from_dict(data['repaid_amount']),
            penalty_amount=Money.from_dict(data['penalty_amount']),
            repayment_status=RepaymentStatus(data['repayment_status']),
            repayment_behavior=RepaymentBehavior(behavior) if behavior else None,
            paid_by_component={name: Money.from_dict(value) for name, value in paid.items()},
        )


@dataclass
class Payment(StorageRecord):
    """Immutable record of a partial or full repayment"""
    loan_id: str
    amount: Money
    date: date
    outstanding_balance_before_payment: Money
    journal_entry_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict) -> 'Payment':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            loan_id=data['loan_id'],
            amount=Money.from_dict(data['amount']),
            date=date.fromisoformat(data['date']),
            outstanding_balance_before_payment=Money.from_dict(
                data['outstanding_balance_before_payment']
            ),
            journal_entry_id=data.get('journal_entry_id'),
        )


class LoanBook:
    """Persistence for applications, loans and payments"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.applications_table = "loan_applications"
        self.loans_table = "loans"
        self.payments_table = "payments"

    def create_application(
        self,
        application_id: str,
        borrower_id: str,
        product_id: str,
        loan_amount: Money,
        status: ApplicationStatus = ApplicationStatus.APPROVED
    ) -> LoanApplication:
        now = datetime.now(timezone.utc)
        application = LoanApplication(
            id=application_id,
            created_at=now,
            updated_at=now,
            borrower_id=borrower_id,
            product_id=product_id,
            loan_amount=loan_amount,
            status=status,
        )
        self.save_application(application)
        return application

    def save_application(self, application: LoanApplication) -> None:
        self.storage.save(self.applications_table, application.id, application.to_dict())

    def get_application(self, application_id: str) -> Optional[LoanApplication]:
        data = self.storage.load(self.applications_table, application_id)
        return LoanApplication.from_dict(data) if data else None

    def save_loan(self, loan: Loan) -> None:
        self.storage.save(self.loans_table, loan.id, loan.to_dict())

    def get_loan(self, loan_id: str) -> Optional[Loan]:
        data = self.storage.load(self.loans_table, loan_id)
        return Loan.from_dict(data) if data else None

    def require_loan(self, loan_id: str) -> Loan:
        loan = self.get_loan(loan_id)
        if loan is None:
            raise NotFound(f"Loan {loan_id} not found")
        return loan

    def find_loan_for_application(self, application_id: str) -> Optional[Loan]:
        found = self.storage.find(self.loans_table, {'loan_application_id': application_id})
        return Loan.from_dict(found[0]) if found else None

    def get_loans_for_borrower(self, borrower_id: str) -> List[Loan]:
        loans = [Loan.from_dict(data)
                 for data in self.storage.find(self.loans_table, {'borrower_id': borrower_id})]
        loans.sort(key=lambda l: (l.disbursed_date, l.created_at))
        return loans

    def get_unpaid_loans(self) -> List[Loan]:
        return [Loan.from_dict(data)
                for data in self.storage.find(
                    self.loans_table, {'repayment_status': RepaymentStatus.UNPAID.value}
                )]

    def save_payment(self, payment: Payment) -> None:
        self.storage.save(self.payments_table, payment.id, payment.to_dict())

    def get_payments(self, loan_id: str) -> List[Payment]:
        """Payments for a loan, oldest first"""
        payments = [Payment.from_dict(data)
                    for data in self.storage.find(self.payments_table, {'loan_id': loan_id})]
        payments.sort(key=lambda p: (p.date, p.created_at))
        return payments
