"""
Repayment Calculator Module

Prices a loan as of any date: principal, service fee, daily fee, penalty and
tax. Pure functions over already-decoded inputs; no storage access, safe to
call concurrently and to cache.

Each component is computed in full Decimal precision and rounded once, to
the currency precision (ROUND_HALF_UP), when it becomes a Money value.
"""

from datetime import date, datetime
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Union
from enum import Enum

from .currency import Money, min_money
from .products import (
    LoanProduct, Tax, FeeCategory, PercentageFee, DailyFeeBase, PenaltyRule
)
from .loans import Loan, RepaymentBehavior


DateLike = Union[date, datetime]


class ChargeComponent(Enum):
    """Parts of the amount owed, in repayment allocation order"""
    PENALTY = "penalty"
    SERVICE_FEE = "service_fee"
    DAILY_FEE = "daily_fee"
    TAX = "tax"
    PRINCIPAL = "principal"


ALLOCATION_ORDER = (
    ChargeComponent.PENALTY,
    ChargeComponent.SERVICE_FEE,
    ChargeComponent.DAILY_FEE,
    ChargeComponent.TAX,
    ChargeComponent.PRINCIPAL,
)


@dataclass(frozen=True)
class RepaymentBreakdown:
    """Amount owed as of a date, decomposed by component"""
    total: Money
    principal: Money
    repaid: Money
    service_fee: Money
    daily_fee: Money
    tax_amount: Money
    penalty: Money

    def component(self, component: ChargeComponent) -> Money:
        return {
            ChargeComponent.PENALTY: self.penalty,
            ChargeComponent.SERVICE_FEE: self.service_fee,
            ChargeComponent.DAILY_FEE: self.daily_fee,
            ChargeComponent.TAX: self.tax_amount,
            ChargeComponent.PRINCIPAL: self.principal,
        }[component]

    @property
    def is_overpaid(self) -> bool:
        return self.total.is_negative()

    def to_dict(self) -> Dict[str, str]:
        return {
            "total": str(self.total.amount),
            "principal": str(self.principal.amount),
            "repaid": str(self.repaid.amount),
            "serviceFee": str(self.service_fee.amount),
            "dailyFee": str(self.daily_fee.amount),
            "taxAmount": str(self.tax_amount.amount),
            "penalty": str(self.penalty.amount),
            "currency": self.total.currency.code,
        }


@dataclass(frozen=True)
class PaymentAllocation:
    """How a payment splits across components"""
    allocations: Dict[ChargeComponent, Money]
    unallocated: Money

    def amount_for(self, component: ChargeComponent) -> Money:
        return self.allocations[component]


def _to_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def price_service_fee(loan_amount: Money, product: LoanProduct) -> Money:
    """Up-front fee for a principal under the product's pricing"""
    if product.service_fee is None:
        return Money.zero(loan_amount.currency)
    return product.service_fee.amount_on(loan_amount)


def accrued_days(loan: Loan, as_of_date: DateLike) -> int:
    """Whole days of daily-fee accrual; stops at the due date"""
    end = min(_to_date(as_of_date), loan.due_date)
    return max(0, (end - loan.disbursed_date).days)


def overdue_days(loan: Loan, as_of_date: DateLike) -> int:
    return max(0, (_to_date(as_of_date) - loan.due_date).days)


def calculate_daily_fee(loan: Loan, product: LoanProduct, service_fee: Money,
                        as_of_date: DateLike) -> Money:
    zero = Money.zero(loan.currency)
    spec = product.daily_fee
    if spec is None:
        return zero
    days = accrued_days(loan, as_of_date)
    if days == 0:
        return zero

    if isinstance(spec.fee, PercentageFee):
        base = loan.loan_amount
        if spec.base == DailyFeeBase.PRINCIPAL_PLUS_SERVICE_FEE:
            base = base + service_fee
        return Money(base.amount * spec.fee.rate * days, loan.currency)
    return Money(spec.fee.amount.amount * days, loan.currency)


def select_penalty_rule(product: LoanProduct, days_overdue: int) -> Optional[PenaltyRule]:
    """Highest tier whose threshold has been reached; tiers do not accumulate"""
    selected = None
    for rule in product.penalty_rules:
        if rule.threshold_days > days_overdue:
            break
        selected = rule
    return selected


def calculate_penalty(loan: Loan, product: LoanProduct, as_of_date: DateLike) -> Money:
    days = overdue_days(loan, as_of_date)
    if days == 0:
        return Money.zero(loan.currency)
    rule = select_penalty_rule(product, days)
    if rule is None:
        return Money.zero(loan.currency)
    return rule.fee.amount_on(loan.loan_amount)


def calculate_tax(taxes: Iterable[Tax], fees: Dict[FeeCategory, Money], currency) -> Money:
    """Sum of rate * fee over every active tax and each fee category it covers"""
    total = sum(
        (tax.rate * amount.amount
         for tax in taxes
         for category, amount in fees.items()
         if tax.applies_to(category)),
        Money.zero(currency).amount
    )
    return Money(total, currency)


def calculate_total_repayable(
    loan: Loan,
    product: LoanProduct,
    taxes: Iterable[Tax],
    as_of_date: DateLike
) -> RepaymentBreakdown:
    """
    Amount owed on a loan as of a date.

    Args:
        loan: The loan (persisted, or a pricing-only loan with service_fee None)
        product: The loan's decoded product configuration
        taxes: All taxes; inactive ones contribute nothing
        as_of_date: Evaluation date, today or historical

    Returns:
        RepaymentBreakdown whose total may be negative when the loan is overpaid
    """
    taxes = list(taxes)
    principal = loan.loan_amount

    if loan.service_fee is not None:
        service_fee = loan.service_fee
    else:
        service_fee = price_service_fee(principal, product)

    daily_fee = calculate_daily_fee(loan, product, service_fee, as_of_date)
    penalty = calculate_penalty(loan, product, as_of_date)
    tax_amount = calculate_tax(
        taxes,
        {
            FeeCategory.SERVICE_FEE: service_fee,
            FeeCategory.DAILY_FEE: daily_fee,
            FeeCategory.PENALTY: penalty,
        },
        loan.currency
    )

    total = principal - loan.repaid_amount + service_fee + daily_fee + penalty + tax_amount

    return RepaymentBreakdown(
        total=total,
        principal=principal,
        repaid=loan.repaid_amount,
        service_fee=service_fee,
        daily_fee=daily_fee,
        tax_amount=tax_amount,
        penalty=penalty,
    )


def paid_to_date(loan: Loan, breakdown: RepaymentBreakdown) -> Dict[ChargeComponent, Money]:
    """
    Amounts already posted to each component of a loan.

    A loan with repayments but no per-component record has its repaid total
    spread across the breakdown in allocation order.
    """
    if loan.repaid_amount.is_positive() and not loan.paid_by_component:
        return _replay_repaid(breakdown)
    zero = Money.zero(loan.currency)
    return {
        component: loan.paid_by_component.get(component.value, zero)
        for component in ALLOCATION_ORDER
    }


def _replay_repaid(breakdown: RepaymentBreakdown) -> Dict[ChargeComponent, Money]:
    # Spread a bare repaid total across the current breakdown in allocation order
    zero = Money.zero(breakdown.repaid.currency)
    already_repaid = breakdown.repaid
    paid: Dict[ChargeComponent, Money] = {}
    for component in ALLOCATION_ORDER:
        due = breakdown.component(component)
        covered = min_money(already_repaid, due) if already_repaid.is_positive() else zero
        paid[component] = covered
        already_repaid = already_repaid - covered
    return paid


def allocate_payment(breakdown: RepaymentBreakdown, amount: Money,
                     paid: Optional[Dict[ChargeComponent, Money]] = None) -> PaymentAllocation:
    """
    Split a payment across components: penalty, service fee, daily fee, tax,
    then principal. Each component receives at most what is due on it less
    what was already posted to it.

    Args:
        breakdown: Amount owed as of the payment date
        amount: Payment to split
        paid: Amounts already posted per component. When omitted, the
            breakdown's repaid total is assumed to have been applied in
            allocation order against the current breakdown.
    """
    zero = Money.zero(amount.currency)
    if paid is None:
        paid = _replay_repaid(breakdown)
    remaining = amount
    allocations: Dict[ChargeComponent, Money] = {}

    for component in ALLOCATION_ORDER:
        outstanding = breakdown.component(component) - paid.get(component, zero)
        share = min_money(remaining, outstanding) if outstanding.is_positive() else zero
        allocations[component] = share
        remaining = remaining - share

    return PaymentAllocation(allocations=allocations, unallocated=remaining)


def classify_repayment_behavior(paid_on: DateLike, due_date: date) -> RepaymentBehavior:
    paid_on = _to_date(paid_on)
    if paid_on < due_date:
        return RepaymentBehavior.EARLY
    if paid_on == due_date:
        return RepaymentBehavior.ON_TIME
    return RepaymentBehavior.LATE
