"""
Loan Provider Module

Funding entities, their available lending capital and their chart of
accounts. The chart is validated when a provider is configured and again
each time it is loaded, so a missing account fails before any money moves.
"""

from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple
from enum import Enum
import uuid

from .currency import Money, Currency
from .storage import StorageInterface, StorageRecord
from .ledger import (
    AccountCategory, AccountType, ChartOfAccounts, GeneralLedger, LedgerAccount,
    DEFAULT_CHART, PRINCIPAL_FUND, REQUIRED_ACCOUNTS
)
from .errors import NotFound
from .config import get_config


class ProviderStatus(Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"


@dataclass
class LoanProvider(StorageRecord):
    """Funding entity whose available capital backs disbursements"""
    name: str
    currency: Currency
    starting_capital: Money
    initial_balance: Money  # Available lending capital
    npl_threshold_days: int = 60
    status: ProviderStatus = ProviderStatus.ACTIVE

    def __post_init__(self):
        if self.initial_balance.is_negative():
            raise ValueError("Provider balance cannot be negative")
        if self.initial_balance.currency != self.currency:
            raise ValueError("Provider balance currency must match provider currency")

    def can_fund(self, amount: Money) -> bool:
        return self.initial_balance >= amount

    def withdraw(self, amount: Money) -> None:
        """
        Take lending capital out of the pool.

        Raises:
            ValueError: If the balance would go negative
        """
        if not self.can_fund(amount):
            raise ValueError("Provider balance cannot go negative")
        self.initial_balance = self.initial_balance - amount
        self.updated_at = datetime.now(timezone.utc)

    @classmethod
    def from_dict(cls, data: Dict) -> 'LoanProvider':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            name=data['name'],
            currency=Currency.from_code(data['currency']),
            starting_capital=Money.from_dict(data['starting_capital']),
            initial_balance=Money.from_dict(data['initial_balance']),
            npl_threshold_days=data.get('npl_threshold_days', 60),
            status=ProviderStatus(data.get('status', ProviderStatus.ACTIVE.value)),
        )


class ProviderRegistry:
    """Creates providers with their chart of accounts and loads them back"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.ledger = GeneralLedger(storage)
        self.providers_table = "loan_providers"

    def register_provider(
        self,
        name: str,
        initial_balance: Money,
        chart: Iterable[Tuple[str, AccountCategory, AccountType]] = DEFAULT_CHART,
        npl_threshold_days: Optional[int] = None,
        provider_id: Optional[str] = None
    ) -> LoanProvider:
        """
        Create a provider and its ledger accounts in one unit of work.

        Args:
            name: Provider display name
            initial_balance: Lending capital available for disbursement
            chart: (name, category, type) triples for the provider's accounts
            npl_threshold_days: Days after disbursement an unpaid loan becomes non-performing
            provider_id: Specific ID (generated if not provided)

        Raises:
            LedgerMisconfigured: If the chart lacks a required account or has duplicates
        """
        now = datetime.now(timezone.utc)
        provider = LoanProvider(
            id=provider_id or str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            name=name,
            currency=initial_balance.currency,
            starting_capital=initial_balance,
            initial_balance=initial_balance,
            npl_threshold_days=(npl_threshold_days if npl_threshold_days is not None
                                else get_config().default_npl_threshold_days),
        )

        # The fund account opens at the provider's capital and moves with it
        zero = Money.zero(initial_balance.currency)
        accounts = [
            LedgerAccount(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                provider_id=provider.id,
                name=account_name,
                category=category,
                type=account_type,
                balance=initial_balance if (category, account_type) == PRINCIPAL_FUND else zero,
            )
            for account_name, category, account_type in chart
        ]
        ChartOfAccounts(provider.id, accounts).validate(REQUIRED_ACCOUNTS)

        with self.storage.atomic():
            self.save_provider(provider)
            for account in accounts:
                self.ledger.save_account(account)

        return provider

    def save_provider(self, provider: LoanProvider) -> None:
        self.storage.save(self.providers_table, provider.id, provider.to_dict())

    def get_provider(self, provider_id: str) -> Optional[LoanProvider]:
        data = self.storage.load(self.providers_table, provider_id)
        return LoanProvider.from_dict(data) if data else None

    def require_provider(self, provider_id: str) -> LoanProvider:
        provider = self.get_provider(provider_id)
        if provider is None:
            raise NotFound(f"Loan provider {provider_id} not found")
        return provider

    def list_providers(self) -> List[LoanProvider]:
        return [LoanProvider.from_dict(data) for data in self.storage.load_all(self.providers_table)]

    def get_chart(self, provider_id: str) -> ChartOfAccounts:
        """
        Build and validate the provider's chart of accounts.

        Raises:
            LedgerMisconfigured: If a required account is missing or duplicated
        """
        chart = ChartOfAccounts(provider_id, self.ledger.get_provider_accounts(provider_id))
        chart.validate(REQUIRED_ACCOUNTS)
        return chart
