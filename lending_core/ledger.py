"""
Double-Entry Ledger Module

Provider-scoped chart of accounts and balanced journal entries. Every money
movement is recorded as a JournalEntry whose debit postings equal its credit
postings; an unbalanced entry cannot be constructed.
"""

from decimal import Decimal
from datetime import datetime, timezone, date
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Tuple
from enum import Enum
import uuid

from .currency import Money, Currency
from .storage import StorageInterface, StorageRecord
from .errors import LedgerMisconfigured


class AccountCategory(Enum):
    """What a ledger account tracks"""
    PRINCIPAL = "Principal"
    INTEREST = "Interest"      # Daily fee accruals
    SERVICE_FEE = "ServiceFee"
    PENALTY = "Penalty"
    TAX = "Tax"


class AccountType(Enum):
    """Role of a ledger account within its category"""
    RECEIVABLE = "Receivable"  # Owed by borrowers (debit normal balance)
    RECEIVED = "Received"      # Cash collected (debit normal balance)
    FUND = "Fund"              # Provider lending capital (debit normal balance)
    INCOME = "Income"          # Revenue recognized (credit normal balance)
    PAYABLE = "Payable"        # Owed to third parties (credit normal balance)

    @property
    def is_debit_normal(self) -> bool:
        return self in (AccountType.RECEIVABLE, AccountType.RECEIVED, AccountType.FUND)


class EntryType(Enum):
    DEBIT = "Debit"
    CREDIT = "Credit"


AccountKey = Tuple[AccountCategory, AccountType]

PRINCIPAL_RECEIVABLE: AccountKey = (AccountCategory.PRINCIPAL, AccountType.RECEIVABLE)
PRINCIPAL_FUND: AccountKey = (AccountCategory.PRINCIPAL, AccountType.FUND)
SERVICE_FEE_RECEIVABLE: AccountKey = (AccountCategory.SERVICE_FEE, AccountType.RECEIVABLE)
SERVICE_FEE_INCOME: AccountKey = (AccountCategory.SERVICE_FEE, AccountType.INCOME)

# Accounts a provider must have before it can disburse anything
REQUIRED_ACCOUNTS: Tuple[AccountKey, ...] = (PRINCIPAL_RECEIVABLE, PRINCIPAL_FUND)

# Seeded for every new provider
DEFAULT_CHART: Tuple[Tuple[str, AccountCategory, AccountType], ...] = (
    ("Principal Receivable", AccountCategory.PRINCIPAL, AccountType.RECEIVABLE),
    ("Interest Receivable", AccountCategory.INTEREST, AccountType.RECEIVABLE),
    ("Service Fee Receivable", AccountCategory.SERVICE_FEE, AccountType.RECEIVABLE),
    ("Penalty Receivable", AccountCategory.PENALTY, AccountType.RECEIVABLE),
    ("Tax Receivable", AccountCategory.TAX, AccountType.RECEIVABLE),
    ("Principal Received", AccountCategory.PRINCIPAL, AccountType.RECEIVED),
    ("Interest Received", AccountCategory.INTEREST, AccountType.RECEIVED),
    ("Service Fee Received", AccountCategory.SERVICE_FEE, AccountType.RECEIVED),
    ("Penalty Received", AccountCategory.PENALTY, AccountType.RECEIVED),
    ("Tax Received", AccountCategory.TAX, AccountType.RECEIVED),
    ("Interest Income", AccountCategory.INTEREST, AccountType.INCOME),
    ("Service Fee Income", AccountCategory.SERVICE_FEE, AccountType.INCOME),
    ("Penalty Income", AccountCategory.PENALTY, AccountType.INCOME),
    ("Tax Payable", AccountCategory.TAX, AccountType.PAYABLE),
    ("Lending Fund", AccountCategory.PRINCIPAL, AccountType.FUND),
)


@dataclass
class LedgerAccount(StorageRecord):
    """Chart-of-accounts entry scoped to a provider"""
    provider_id: str
    name: str
    category: AccountCategory
    type: AccountType
    balance: Money

    @property
    def key(self) -> AccountKey:
        return (self.category, self.type)

    def apply(self, entry_type: EntryType, amount: Money) -> None:
        """Move the balance according to the account's normal side"""
        increases = (entry_type == EntryType.DEBIT) == self.type.is_debit_normal
        self.balance = self.balance + amount if increases else self.balance - amount
        self.updated_at = datetime.now(timezone.utc)

    @classmethod
    def from_dict(cls, data: Dict) -> 'LedgerAccount':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            provider_id=data['provider_id'],
            name=data['name'],
            category=AccountCategory(data['category']),
            type=AccountType(data['type']),
            balance=Money.from_dict(data['balance']),
        )


class ChartOfAccounts:
    """
    Keyed registry of a provider's ledger accounts by (category, type).
    Built once per provider load; duplicates are rejected up front.
    """

    def __init__(self, provider_id: str, accounts: Iterable[LedgerAccount]):
        self.provider_id = provider_id
        self._accounts: Dict[AccountKey, LedgerAccount] = {}
        for account in accounts:
            if account.key in self._accounts:
                raise LedgerMisconfigured(
                    f"Provider {provider_id} has more than one "
                    f"{account.category.value} {account.type.value} account"
                )
            self._accounts[account.key] = account

    def __contains__(self, key: AccountKey) -> bool:
        return key in self._accounts

    def __len__(self) -> int:
        return len(self._accounts)

    def accounts(self) -> List[LedgerAccount]:
        return list(self._accounts.values())

    def get(self, key: AccountKey) -> Optional[LedgerAccount]:
        return self._accounts.get(key)

    def require(self, key: AccountKey) -> LedgerAccount:
        """
        Raises:
            LedgerMisconfigured: If the provider has no such account
        """
        account = self._accounts.get(key)
        if account is None:
            category, account_type = key
            raise LedgerMisconfigured(
                f"{category.value} {account_type.value} ledger account not found "
                f"for provider {self.provider_id}"
            )
        return account

    def validate(self, required: Iterable[AccountKey] = REQUIRED_ACCOUNTS) -> None:
        """Fail fast when any required account is missing"""
        missing = [key for key in required if key not in self._accounts]
        if missing:
            names = ", ".join(f"{c.value} {t.value}" for c, t in missing)
            raise LedgerMisconfigured(
                f"Provider {self.provider_id} is missing ledger accounts: {names}"
            )


@dataclass
class LedgerEntry:
    """A single debit or credit posting"""
    id: str
    journal_entry_id: str
    ledger_account_id: str
    type: EntryType
    amount: Money

    def __post_init__(self):
        if not self.amount.is_positive():
            raise ValueError("Ledger entry amount must be positive")

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'journal_entry_id': self.journal_entry_id,
            'ledger_account_id': self.ledger_account_id,
            'type': self.type.value,
            'amount': self.amount.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'LedgerEntry':
        return cls(
            id=data['id'],
            journal_entry_id=data['journal_entry_id'],
            ledger_account_id=data['ledger_account_id'],
            type=EntryType(data['type']),
            amount=Money.from_dict(data['amount']),
        )


@dataclass
class JournalEntry(StorageRecord):
    """
    Accounting event header grouping balanced ledger entries.
    Balance is validated on construction.
    """
    provider_id: str
    loan_id: Optional[str]
    date: date
    description: str
    entries: List[LedgerEntry] = field(default_factory=list)

    def __post_init__(self):
        self.validate_balance()

    def validate_balance(self) -> None:
        """
        Total debits must equal total credits, per currency.
        This is the fundamental rule of double-entry bookkeeping.
        """
        if len(self.entries) < 2:
            raise ValueError("Journal entry must have at least two ledger entries")

        totals: Dict[Currency, Dict[EntryType, Decimal]] = {}
        for entry in self.entries:
            if entry.journal_entry_id != self.id:
                raise ValueError("Ledger entry belongs to a different journal entry")
            by_type = totals.setdefault(
                entry.amount.currency, {EntryType.DEBIT: Decimal('0'), EntryType.CREDIT: Decimal('0')}
            )
            by_type[entry.type] += entry.amount.amount

        for currency, by_type in totals.items():
            if by_type[EntryType.DEBIT] != by_type[EntryType.CREDIT]:
                raise ValueError(
                    f"Journal entry not balanced for {currency.code}: "
                    f"debits={by_type[EntryType.DEBIT]}, credits={by_type[EntryType.CREDIT]}"
                )

    def total(self, entry_type: EntryType) -> Decimal:
        return sum((e.amount.amount for e in self.entries if e.type == entry_type), Decimal('0'))

    def get_affected_accounts(self) -> Set[str]:
        return {e.ledger_account_id for e in self.entries}

    def header_dict(self) -> Dict:
        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'provider_id': self.provider_id,
            'loan_id': self.loan_id,
            'date': self.date.isoformat(),
            'description': self.description,
        }


class JournalBuilder:
    """Collects postings for one journal entry before it is validated and saved"""

    def __init__(self, provider_id: str, loan_id: Optional[str], entry_date: date, description: str):
        self.journal_id = str(uuid.uuid4())
        self.provider_id = provider_id
        self.loan_id = loan_id
        self.entry_date = entry_date
        self.description = description
        self._postings: List[Tuple[LedgerAccount, EntryType, Money]] = []

    def debit(self, account: LedgerAccount, amount: Money) -> 'JournalBuilder':
        self._postings.append((account, EntryType.DEBIT, amount))
        return self

    def credit(self, account: LedgerAccount, amount: Money) -> 'JournalBuilder':
        self._postings.append((account, EntryType.CREDIT, amount))
        return self

    @property
    def postings(self) -> List[Tuple[LedgerAccount, EntryType, Money]]:
        return list(self._postings)

    def build(self) -> JournalEntry:
        """
        Raises:
            ValueError: If the postings don't balance
        """
        now = datetime.now(timezone.utc)
        entries = [
            LedgerEntry(
                id=str(uuid.uuid4()),
                journal_entry_id=self.journal_id,
                ledger_account_id=account.id,
                type=entry_type,
                amount=amount,
            )
            for account, entry_type, amount in self._postings
        ]
        return JournalEntry(
            id=self.journal_id,
            created_at=now,
            updated_at=now,
            provider_id=self.provider_id,
            loan_id=self.loan_id,
            date=self.entry_date,
            description=self.description,
            entries=entries,
        )


class GeneralLedger:
    """
    Persists journal entries and ledger entries and applies postings to
    account balances. Must be used inside the caller's unit of work.
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.accounts_table = "ledger_accounts"
        self.journal_table = "journal_entries"
        self.entries_table = "ledger_entries"

    def post(self, builder: JournalBuilder) -> JournalEntry:
        """
        Validate, save and apply a journal entry.

        Raises:
            ValueError: If the entry is unbalanced
        """
        journal = builder.build()

        self.storage.save(self.journal_table, journal.id, journal.header_dict())
        for entry in journal.entries:
            self.storage.save(self.entries_table, entry.id, entry.to_dict())

        for account, entry_type, amount in builder.postings:
            account.apply(entry_type, amount)
            self.save_account(account)

        return journal

    def save_account(self, account: LedgerAccount) -> None:
        self.storage.save(self.accounts_table, account.id, account.to_dict())

    def get_account(self, account_id: str) -> Optional[LedgerAccount]:
        data = self.storage.load(self.accounts_table, account_id)
        return LedgerAccount.from_dict(data) if data else None

    def get_provider_accounts(self, provider_id: str) -> List[LedgerAccount]:
        return [LedgerAccount.from_dict(data)
                for data in self.storage.find(self.accounts_table, {'provider_id': provider_id})]

    def get_journal_entry(self, journal_id: str) -> Optional[JournalEntry]:
        header = self.storage.load(self.journal_table, journal_id)
        if not header:
            return None
        entries = [LedgerEntry.from_dict(data)
                   for data in self.storage.find(self.entries_table, {'journal_entry_id': journal_id})]
        return JournalEntry(
            id=header['id'],
            created_at=datetime.fromisoformat(header['created_at']),
            updated_at=datetime.fromisoformat(header['updated_at']),
            provider_id=header['provider_id'],
            loan_id=header.get('loan_id'),
            date=date.fromisoformat(header['date']),
            description=header['description'],
            entries=entries,
        )

    def get_journal_entries_for_loan(self, loan_id: str) -> List[JournalEntry]:
        headers = self.storage.find(self.journal_table, {'loan_id': loan_id})
        journals = [self.get_journal_entry(h['id']) for h in headers]
        journals.sort(key=lambda j: (j.date, j.created_at))
        return journals
