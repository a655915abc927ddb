"""
Loan Product Configuration Module

Pricing rules for lending products and jurisdiction-wide taxes. Fee, daily
fee and penalty settings are stored in the JSON shapes the product admin
screens write ({"type": "percentage", "value": 0.02}, ...) and are decoded
into tagged variants exactly once, when a product is loaded. The calculator
only ever sees the decoded form.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, List, Optional, Tuple, Union
from enum import Enum
import json
import uuid

from .currency import Money, Currency, to_decimal
from .storage import StorageInterface, StorageRecord
from .errors import InvalidConfiguration
from .config import get_config


class FeeKind(Enum):
    """How a fee value is interpreted"""
    PERCENTAGE = "percentage"  # Ratio of a base amount
    FIXED = "fixed"            # Currency amount


class FeeCategory(Enum):
    """Computed fee categories a tax can apply to"""
    SERVICE_FEE = "ServiceFee"
    DAILY_FEE = "DailyFee"
    PENALTY = "Penalty"


class DailyFeeBase(Enum):
    """Amount a percentage daily fee accrues on"""
    PRINCIPAL = "principal"
    PRINCIPAL_PLUS_SERVICE_FEE = "principalPlusServiceFee"


class TaxStatus(Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"


class ProductStatus(Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"


@dataclass(frozen=True)
class PercentageFee:
    """Fee priced as a ratio of a base amount (0.1 == 10%)"""
    rate: Decimal
    kind = FeeKind.PERCENTAGE

    def __post_init__(self):
        if self.rate < 0:
            raise ValueError("Percentage fee rate cannot be negative")

    def amount_on(self, base: Money) -> Money:
        return base * self.rate

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind.value, "value": str(self.rate)}


@dataclass(frozen=True)
class FixedFee:
    """Fee priced as a fixed currency amount"""
    amount: Money
    kind = FeeKind.FIXED

    def __post_init__(self):
        if self.amount.is_negative():
            raise ValueError("Fixed fee amount cannot be negative")

    def amount_on(self, base: Money) -> Money:
        return self.amount

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind.value, "value": str(self.amount.amount)}


FeeSpec = Union[PercentageFee, FixedFee]


@dataclass(frozen=True)
class DailyFeeSpec:
    """Fee accruing per elapsed day of the loan term"""
    fee: FeeSpec
    base: DailyFeeBase = DailyFeeBase.PRINCIPAL

    def to_dict(self) -> Dict[str, Any]:
        result = self.fee.to_dict()
        result["calculationBase"] = self.base.value
        return result


@dataclass(frozen=True)
class PenaltyRule:
    """Penalty tier that applies once a loan is threshold_days overdue"""
    threshold_days: int
    fee: FeeSpec

    def __post_init__(self):
        if self.threshold_days < 0:
            raise ValueError("Penalty threshold cannot be negative")

    def to_dict(self) -> Dict[str, Any]:
        result = self.fee.to_dict()
        result["thresholdDays"] = self.threshold_days
        return result


@dataclass(frozen=True)
class Tax:
    """Jurisdiction-wide tax on computed fees"""
    id: str
    name: str
    rate: Decimal
    applied_to: FrozenSet[FeeCategory]
    status: TaxStatus = TaxStatus.ACTIVE

    @property
    def is_active(self) -> bool:
        return self.status == TaxStatus.ACTIVE

    def applies_to(self, category: FeeCategory) -> bool:
        return self.is_active and category in self.applied_to

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "rate": str(self.rate),
            "appliedTo": json.dumps(sorted(c.value for c in self.applied_to)),
            "status": self.status.value,
        }


@dataclass
class LoanProduct(StorageRecord):
    """A lending offer's pricing rules"""
    provider_id: str
    name: str
    currency: Currency
    duration_days: int
    service_fee: Optional[FeeSpec] = None
    daily_fee: Optional[DailyFeeSpec] = None
    penalty_rules: Tuple[PenaltyRule, ...] = ()
    status: ProductStatus = ProductStatus.ACTIVE

    def __post_init__(self):
        rules = tuple(sorted(self.penalty_rules, key=lambda r: r.threshold_days))
        thresholds = [r.threshold_days for r in rules]
        if len(set(thresholds)) != len(thresholds):
            raise ValueError("Penalty rules must have unique thresholds")
        self.penalty_rules = rules

        for fee in self._fixed_fees():
            if fee.amount.currency != self.currency:
                raise ValueError("Fixed fee currency must match product currency")

    def _fixed_fees(self) -> List[FixedFee]:
        specs = [self.service_fee, self.daily_fee.fee if self.daily_fee else None]
        specs.extend(rule.fee for rule in self.penalty_rules)
        return [s for s in specs if isinstance(s, FixedFee)]

    def to_record(self) -> Dict[str, Any]:
        """Stored form, in the same JSON shapes the product screens write"""
        return {
            "id": self.id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "providerId": self.provider_id,
            "name": self.name,
            "currency": self.currency.code,
            "duration": self.duration_days,
            "status": self.status.value,
            "serviceFeeEnabled": self.service_fee is not None,
            "serviceFee": json.dumps(self.service_fee.to_dict() if self.service_fee else {}),
            "dailyFeeEnabled": self.daily_fee is not None,
            "dailyFee": json.dumps(self.daily_fee.to_dict() if self.daily_fee else {}),
            "penaltyRulesEnabled": bool(self.penalty_rules),
            "penaltyRules": json.dumps([r.to_dict() for r in self.penalty_rules]),
        }


# ---------------------------------------------------------------------------
# Load-boundary decoding
# ---------------------------------------------------------------------------

_KIND_ALIASES = {
    "percentage": FeeKind.PERCENTAGE,
    "percent": FeeKind.PERCENTAGE,
    "percentageofprincipal": FeeKind.PERCENTAGE,
    "fixed": FeeKind.FIXED,
    "fixedamount": FeeKind.FIXED,
}

_CATEGORY_ALIASES = {
    "servicefee": FeeCategory.SERVICE_FEE,
    "dailyfee": FeeCategory.DAILY_FEE,
    "interest": FeeCategory.DAILY_FEE,
    "penalty": FeeCategory.PENALTY,
}

_BASE_ALIASES = {
    "principal": DailyFeeBase.PRINCIPAL,
    "principalplusservicefee": DailyFeeBase.PRINCIPAL_PLUS_SERVICE_FEE,
    "principalandservicefee": DailyFeeBase.PRINCIPAL_PLUS_SERVICE_FEE,
}


def _normalize(token: str) -> str:
    return token.replace("_", "").replace("-", "").replace(" ", "").lower()


def _decode_json(raw: Any, what: str) -> Any:
    if raw is None or isinstance(raw, (dict, list)):
        return raw
    if isinstance(raw, str):
        if not raw.strip():
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise InvalidConfiguration(f"{what} is not valid JSON: {e}") from e
    raise InvalidConfiguration(f"{what} has unsupported type {type(raw).__name__}")


def _ratio(value: Any, percent_as_points: bool, what: str) -> Decimal:
    try:
        rate = to_decimal(value)
    except ValueError as e:
        raise InvalidConfiguration(f"{what}: {e}") from e
    return rate / Decimal("100") if percent_as_points else rate


def parse_fee_spec(raw: Any, currency: Currency, percent_as_points: bool = False,
                   what: str = "fee") -> Optional[FeeSpec]:
    """
    Decode {"type": "percentage"|"fixed", "value": ...} into a FeeSpec.

    Returns None for an empty configuration.

    Raises:
        InvalidConfiguration: If the shape or values are invalid
    """
    data = _decode_json(raw, what)
    if not data:
        return None
    if not isinstance(data, dict):
        raise InvalidConfiguration(f"{what} must be an object")

    kind_token = data.get("type", data.get("kind"))
    if not isinstance(kind_token, str) or _normalize(kind_token) not in _KIND_ALIASES:
        raise InvalidConfiguration(f"{what} has unknown fee type: {kind_token!r}")
    if "value" not in data:
        raise InvalidConfiguration(f"{what} is missing a value")

    kind = _KIND_ALIASES[_normalize(kind_token)]
    try:
        if kind == FeeKind.PERCENTAGE:
            return PercentageFee(_ratio(data["value"], percent_as_points, what))
        return FixedFee(Money(to_decimal(data["value"]), currency))
    except ValueError as e:
        raise InvalidConfiguration(f"{what}: {e}") from e


def parse_daily_fee(raw: Any, currency: Currency,
                    percent_as_points: bool = False) -> Optional[DailyFeeSpec]:
    """Decode a daily fee with its optional calculationBase"""
    data = _decode_json(raw, "dailyFee")
    if not data:
        return None
    fee = parse_fee_spec(data, currency, percent_as_points, "dailyFee")
    base_token = data.get("calculationBase", data.get("base", DailyFeeBase.PRINCIPAL.value))
    base = _BASE_ALIASES.get(_normalize(str(base_token)))
    if base is None:
        raise InvalidConfiguration(f"dailyFee has unknown calculation base: {base_token!r}")
    return DailyFeeSpec(fee=fee, base=base)


def parse_penalty_rules(raw: Any, currency: Currency,
                        percent_as_points: bool = False) -> Tuple[PenaltyRule, ...]:
    """Decode the penalty tier list; thresholds come from thresholdDays or fromDay"""
    data = _decode_json(raw, "penaltyRules")
    if not data:
        return ()
    if not isinstance(data, list):
        raise InvalidConfiguration("penaltyRules must be a list")

    rules = []
    for index, item in enumerate(data):
        what = f"penaltyRules[{index}]"
        if not isinstance(item, dict):
            raise InvalidConfiguration(f"{what} must be an object")
        threshold = item.get("thresholdDays", item.get("fromDay"))
        try:
            threshold_days = int(threshold)
        except (TypeError, ValueError):
            raise InvalidConfiguration(f"{what} has invalid threshold: {threshold!r}")
        fee = parse_fee_spec(item, currency, percent_as_points, what)
        try:
            rules.append(PenaltyRule(threshold_days=threshold_days, fee=fee))
        except ValueError as e:
            raise InvalidConfiguration(f"{what}: {e}") from e

    thresholds = [r.threshold_days for r in rules]
    if len(set(thresholds)) != len(thresholds):
        raise InvalidConfiguration("penaltyRules must have unique thresholds")
    return tuple(sorted(rules, key=lambda r: r.threshold_days))


def _enabled(record: Dict[str, Any], flag: str) -> bool:
    # A missing/NULL flag means the stored configuration decides
    return record.get(flag) is not False


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if value:
        return datetime.fromisoformat(value)
    return datetime.now(timezone.utc)


def parse_product(record: Dict[str, Any],
                  percent_values_as_points: Optional[bool] = None) -> LoanProduct:
    """
    Decode a stored product record into a validated LoanProduct.

    Args:
        record: Stored product (camelCase keys, JSON-encoded fee fields)
        percent_values_as_points: Treat percentage values as points (2 == 2%);
            defaults to the configured setting

    Raises:
        InvalidConfiguration: If any part of the pricing configuration is invalid
    """
    if percent_values_as_points is None:
        percent_values_as_points = get_config().percent_values_as_points

    try:
        currency = Currency.from_code(record.get("currency") or get_config().default_currency)
        duration_days = int(record.get("duration", 0))
    except (TypeError, ValueError) as e:
        raise InvalidConfiguration(f"Product {record.get('id')}: {e}") from e

    service_fee = None
    if _enabled(record, "serviceFeeEnabled"):
        service_fee = parse_fee_spec(record.get("serviceFee"), currency,
                                     percent_values_as_points, "serviceFee")
    daily_fee = None
    if _enabled(record, "dailyFeeEnabled"):
        daily_fee = parse_daily_fee(record.get("dailyFee"), currency, percent_values_as_points)
    penalty_rules: Tuple[PenaltyRule, ...] = ()
    if _enabled(record, "penaltyRulesEnabled"):
        penalty_rules = parse_penalty_rules(record.get("penaltyRules"), currency,
                                            percent_values_as_points)

    try:
        return LoanProduct(
            id=record["id"],
            created_at=_parse_datetime(record.get("created_at")),
            updated_at=_parse_datetime(record.get("updated_at")),
            provider_id=record["providerId"],
            name=record.get("name", ""),
            currency=currency,
            duration_days=duration_days,
            service_fee=service_fee,
            daily_fee=daily_fee,
            penalty_rules=penalty_rules,
            status=ProductStatus(record.get("status", ProductStatus.ACTIVE.value)),
        )
    except (KeyError, ValueError) as e:
        raise InvalidConfiguration(f"Product {record.get('id')}: {e}") from e


def parse_tax(record: Dict[str, Any], percent_values_as_points: Optional[bool] = None) -> Tax:
    """
    Decode a stored tax record. appliedTo may be a JSON list or a
    comma-separated string of fee categories.

    Raises:
        InvalidConfiguration: If the rate or categories are invalid
    """
    if percent_values_as_points is None:
        percent_values_as_points = get_config().percent_values_as_points

    raw_applied = record.get("appliedTo") or []
    if isinstance(raw_applied, str):
        text = raw_applied.strip()
        raw_applied = _decode_json(text, "appliedTo") if text.startswith("[") else text.split(",")

    categories = set()
    for token in raw_applied:
        category = _CATEGORY_ALIASES.get(_normalize(str(token)))
        if category is None:
            raise InvalidConfiguration(f"Tax {record.get('id')} applies to unknown category {token!r}")
        categories.add(category)

    status_token = str(record.get("status", TaxStatus.ACTIVE.value))
    status = TaxStatus.ACTIVE if status_token.lower() == "active" else TaxStatus.INACTIVE

    rate = _ratio(record.get("rate", 0), percent_values_as_points, f"Tax {record.get('id')}")
    if rate < 0:
        raise InvalidConfiguration(f"Tax {record.get('id')} rate cannot be negative")

    return Tax(
        id=record.get("id") or str(uuid.uuid4()),
        name=record.get("name") or "",
        rate=rate,
        applied_to=frozenset(categories),
        status=status,
    )


class ProductCatalog:
    """
    Stores products and taxes in their JSON form and hands out decoded,
    validated objects.
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.products_table = "loan_products"
        self.taxes_table = "taxes"

    def create_product(
        self,
        provider_id: str,
        name: str,
        currency: Currency,
        duration_days: int,
        service_fee: Optional[FeeSpec] = None,
        daily_fee: Optional[DailyFeeSpec] = None,
        penalty_rules: Tuple[PenaltyRule, ...] = (),
        product_id: Optional[str] = None
    ) -> LoanProduct:
        now = datetime.now(timezone.utc)
        product = LoanProduct(
            id=product_id or str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            provider_id=provider_id,
            name=name,
            currency=currency,
            duration_days=duration_days,
            service_fee=service_fee,
            daily_fee=daily_fee,
            penalty_rules=tuple(penalty_rules),
        )
        self.save_product(product)
        return product

    def save_product(self, product: LoanProduct) -> None:
        self.storage.save(self.products_table, product.id, product.to_record())

    def import_product(self, record: Dict[str, Any],
                       percent_values_as_points: Optional[bool] = None) -> LoanProduct:
        """Validate an externally supplied product record and store it canonically"""
        product = parse_product(record, percent_values_as_points)
        self.save_product(product)
        return product

    def get_product(self, product_id: str) -> Optional[LoanProduct]:
        record = self.storage.load(self.products_table, product_id)
        if record is None:
            return None
        # Canonical records always hold ratios
        return parse_product(record, percent_values_as_points=False)

    def save_tax(self, tax: Tax) -> None:
        self.storage.save(self.taxes_table, tax.id, tax.to_dict())

    def import_tax(self, record: Dict[str, Any],
                   percent_values_as_points: Optional[bool] = None) -> Tax:
        tax = parse_tax(record, percent_values_as_points)
        self.save_tax(tax)
        return tax

    def list_taxes(self) -> List[Tax]:
        """All taxes, active and inactive; the calculator filters"""
        return [parse_tax(record, percent_values_as_points=False)
                for record in self.storage.load_all(self.taxes_table)]
