"""
Test suite for product configuration

Tests decoding of stored fee, daily fee, penalty and tax configuration into
validated pricing objects, and the catalog that stores them.
"""

import json
import pytest
from decimal import Decimal

from lending_core.currency import Money, Currency
from lending_core.storage import InMemoryStorage
from lending_core.errors import InvalidConfiguration
from lending_core.products import (
    ProductCatalog, LoanProduct, PercentageFee, FixedFee, DailyFeeSpec, DailyFeeBase,
    PenaltyRule, FeeCategory, TaxStatus,
    parse_fee_spec, parse_daily_fee, parse_penalty_rules, parse_product, parse_tax
)


def product_record(**overrides):
    record = {
        "id": "product-1",
        "providerId": "provider-1",
        "name": "Personal Loan",
        "currency": "ETB",
        "duration": 30,
        "serviceFee": json.dumps({"type": "percentage", "value": "0.02"}),
        "dailyFee": json.dumps({"type": "fixed", "value": "5", "calculationBase": "principal"}),
        "penaltyRules": json.dumps([
            {"fromDay": 15, "type": "percentage", "value": "0.1"},
            {"fromDay": 1, "type": "fixed", "value": "50"},
        ]),
    }
    record.update(overrides)
    return record


class TestFeeSpecParsing:

    def test_percentage(self):
        fee = parse_fee_spec({"type": "percentage", "value": "0.1"}, Currency.ETB)
        assert fee == PercentageFee(Decimal('0.1'))

    def test_fixed(self):
        fee = parse_fee_spec('{"type": "fixed", "value": 25}', Currency.ETB)
        assert fee == FixedFee(Money(Decimal('25'), Currency.ETB))

    def test_percentage_as_points(self):
        fee = parse_fee_spec({"type": "percentage", "value": 2}, Currency.ETB,
                             percent_as_points=True)
        assert fee.rate == Decimal('0.02')

    def test_kind_aliases(self):
        fee = parse_fee_spec({"kind": "percentageOfPrincipal", "value": "0.05"}, Currency.ETB)
        assert isinstance(fee, PercentageFee)

    @pytest.mark.parametrize("raw", [None, "", "  ", {}])
    def test_empty_means_no_fee(self, raw):
        assert parse_fee_spec(raw, Currency.ETB) is None

    @pytest.mark.parametrize("raw", [
        "{not json",
        {"type": "compound", "value": 1},
        {"type": "fixed"},
        {"type": "percentage", "value": "abc"},
        {"type": "percentage", "value": "-0.1"},
        ["percentage", 1],
        42,
    ])
    def test_invalid_configuration(self, raw):
        with pytest.raises(InvalidConfiguration):
            parse_fee_spec(raw, Currency.ETB)

    def test_percentage_fee_amount(self):
        fee = PercentageFee(Decimal('0.025'))
        assert fee.amount_on(Money(Decimal('1000'), Currency.ETB)).amount == Decimal('25.00')


class TestDailyFeeParsing:

    def test_default_base_is_principal(self):
        spec = parse_daily_fee({"type": "percentage", "value": "0.01"}, Currency.ETB)
        assert spec.base == DailyFeeBase.PRINCIPAL

    def test_principal_plus_service_fee(self):
        spec = parse_daily_fee(
            {"type": "percentage", "value": "0.01", "calculationBase": "principalPlusServiceFee"},
            Currency.ETB
        )
        assert spec.base == DailyFeeBase.PRINCIPAL_PLUS_SERVICE_FEE

    def test_unknown_base(self):
        with pytest.raises(InvalidConfiguration, match="calculation base"):
            parse_daily_fee({"type": "fixed", "value": 1, "calculationBase": "balance"},
                            Currency.ETB)


class TestPenaltyRuleParsing:

    def test_rules_sorted_by_threshold(self):
        rules = parse_penalty_rules(product_record()["penaltyRules"], Currency.ETB)

        assert [r.threshold_days for r in rules] == [1, 15]
        assert rules[0].fee == FixedFee(Money(Decimal('50'), Currency.ETB))

    def test_threshold_days_key(self):
        rules = parse_penalty_rules([{"thresholdDays": 5, "type": "fixed", "value": 10}],
                                    Currency.ETB)
        assert rules[0].threshold_days == 5

    def test_duplicate_thresholds_rejected(self):
        raw = [
            {"thresholdDays": 5, "type": "fixed", "value": 10},
            {"fromDay": 5, "type": "fixed", "value": 20},
        ]
        with pytest.raises(InvalidConfiguration, match="unique"):
            parse_penalty_rules(raw, Currency.ETB)

    @pytest.mark.parametrize("raw", [
        {"thresholdDays": 5},
        [{"type": "fixed", "value": 10}],
        [{"thresholdDays": -1, "type": "fixed", "value": 10}],
        ["fixed"],
    ])
    def test_invalid_rules(self, raw):
        with pytest.raises(InvalidConfiguration):
            parse_penalty_rules(raw, Currency.ETB)


class TestProductParsing:

    def test_full_record(self):
        product = parse_product(product_record(), percent_values_as_points=False)

        assert product.provider_id == "provider-1"
        assert product.currency == Currency.ETB
        assert product.duration_days == 30
        assert product.service_fee == PercentageFee(Decimal('0.02'))
        assert product.daily_fee.fee == FixedFee(Money(Decimal('5'), Currency.ETB))
        assert len(product.penalty_rules) == 2

    def test_disabled_flags_ignore_stored_configuration(self):
        product = parse_product(product_record(
            serviceFeeEnabled=False,
            dailyFeeEnabled=False,
            penaltyRulesEnabled=False,
            dailyFee="{broken",
        ), percent_values_as_points=False)

        assert product.service_fee is None
        assert product.daily_fee is None
        assert product.penalty_rules == ()

    def test_invalid_fee_is_not_silently_zero(self):
        with pytest.raises(InvalidConfiguration):
            parse_product(product_record(serviceFee='{"type": "mystery", "value": 1}'),
                          percent_values_as_points=False)

    def test_missing_provider(self):
        record = product_record()
        del record["providerId"]
        with pytest.raises(InvalidConfiguration):
            parse_product(record, percent_values_as_points=False)

    def test_fixed_fee_currency_must_match_product(self):
        with pytest.raises(ValueError, match="currency"):
            LoanProduct(
                id="p", created_at=None, updated_at=None,
                provider_id="provider-1", name="Mismatch", currency=Currency.ETB,
                duration_days=30,
                service_fee=FixedFee(Money(Decimal('10'), Currency.USD)),
            )

    def test_record_round_trip(self):
        product = parse_product(product_record(), percent_values_as_points=False)
        again = parse_product(product.to_record(), percent_values_as_points=False)

        assert again.service_fee == product.service_fee
        assert again.daily_fee == product.daily_fee
        assert again.penalty_rules == product.penalty_rules


class TestTaxParsing:

    def test_csv_applied_to(self):
        tax = parse_tax({"id": "vat", "name": "VAT", "rate": "0.15",
                         "appliedTo": "serviceFee, interest", "status": "active"},
                        percent_values_as_points=False)

        assert tax.applied_to == frozenset({FeeCategory.SERVICE_FEE, FeeCategory.DAILY_FEE})
        assert tax.is_active

    def test_json_applied_to_and_points(self):
        tax = parse_tax({"id": "vat", "rate": 15, "appliedTo": '["penalty"]',
                         "status": "Inactive"},
                        percent_values_as_points=True)

        assert tax.rate == Decimal('0.15')
        assert tax.status == TaxStatus.INACTIVE
        assert not tax.applies_to(FeeCategory.PENALTY)

    def test_unknown_category(self):
        with pytest.raises(InvalidConfiguration, match="unknown category"):
            parse_tax({"id": "vat", "rate": "0.1", "appliedTo": "principal"},
                      percent_values_as_points=False)

    def test_negative_rate(self):
        with pytest.raises(InvalidConfiguration):
            parse_tax({"id": "vat", "rate": "-0.1", "appliedTo": "serviceFee"},
                      percent_values_as_points=False)


class TestProductCatalog:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.catalog = ProductCatalog(self.storage)

    def test_create_and_get(self):
        product = self.catalog.create_product(
            provider_id="provider-1",
            name="Personal Loan",
            currency=Currency.ETB,
            duration_days=30,
            service_fee=PercentageFee(Decimal('0.1')),
            daily_fee=DailyFeeSpec(PercentageFee(Decimal('0.001'))),
            penalty_rules=(PenaltyRule(10, PercentageFee(Decimal('0.05'))),),
        )

        loaded = self.catalog.get_product(product.id)
        assert loaded.service_fee == PercentageFee(Decimal('0.1'))
        assert loaded.daily_fee == DailyFeeSpec(PercentageFee(Decimal('0.001')))
        assert loaded.penalty_rules == (PenaltyRule(10, PercentageFee(Decimal('0.05'))),)

    def test_get_missing(self):
        assert self.catalog.get_product("missing") is None

    def test_import_normalizes_points_to_ratios(self):
        product = self.catalog.import_product(
            product_record(serviceFee='{"type": "percentage", "value": 2}'),
            percent_values_as_points=True
        )

        assert product.service_fee.rate == Decimal('0.02')
        assert self.catalog.get_product(product.id).service_fee.rate == Decimal('0.02')

    def test_import_rejects_invalid_product(self):
        with pytest.raises(InvalidConfiguration):
            self.catalog.import_product(product_record(penaltyRules='{"oops": 1}'),
                                        percent_values_as_points=False)
        assert self.storage.count("loan_products") == 0

    def test_taxes(self):
        self.catalog.import_tax({"id": "vat", "name": "VAT", "rate": "0.15",
                                 "appliedTo": "ServiceFee"}, percent_values_as_points=False)
        self.catalog.import_tax({"id": "old", "name": "Old levy", "rate": "0.02",
                                 "appliedTo": "Penalty", "status": "Inactive"},
                                percent_values_as_points=False)

        taxes = {t.id: t for t in self.catalog.list_taxes()}
        assert taxes["vat"].applies_to(FeeCategory.SERVICE_FEE)
        assert not taxes["old"].is_active
