"""
Test suite for the money module

Decimal precision per currency, arithmetic safety and amount parsing.
"""

import pytest
from decimal import Decimal

from retail_banking.currency import Money, Currency, decimal_from_string, parse_amount
from retail_banking.errors import InvalidAmount


class TestMoney:
    """Test Money class functionality"""

    def test_xaf_has_no_minor_unit(self):
        assert Money(Decimal('1500'), Currency.XAF).amount == Decimal('1500')
        assert Money(Decimal('12.5'), Currency.XAF).amount == Decimal('13')

    def test_usd_rounds_to_cents(self):
        money = Money(Decimal('10.005'), Currency.USD)
        assert money.amount == Decimal('10.01')

    def test_string_amount_is_converted(self):
        assert Money('250', Currency.XAF).amount == Decimal('250')

    def test_arithmetic(self):
        a = Money(Decimal('10000'), Currency.XAF)
        b = Money(Decimal('3000'), Currency.XAF)
        assert a - b == Money(Decimal('7000'), Currency.XAF)
        assert a + b == Money(Decimal('13000'), Currency.XAF)
        assert -b == Money(Decimal('-3000'), Currency.XAF)
        assert abs(-b) == b

    def test_currency_mismatch(self):
        with pytest.raises(ValueError):
            Money(Decimal('1'), Currency.XAF) + Money(Decimal('1'), Currency.USD)

    def test_comparisons(self):
        small = Money(Decimal('500'), Currency.XAF)
        large = Money(Decimal('1500'), Currency.XAF)
        assert small < large
        assert large >= small
        assert not small > large

    def test_sign_checks(self):
        assert Money.zero(Currency.XAF).is_zero()
        assert Money(Decimal('1'), Currency.XAF).is_positive()
        assert Money(Decimal('-1'), Currency.XAF).is_negative()

    def test_display(self):
        assert Money(Decimal('10000'), Currency.XAF).to_string() == "10,000 FCFA"
        assert Money(Decimal('1234.5'), Currency.USD).to_string() == "USD 1,234.50"


class TestDecimalFromString:

    def test_plain(self):
        assert decimal_from_string("3000") == Decimal('3000')

    def test_thousands_separator(self):
        assert decimal_from_string("1,500") == Decimal('1500')
        assert decimal_from_string("1,000,000") == Decimal('1000000')

    def test_decimal_comma(self):
        assert decimal_from_string("12,5") == Decimal('12.5')

    def test_garbage(self):
        with pytest.raises(InvalidAmount):
            decimal_from_string("abc")

    @pytest.mark.parametrize("value", ["1e3", "12abc", "$100", "1.2.3", "1,50,0", " "])
    def test_malformed_strings(self, value):
        with pytest.raises(InvalidAmount):
            decimal_from_string(value)

    def test_grouped_with_decimals(self):
        assert decimal_from_string(" 1,000,000.25 ") == Decimal('1000000.25')


    def test_empty(self):
        with pytest.raises(InvalidAmount):
            decimal_from_string("")


class TestParseAmount:

    def test_accepts_string_int_and_decimal(self):
        assert parse_amount("3000", Currency.XAF) == Money(Decimal('3000'), Currency.XAF)
        assert parse_amount(3000, Currency.XAF) == Money(Decimal('3000'), Currency.XAF)
        assert parse_amount(Decimal('3000'), Currency.XAF) == Money(Decimal('3000'), Currency.XAF)

    def test_rejects_float(self):
        with pytest.raises(InvalidAmount):
            parse_amount(30.5, Currency.XAF)

    def test_rejects_bool(self):
        with pytest.raises(InvalidAmount):
            parse_amount(True, Currency.XAF)

    @pytest.mark.parametrize("value", ["0", "-100", 0, -5])
    def test_rejects_non_positive(self, value):
        with pytest.raises(InvalidAmount):
            parse_amount(value, Currency.XAF)

    def test_rejects_non_finite(self):
        with pytest.raises(InvalidAmount):
            parse_amount(Decimal('Infinity'), Currency.XAF)
        with pytest.raises(InvalidAmount):
            parse_amount(Decimal('NaN'), Currency.XAF)

    def test_rejects_amount_rounding_to_zero(self):
        with pytest.raises(InvalidAmount):
            parse_amount("0.4", Currency.XAF)

    def test_rejects_foreign_money(self):
        with pytest.raises(InvalidAmount):
            parse_amount(Money(Decimal('10'), Currency.USD), Currency.XAF)

    @pytest.mark.parametrize("value", ["1500.6", "0.5", Decimal('10.01')])
    def test_rejects_fractional_francs(self, value):
        with pytest.raises(InvalidAmount):
            parse_amount(value, Currency.XAF)

    def test_cents_allowed_where_the_currency_has_them(self):
        assert parse_amount("10.25", Currency.USD) == Money(Decimal('10.25'), Currency.USD)
        assert parse_amount("3000.00", Currency.XAF) == Money(Decimal('3000'), Currency.XAF)
        with pytest.raises(InvalidAmount):
            parse_amount("10.255", Currency.USD)
