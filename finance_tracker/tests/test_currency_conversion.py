import unittest
from decimal import Decimal

from finance_tracker.currency_conversion import (
    SUPPORTED_CURRENCIES,
    convert_amount,
    convert_from_base,
    currency_name,
    format_amount,
    format_from_base,
    normalize_currency,
)
from finance_tracker.errors import ValidationError


class CurrencyConversionTests(unittest.TestCase):
    def setUp(self) -> None:
        self.rates = {
            "EUR": Decimal("117.5"),
            "USD": Decimal("107.8"),
            "HUF": Decimal("0.3"),
        }

    def test_same_currency_returns_original_amount(self) -> None:
        for currency in SUPPORTED_CURRENCIES:
            amount = convert_amount(Decimal("12.50"), currency, currency, {})

            self.assertEqual(amount, Decimal("12.50"))

    def test_foreign_to_base_multiplies_by_rate(self) -> None:
        amount = convert_amount(Decimal("10"), "EUR", "RSD", self.rates)

        self.assertEqual(amount, Decimal("1175.0"))

    def test_base_to_foreign_divides_by_rate(self) -> None:
        amount = convert_amount(Decimal("235"), "RSD", "EUR", self.rates)

        self.assertEqual(amount, Decimal("2"))

    def test_cross_conversion_goes_through_base(self) -> None:
        amount = convert_amount(Decimal("3"), "HUF", "EUR", self.rates)

        self.assertEqual(amount, Decimal("0.9") / Decimal("117.5"))

    def test_round_trip_through_foreign_currency(self) -> None:
        original = Decimal("1234.56")
        in_euro = convert_amount(original, "RSD", "EUR", self.rates)
        back = convert_amount(in_euro, "EUR", "RSD", self.rates)

        self.assertLess(abs(back - original), Decimal("0.000001"))

    def test_normalizes_currency_codes(self) -> None:
        amount = convert_amount(Decimal("2"), " eur ", "rsd", self.rates)

        self.assertEqual(amount, Decimal("235.0"))
        self.assertEqual(normalize_currency(" usd"), "USD")

    def test_unsupported_currency_raises(self) -> None:
        with self.assertRaises(ValidationError):
            convert_amount(Decimal("5"), "RSD", "GBP", self.rates)

    def test_missing_rate_raises(self) -> None:
        with self.assertRaises(ValidationError):
            convert_amount(Decimal("5"), "RSD", "HUF", {"EUR": Decimal("117.5")})

    def test_zero_rate_raises(self) -> None:
        with self.assertRaises(ValidationError):
            convert_amount(Decimal("5"), "RSD", "USD", {"USD": Decimal("0")})

    def test_convert_from_base(self) -> None:
        self.assertEqual(convert_from_base(Decimal("539"), "USD", self.rates), Decimal("5"))
        self.assertEqual(convert_from_base(Decimal("539"), "RSD", self.rates), Decimal("539"))


class CurrencyFormattingTests(unittest.TestCase):
    def test_symbol_prefix_for_euro_and_dollar(self) -> None:
        self.assertEqual(format_amount(Decimal("1234.5"), "EUR"), "€1,234.50")
        self.assertEqual(format_amount(Decimal("0.005"), "USD"), "$0.01")

    def test_symbol_suffix_for_dinar_and_forint(self) -> None:
        self.assertEqual(format_amount(Decimal("1234567.891"), "RSD"), "1,234,567.89 дин")
        self.assertEqual(format_amount(Decimal("10"), "HUF"), "10.00 Ft")

    def test_negative_amount_sign_precedes_symbol(self) -> None:
        self.assertEqual(format_amount(Decimal("-12"), "EUR"), "-€12.00")
        self.assertEqual(format_amount(Decimal("-1200"), "RSD"), "-1,200.00 дин")

    def test_format_from_base_converts_first(self) -> None:
        text = format_from_base(Decimal("235"), "EUR", {"EUR": Decimal("117.5")})

        self.assertEqual(text, "€2.00")

    def test_currency_names(self) -> None:
        self.assertEqual(currency_name("huf"), "Hungarian Forint (HUF)")


if __name__ == "__main__":
    unittest.main()
