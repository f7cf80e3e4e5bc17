from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Mapping

from finance_tracker.errors import ValidationError

BASE_CURRENCY = "RSD"
SUPPORTED_CURRENCIES = ("RSD", "EUR", "USD", "HUF")
MINOR_UNIT = Decimal("0.01")

CURRENCY_SYMBOLS: dict[str, str] = {
    "RSD": "дин",
    "EUR": "€",
    "USD": "$",
    "HUF": "Ft",
}

CURRENCY_NAMES: dict[str, str] = {
    "RSD": "Serbian Dinar (RSD)",
    "EUR": "Euro (EUR)",
    "USD": "US Dollar (USD)",
    "HUF": "Hungarian Forint (HUF)",
}

# Currencies whose symbol follows the amount.
SUFFIX_SYMBOL_CURRENCIES = {"RSD", "HUF"}


def normalize_currency(value: str) -> str:
    normalized = value.strip().upper() if isinstance(value, str) else ""
    if normalized not in SUPPORTED_CURRENCIES:
        raise ValidationError(
            f"Invalid currency. Must be one of: {', '.join(SUPPORTED_CURRENCIES)}."
        )
    return normalized


def coerce_decimal(value: Decimal | float | int | str) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def quantize_money(value: Decimal | float | int | str) -> Decimal:
    return coerce_decimal(value).quantize(MINOR_UNIT, rounding=ROUND_HALF_UP)


def convert_amount(
    amount: Decimal | int | float | str,
    source_currency: str,
    target_currency: str,
    rates: Mapping[str, Decimal],
) -> Decimal:
    """Convert an amount between two currencies through the base currency.

    ``rates`` maps each foreign currency to the amount of base currency one
    unit of it is worth.
    """
    normalized_source = normalize_currency(source_currency)
    normalized_target = normalize_currency(target_currency)
    coerced_amount = coerce_decimal(amount)

    if normalized_source == normalized_target:
        return coerced_amount

    amount_in_base = coerced_amount
    if normalized_source != BASE_CURRENCY:
        amount_in_base = coerced_amount * _rate_for(normalized_source, rates)
    return convert_from_base(amount_in_base, normalized_target, rates)


def convert_from_base(
    amount_in_base: Decimal | int | float | str,
    target_currency: str,
    rates: Mapping[str, Decimal],
) -> Decimal:
    normalized_target = normalize_currency(target_currency)
    coerced_amount = coerce_decimal(amount_in_base)
    if normalized_target == BASE_CURRENCY:
        return coerced_amount
    return coerced_amount / _rate_for(normalized_target, rates)


def format_amount(amount: Decimal | int | float | str, currency: str) -> str:
    """Render an amount with two decimals and the currency symbol.

    Formatting is locale independent: comma thousands separator, period
    decimal separator.
    """
    normalized = normalize_currency(currency)
    rounded = quantize_money(amount)
    sign = "-" if rounded < 0 else ""
    digits = f"{abs(rounded):,.2f}"
    symbol = CURRENCY_SYMBOLS[normalized]
    if normalized in SUFFIX_SYMBOL_CURRENCIES:
        return f"{sign}{digits} {symbol}"
    return f"{sign}{symbol}{digits}"


def format_from_base(
    amount_in_base: Decimal | int | float | str,
    target_currency: str,
    rates: Mapping[str, Decimal],
) -> str:
    return format_amount(convert_from_base(amount_in_base, target_currency, rates), target_currency)


def currency_name(currency: str) -> str:
    return CURRENCY_NAMES[normalize_currency(currency)]


def _rate_for(currency: str, rates: Mapping[str, Decimal]) -> Decimal:
    raw = rates.get(currency)
    if raw is None:
        raise ValidationError(f"Missing exchange rate for {currency}.")
    rate = coerce_decimal(raw)
    if rate <= 0:
        raise ValidationError(f"Invalid exchange rate for {currency}.")
    return rate
