"""
Monetary and quantity primitives for order pricing.

Key Principles:
1. NEVER use float for money
2. Always quantize Decimals to the currency's minor unit before storing
3. Use ROUND_HALF_EVEN (banker's rounding) to prevent systematic bias
4. Line totals are derived from the unit price snapshot, never stored independently
"""

from decimal import Decimal, ROUND_HALF_EVEN, getcontext
from typing import Iterable, Union

getcontext().prec = 28

Amount = Union[Decimal, str, int, float]

ZERO = Decimal("0")

# Currency minor unit exponents (how many decimal places)
CURRENCY_EXPONENT = {
    # Zero-decimal currencies
    "VND": 0,  # Vietnamese Dong (no subunit)
    "JPY": 0,
    "KRW": 0,

    # 2-decimal currencies
    "USD": 2,
    "EUR": 2,
    "THB": 2,
}

QUANTITY_PLACES = Decimal("0.0001")


def currency_exponent(currency: str) -> int:
    """
    Get the number of decimal places for a currency.

    Examples:
        >>> currency_exponent("VND")
        0
        >>> currency_exponent("USD")
        2
    """
    return CURRENCY_EXPONENT.get(currency.upper(), 2)


def quantize_decimal(currency: str) -> Decimal:
    """Smallest unit of a currency (Decimal('1') for VND, Decimal('0.01') for USD)."""
    return Decimal(10) ** -currency_exponent(currency)


def to_decimal(amount: Amount) -> Decimal:
    if amount is None:
        return ZERO
    if isinstance(amount, Decimal):
        return amount
    if isinstance(amount, float):
        # Convert float to string first to avoid binary precision issues
        amount = str(amount)
    return Decimal(amount)


def quantize(currency: str, amount: Amount) -> Decimal:
    """
    Round to currency decimals using banker's rounding (ROUND_HALF_EVEN).

    Examples:
        >>> quantize("VND", "12500.5")
        Decimal('12500')
        >>> quantize("USD", "10.127")
        Decimal('10.13')
    """
    return to_decimal(amount).quantize(quantize_decimal(currency), rounding=ROUND_HALF_EVEN)


def to_minor(currency: str, amount: Amount) -> int:
    """
    Convert to minor units after quantization.

    Examples:
        >>> to_minor("VND", "50000")
        50000
        >>> to_minor("USD", "10.125")
        1012
    """
    quantized = quantize(currency, amount)
    exponent = currency_exponent(currency)
    return int((quantized * (10 ** exponent)).to_integral_value())


def from_minor(currency: str, minor: int) -> Decimal:
    exponent = currency_exponent(currency)
    return Decimal(minor) / (10 ** exponent)


def line_total(currency: str, unit_price: Amount, quantity: int) -> Decimal:
    """Line total = quantity x unit price snapshot, in currency precision."""
    return quantize(currency, to_decimal(unit_price) * Decimal(int(quantity)))


def sum_money(currency: str, amounts: Iterable[Amount]) -> Decimal:
    total = ZERO
    for amount in amounts:
        total += to_decimal(amount)
    return quantize(currency, total)


def calculate_percentage(currency: str, amount: Amount, percentage: Amount) -> Decimal:
    """
    Calculate a percentage of an amount, rounded to the currency.

    Examples:
        >>> calculate_percentage("VND", "100000", "10")
        Decimal('10000')
    """
    result = to_decimal(amount) * (to_decimal(percentage) / Decimal("100"))
    return quantize(currency, result)


def clamp(amount: Decimal, lower: Decimal = ZERO, upper: Decimal = None) -> Decimal:
    if amount < lower:
        return lower
    if upper is not None and amount > upper:
        return upper
    return amount


def quantize_quantity(value: Amount) -> Decimal:
    """Round a stock/recipe quantity to 4 decimal places."""
    return to_decimal(value).quantize(QUANTITY_PLACES, rounding=ROUND_HALF_EVEN)


def format_money(currency: str, amount: Amount) -> str:
    """
    Format an amount for user-facing messages.

    Examples:
        >>> format_money("VND", 100000)
        '100.000đ'
        >>> format_money("USD", "10.5")
        '$10.50'
    """
    value = quantize(currency, amount)
    exponent = currency_exponent(currency)

    if currency.upper() == "VND":
        # Vietnamese grouping uses dots as thousand separators
        return f"{value:,.0f}".replace(",", ".") + "đ"

    symbols = {"USD": "$", "EUR": "€", "JPY": "¥", "KRW": "₩"}
    symbol = symbols.get(currency.upper(), currency + " ")
    return f"{symbol}{value:,.{exponent}f}"
