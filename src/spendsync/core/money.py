from __future__ import annotations

CURRENCY_SYMBOLS: dict[str, str] = {
    "USD": "$",
    "CAD": "CA$",
    "EUR": "€",
    "GBP": "£",
}


def format_amount(amount_cents: int, currency: str | None = "USD") -> str:
    """Format a signed cent amount for display.

    Positive amounts are money out and print as-is; negative amounts are
    money in (credits, refunds) and print with a leading ``+``.

    >>> format_amount(4210)
    '$42.10'
    >>> format_amount(-1999)
    '+$19.99'
    >>> format_amount(500, "JPY")
    '5.00 JPY'
    """
    code = (currency or "USD").upper()
    dollars, cents = divmod(abs(amount_cents), 100)
    number = f"{dollars:,}.{cents:02d}"
    symbol = CURRENCY_SYMBOLS.get(code)
    formatted = f"{symbol}{number}" if symbol else f"{number} {code}"
    return f"+{formatted}" if amount_cents < 0 else formatted
