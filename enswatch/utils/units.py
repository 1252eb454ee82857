"""Currency unit conversions."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation

WEI_PER_ETH = Decimal(10) ** 18


def parse_int(value: str | int | None, default: int = 0) -> int:
    """Parse a decimal or ``0x``-prefixed hex integer."""
    if value is None or value == "":
        return default
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if text.lower().startswith("0x"):
        return int(text, 16)
    return int(text)


def wei_to_eth(wei: int) -> Decimal:
    return Decimal(wei) / WEI_PER_ETH


def format_eth(wei: int, places: int | None = None) -> str:
    value = wei_to_eth(wei)
    if places is not None:
        return f"{value:.{places}f}"
    text = format(value.normalize(), "f")
    return text


def usd_value(amount_eth: str | Decimal, eth_usd: float | None) -> str | None:
    if eth_usd is None:
        return None
    try:
        amount = Decimal(str(amount_eth))
    except InvalidOperation:
        return None
    return f"{amount * Decimal(str(eth_usd)):.2f}"
