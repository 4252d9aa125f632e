from decimal import Decimal, ROUND_HALF_UP

from auction_engine.config import settings

CENT = Decimal("0.01")


def to_cents(amount: float) -> float:
    """Round to whole cents. Going through ``str`` keeps 0.1 + 0.2 at 0.3."""
    return float(Decimal(str(amount)).quantize(CENT, rounding=ROUND_HALF_UP))


def format_money(amount: float) -> str:
    amount = to_cents(amount)
    if amount.is_integer():
        return f"{settings.CURRENCY_SYMBOL}{amount:,.0f}"
    return f"{settings.CURRENCY_SYMBOL}{amount:,.2f}"
