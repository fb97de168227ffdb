from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Tuple

DELIVERY_FEE = Decimal("40.00")
TAX_RATE = Decimal("0.05")
CENTS = Decimal("0.01")


def to_money(value) -> Decimal:
    """Quantize a decimal amount to two places, half up."""
    return Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PriceBreakdown:
    subtotal: Decimal
    delivery_fee: Decimal
    tax: Decimal

    @property
    def total(self) -> Decimal:
        return self.subtotal + self.delivery_fee + self.tax

    def stored(self) -> dict:
        """Values as persisted on the order row."""
        return {
            "subtotal": to_money(self.subtotal),
            "delivery_fee": to_money(self.delivery_fee),
            "tax": to_money(self.tax),
            "total_amount": to_money(self.total),
        }


def price_lines(lines: Iterable[Tuple[Decimal, int]]) -> PriceBreakdown:
    """Price a cart given ``(unit_price, quantity)`` pairs."""
    subtotal = Decimal("0")
    for unit_price, quantity in lines:
        subtotal += Decimal(unit_price) * quantity
    return PriceBreakdown(
        subtotal=subtotal,
        delivery_fee=DELIVERY_FEE,
        tax=subtotal * TAX_RATE,
    )


def to_minor_units(amount: Decimal) -> int:
    """Rupees to paise."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
