"""Stock lot valuation — pure functions, no I/O.

    unit price per kg = base_price + quality_premiums[quality] + Σ certification premiums
    price_per_ton     = round(unit price per kg × 1000)
    total_cost        = round(price_per_ton × original_quantity)

Per-kg values keep their fractional part; only the two final figures are
rounded to whole currency units, half away from zero.  Floats enter through
their repr (Decimal(str(x))) so 0.1-style binary noise never decides a
rounding step.

The payment status helpers live here too because stock lots and invoices
share the same pending → partial → completed machine.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from coopbilling.schemas.price_catalog import CatalogTerms

KG_PER_TON = Decimal(1000)

STATUS_ORDER = {"pending": 0, "partial": 1, "completed": 2}


@dataclass(frozen=True)
class Valuation:
    """Result of valuing one lot against one catalog entry."""
    price_per_ton: int = 0
    total_cost: int = 0
    base_price: float = 0.0
    quality_premium: float = 0.0
    certification_premiums: float = 0.0
    price_per_kg: float = 0.0
    entry_id: str | None = None

    @property
    def is_priced(self) -> bool:
        return self.price_per_ton > 0 and self.total_cost > 0


NO_VALUATION = Valuation()


def _dec(value) -> Decimal:
    return Decimal(str(value or 0))


def round_currency(value: Decimal) -> int:
    """Round to a whole currency unit, halves away from zero."""
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def compute_valuation(
    terms: CatalogTerms | None,
    quality: str,
    original_quantity: float,
) -> Valuation:
    """Value a lot of `original_quantity` tons of grade `quality`.

    Returns NO_VALUATION when there is no active catalog entry; callers
    treat that as "missing price data".
    """
    if terms is None:
        return NO_VALUATION

    base = _dec(terms.base_price)
    quality_premium = _dec(terms.quality_premiums.get(quality, 0))
    certification_premiums = sum(
        (_dec(cert.premium) for cert in terms.certifications), Decimal(0)
    )

    price_per_kg = base + quality_premium + certification_premiums
    price_per_ton = round_currency(price_per_kg * KG_PER_TON)
    total_cost = round_currency(Decimal(price_per_ton) * _dec(original_quantity))

    return Valuation(
        price_per_ton=price_per_ton,
        total_cost=total_cost,
        base_price=float(base),
        quality_premium=float(quality_premium),
        certification_premiums=float(certification_premiums),
        price_per_kg=float(price_per_kg),
        entry_id=terms.id,
    )


def invoice_total(price_per_ton: int, quantity: float) -> int:
    """Frozen invoice amount: price_per_ton × tons, whole currency units."""
    return round_currency(Decimal(price_per_ton or 0) * _dec(quantity))


def derive_payment_status(amount_paid: int, threshold: int) -> str:
    """Status implied by what has been paid against `threshold`."""
    if not amount_paid or amount_paid <= 0:
        return "pending"
    if threshold > 0 and amount_paid >= threshold:
        return "completed"
    return "partial"


def advance_payment_status(current: str | None, derived: str) -> str:
    """Move along pending → partial → completed, never backwards."""
    if STATUS_ORDER.get(current or "pending", 0) > STATUS_ORDER[derived]:
        return current
    return derived


def status_after_payment(current: str | None, new_amount_paid: int, threshold: int) -> str:
    """Status once a payment has been added: completed or partial, never pending."""
    derived = "completed" if new_amount_paid >= threshold else "partial"
    return advance_payment_status(current, derived)
