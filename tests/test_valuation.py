"""Valuation arithmetic and payment status rules."""

from decimal import Decimal

import pytest

from coopbilling.schemas.price_catalog import CatalogTerms, CertificationPremium
from coopbilling.services.valuation import (
    NO_VALUATION,
    advance_payment_status,
    compute_valuation,
    derive_payment_status,
    invoice_total,
    round_currency,
    status_after_payment,
)


def _terms(base=400.0, premiums=None, certs=(("Organic", 20.0),)):
    return CatalogTerms(
        id="entry-1",
        base_price=base,
        quality_premiums=premiums if premiums is not None else {"A": 50, "B": 25, "C": 0},
        certifications=[CertificationPremium(name=n, premium=p) for n, p in certs],
    )


@pytest.mark.unit
class TestComputeValuation:

    def test_reference_example(self):
        """400/kg base + 50 grade A + 20 organic over 2.5 t."""
        v = compute_valuation(_terms(), "A", 2.5)
        assert v.price_per_kg == 470
        assert v.price_per_ton == 470000
        assert v.total_cost == 1175000
        assert v.base_price == 400
        assert v.quality_premium == 50
        assert v.certification_premiums == 20
        assert v.entry_id == "entry-1"

    def test_missing_grade_prices_at_zero_premium(self):
        v = compute_valuation(_terms(premiums={"A": 50}), "C", 1.0)
        assert v.quality_premium == 0
        assert v.price_per_ton == 420000

    def test_no_certifications(self):
        v = compute_valuation(_terms(certs=()), "B", 1.0)
        assert v.price_per_ton == 425000

    def test_several_certifications_are_summed(self):
        v = compute_valuation(_terms(certs=(("Organic", 20), ("Fairtrade", 7.5))), "A", 1.0)
        assert v.certification_premiums == 27.5
        assert v.price_per_ton == 477500

    def test_fractional_per_kg_rounds_half_up_per_ton(self):
        v = compute_valuation(_terms(base=0.0005, premiums={}, certs=()), "A", 1.0)
        assert v.price_per_ton == 1

    def test_total_cost_rounds_half_up(self):
        # 3 × 0.5 t = 1.5 → 2
        v = compute_valuation(_terms(base=0.003, premiums={}, certs=()), "A", 0.5)
        assert v.price_per_ton == 3
        assert v.total_cost == 2

    def test_float_noise_does_not_decide_rounding(self):
        # 0.1 + 0.2 in binary is 0.30000000000000004
        v = compute_valuation(_terms(base=0.1, premiums={"A": 0.2}, certs=()), "A", 1.0)
        assert v.price_per_ton == 300

    def test_no_active_entry_is_unpriced(self):
        v = compute_valuation(None, "A", 2.0)
        assert v is NO_VALUATION
        assert not v.is_priced

    def test_zero_quantity_is_unpriced(self):
        v = compute_valuation(_terms(), "A", 0)
        assert v.price_per_ton == 470000
        assert v.total_cost == 0
        assert not v.is_priced


@pytest.mark.unit
class TestRounding:

    def test_round_currency(self):
        assert round_currency(Decimal("2.5")) == 3
        assert round_currency(Decimal("2.4999")) == 2
        assert round_currency(Decimal("-2.5")) == -3

    def test_invoice_total(self):
        assert invoice_total(500000, 2.0) == 1000000
        assert invoice_total(470000, 2.5) == 1175000
        assert invoice_total(0, 2.0) == 0


@pytest.mark.unit
class TestPaymentStatus:

    def test_derive(self):
        assert derive_payment_status(0, 1000) == "pending"
        assert derive_payment_status(1, 1000) == "partial"
        assert derive_payment_status(1000, 1000) == "completed"
        assert derive_payment_status(1500, 1000) == "completed"

    def test_derive_with_no_valuation(self):
        assert derive_payment_status(100, 0) == "partial"

    def test_advance_never_regresses(self):
        assert advance_payment_status("completed", "partial") == "completed"
        assert advance_payment_status("partial", "pending") == "partial"
        assert advance_payment_status("pending", "partial") == "partial"
        assert advance_payment_status(None, "completed") == "completed"

    def test_after_payment_is_never_pending(self):
        assert status_after_payment("pending", 1, 1000) == "partial"
        assert status_after_payment("partial", 1000, 1000) == "completed"
        assert status_after_payment("completed", 10, 1000) == "completed"
