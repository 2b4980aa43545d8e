"""Invoice number format and sequencing."""

from datetime import date

import pytest

from coopbilling.models.invoice import Invoice
from coopbilling.utils.numbering import format_invoice_number, generate_invoice_number


@pytest.mark.unit
class TestFormat:

    def test_default_format(self):
        assert format_invoice_number(4, date(2026, 10, 17)) == "FAC-20261017-004"

    def test_sequence_wider_than_padding(self):
        assert format_invoice_number(1234, date(2026, 1, 2)) == "FAC-20260102-1234"

    def test_custom_prefix_and_format(self):
        number = format_invoice_number(7, date(2026, 1, 2), prefix="INV", fmt="{prefix}/{date}/{seq:5}")
        assert number == "INV/20260102/00007"


@pytest.mark.integration
@pytest.mark.asyncio
class TestGenerate:

    async def test_sequence_restarts_each_day(self, make_lot, db_session):
        day = date(2026, 10, 17)
        lot_id = await make_lot()
        db_session.add(Invoice(
            invoice_number=format_invoice_number(1, day), stock_id=lot_id, producer_id="p",
            issue_date=day, due_date=day, quantity=1, quality="A",
            base_price=1, price_per_ton=1000, total_amount=1000,
        ))
        await db_session.commit()

        assert await generate_invoice_number(db_session, day) == "FAC-20261017-002"
        assert await generate_invoice_number(db_session, day, attempt=2) == "FAC-20261017-004"
        assert await generate_invoice_number(db_session, date(2026, 10, 18)) == "FAC-20261018-001"
