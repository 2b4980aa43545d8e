"""Invoice number generation.

Format:  {prefix}-{date}-{seq:3}    e.g. FAC-20261017-004

{date} is the issue date as YYYYMMDD; {seq} restarts every day.  The
sequence is derived from the numbers already issued with the same prefix,
so two writers racing for the same day can pick the same number.  The
unique index on invoices.invoice_number rejects the loser, who retries
with `attempt` bumped to skip past the number that was just taken.
"""

import re
from datetime import date

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from coopbilling.config import settings
from coopbilling.models.invoice import Invoice

DEFAULT_FORMAT = "{prefix}-{date}-{seq:3}"


def _build_prefix(fmt: str, prefix: str, date_str: str) -> str:
    """Everything before {seq:N}, used to find today's numbers."""
    head = fmt.replace("{prefix}", prefix).replace("{date}", date_str)
    return re.sub(r"\{seq:\d+\}.*$", "", head)


def format_invoice_number(seq_num: int, issue_date: date, prefix: str | None = None,
                          fmt: str = DEFAULT_FORMAT) -> str:
    prefix = prefix or settings.invoice_number_prefix
    date_str = issue_date.strftime("%Y%m%d")

    seq_match = re.search(r"\{seq:(\d+)\}", fmt)
    seq_width = int(seq_match.group(1)) if seq_match else 3

    code = fmt.replace("{prefix}", prefix).replace("{date}", date_str)
    return re.sub(r"\{seq:\d+\}", f"{seq_num:0{seq_width}d}", code)


async def generate_invoice_number(
    db: AsyncSession,
    issue_date: date | None = None,
    attempt: int = 0,
) -> str:
    """Next free-looking invoice number for `issue_date` (default today)."""
    issue_date = issue_date or date.today()
    prefix = _build_prefix(
        DEFAULT_FORMAT, settings.invoice_number_prefix, issue_date.strftime("%Y%m%d")
    )

    result = await db.execute(
        select(func.count(Invoice.id)).where(
            Invoice.invoice_number.like(f"{prefix}%")
        )
    )
    count = result.scalar() or 0
    return format_invoice_number(count + 1 + attempt, issue_date)
