"""Management CLI for sweeps and the price catalog.

Usage:
    python -m coopbilling.cli revalue            # Revalue every lot
    python -m coopbilling.cli ensure-invoices    # Create missing invoices
    python -m coopbilling.cli finish-payments    # Record lot-only payments on invoices
    python -m coopbilling.cli reconcile          # Revalue, invoice, run checks
    python -m coopbilling.cli activate <id>      # Activate a catalog entry
    python -m coopbilling.cli deactivate <id>    # Deactivate a catalog entry
"""

import asyncio
import logging
import sys

from coopbilling.config import settings
from coopbilling.database import async_session, engine
from coopbilling.middleware.exceptions import CoopBillingException
from coopbilling.services import price_catalog
from coopbilling.services.scheduler import ReconciliationScheduler
from coopbilling.utils.cache import close_redis

USAGE = "Usage: python -m coopbilling.cli [revalue|ensure-invoices|finish-payments|reconcile|activate <id>|deactivate <id>]"


def _print_summary(title: str, summary: dict | None):
    if summary is None:
        return
    print(title)
    for key, value in summary.items():
        print(f"  {key}: {value}")


async def revalue():
    summary = await ReconciliationScheduler().revalue_all()
    _print_summary("Revaluation", summary)


async def ensure_invoices():
    summary = await ReconciliationScheduler().ensure_invoices_for_all_stocks()
    _print_summary("Invoice sweep", summary)


async def finish_payments():
    summary = await ReconciliationScheduler().record_unfinished_payments()
    _print_summary("Payment catch-up", summary)


async def reconcile():
    summary = await ReconciliationScheduler().run_full_sweep()
    _print_summary("Revaluation", summary["revaluation"])
    _print_summary("Invoice sweep", summary["invoices"])
    _print_summary("Payment catch-up", summary["payments"])
    _print_summary("Consistency checks", summary["reconciliation"])


async def activate(entry_id: str):
    async with async_session() as db:
        result = await price_catalog.activate(db, entry_id)
    print(f"Activated {entry_id}")
    _print_summary("Revaluation", result["revaluation"])
    _print_summary("Invoice sweep", result["invoices"])


async def deactivate(entry_id: str):
    async with async_session() as db:
        await price_catalog.deactivate(db, entry_id)
    print(f"Deactivated {entry_id}")


async def _run(coro) -> int:
    try:
        await coro
    except CoopBillingException as exc:
        print(f"  FAILED: {exc.error_code} - {exc.message}")
        return 1
    finally:
        await close_redis()
        await engine.dispose()
    return 0


def main(argv: list[str]) -> int:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    cmd = argv[1] if len(argv) > 1 else ""
    arg = argv[2] if len(argv) > 2 else None

    if cmd == "revalue":
        return asyncio.run(_run(revalue()))
    if cmd == "ensure-invoices":
        return asyncio.run(_run(ensure_invoices()))
    if cmd == "finish-payments":
        return asyncio.run(_run(finish_payments()))
    if cmd == "reconcile":
        return asyncio.run(_run(reconcile()))
    if cmd == "activate" and arg:
        return asyncio.run(_run(activate(arg)))
    if cmd == "deactivate" and arg:
        return asyncio.run(_run(deactivate(arg)))

    print(USAGE)
    return 2


if __name__ == "__main__":
    sys.exit(main(sys.argv))
