"""Run one monthly billing cycle from the command line.

Usage: python run_billing.py [--date YYYY-MM-DD]

Exits with status 1 when any customer recorded an error. Scheduling is left to
cron or whatever runs this script.
"""

import argparse
import sys
from datetime import date

import structlog

from backend.app.core.logging import setup_logging
from backend.app.db.base import Base
from backend.app.db.session import SessionLocal, engine
from backend.app.services.billing import run_billing_cycle

logger = structlog.get_logger("run_billing")


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid date {value!r}, expected YYYY-MM-DD") from exc


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Generate monthly SmartHands invoices.")
    parser.add_argument("--date", type=_parse_date, default=None, help="reference date (defaults to today, UTC)")
    args = parser.parse_args(argv)

    setup_logging()
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        result = run_billing_cycle(db, args.date)
    finally:
        db.close()

    print(f"Billing period {result.period}: {result.generated_count} generated, {result.skipped_count} skipped")
    for invoice in result.invoices:
        print(f"  {invoice.invoice_number}  owner={invoice.owner_id}  total=${invoice.total:.2f}")
    for number in result.reconciled:
        print(f"  removed incomplete invoice {number}")
    for error in result.errors:
        print(f"  ERROR: {error}")
    if result.cancelled:
        print("Cycle cancelled before all customers were processed")

    if result.errors:
        logger.warning("Billing run finished with errors", errors=len(result.errors))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
