"""Invoice number allocation."""

import random
import secrets
from datetime import date


def allocate_invoice_number(issue_date: date, rng: random.Random | None = None) -> str:
    """
    Return INV-{YYYY}{MM}-{4 random digits} for the given issue date.

    The suffix only makes collisions unlikely; the unique index on
    invoices.invoice_number is what actually rejects a duplicate.
    """
    suffix = rng.randrange(10000) if rng is not None else secrets.randbelow(10000)
    return f"INV-{issue_date.year:04d}{issue_date.month:02d}-{suffix:04d}"
