"""Billing periods and the ledger of (owner, period) pairs already invoiced."""

import re
from calendar import monthrange
from datetime import date, datetime
from typing import Iterable

INVOICE_PERIOD_PATTERN = re.compile(r"^INV-(\d{4})(\d{2})-")


def billing_period_for(value: date | datetime) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def period_bounds(value: date | datetime) -> tuple[date, date]:
    """Return (first day, last day) of the calendar month containing value."""
    first_day = date(value.year, value.month, 1)
    last_day = date(value.year, value.month, monthrange(value.year, value.month)[1])
    return first_day, last_day


def parse_invoice_period(invoice_number: str | None) -> str | None:
    """Recover "YYYY-MM" from an INV-YYYYMM-xxxx number; None when it doesn't match."""
    if not invoice_number:
        return None
    match = INVOICE_PERIOD_PATTERN.match(invoice_number)
    if not match:
        return None
    return f"{match.group(1)}-{match.group(2)}"


def period_key(owner_id: int, period: str) -> str:
    return f"{owner_id}:{period}"


class PeriodLedger:
    """
    Read-only index answering "has owner U already been invoiced for month M?".

    Each invoice contributes its persisted billing_period, or the period encoded
    in its number for rows that predate that column. Invoices with neither
    (hand-edited or legacy numbers) contribute nothing.
    """

    def __init__(self, keys: Iterable[str]):
        self._keys = frozenset(keys)

    @classmethod
    def from_invoices(cls, invoices: Iterable) -> "PeriodLedger":
        keys = []
        for invoice in invoices:
            period = invoice.billing_period or parse_invoice_period(invoice.invoice_number)
            if period is None:
                continue
            keys.append(period_key(invoice.owner_id, period))
        return cls(keys)

    def contains(self, owner_id: int, period: str) -> bool:
        return period_key(owner_id, period) in self._keys

    def __contains__(self, key: str) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    @property
    def keys(self) -> frozenset[str]:
        return self._keys
