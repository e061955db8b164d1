"""Exceptions raised by the billing services."""


class BillingError(Exception):
    """Base class for billing engine failures."""


class InvoicePersistenceError(BillingError):
    """Writing an invoice or its items failed; nothing for that invoice was committed."""

    def __init__(self, message: str, invoice_number: str | None = None):
        super().__init__(message)
        self.invoice_number = invoice_number


class NotificationError(BillingError):
    """The mail transport could not deliver a message."""
