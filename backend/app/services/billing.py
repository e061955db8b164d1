"""Monthly billing cycle.

One call to run_billing_cycle bills every eligible customer once for the month
containing the reference date:

1. reconcile abandoned item-less invoices, then load invoice history into a
   PeriodLedger (read-only from here on);
2. for each customer: skip when inactive, without contact users, without active
   services, or already billed for the period; otherwise write the invoice and
   its items atomically and notify the customer's contact.

Failures for one customer become strings in the result's errors list and never
stop the loop. Only the initial bulk reads may raise to the caller.
"""

import random
import threading
from datetime import date, timedelta
from typing import Callable, List, Sequence

import structlog
from sqlalchemy.orm import Session

from backend.app.core.settings import get_settings
from backend.app.core.time import format_us_date, utc_now, utc_today
from backend.app.models.customer import Customer
from backend.app.models.invoice import Invoice
from backend.app.models.user import User
from backend.app.schemas.billing import BillingCycleResult
from backend.app.schemas.invoice import InvoiceRead
from backend.app.services import catalog
from backend.app.services.invoice_numbers import allocate_invoice_number
from backend.app.services.line_items import build_line_items, compute_totals
from backend.app.services.notifications import (
    InvoiceNotification,
    NotificationResult,
    get_transport,
    send_invoice_notification,
)
from backend.app.services.periods import PeriodLedger, billing_period_for, period_bounds

logger = structlog.get_logger(__name__)

Notifier = Callable[[InvoiceNotification], NotificationResult]


def resolve_billing_owner(users: Sequence[User]) -> User | None:
    """The flagged billing contact (lowest id wins), else the first user by id."""
    if not users:
        return None
    ordered = sorted(users, key=lambda u: u.id)
    for user in ordered:
        if user.is_billing_contact:
            return user
    return ordered[0]


def reconcile_incomplete_invoices(db: Session, now=None) -> List[str]:
    """Delete pending invoices left without items past the grace period."""
    settings = get_settings()
    now = now or utc_now()
    cutoff = now - timedelta(seconds=settings.incomplete_invoice_grace_seconds)
    stale = catalog.find_incomplete_invoices(db, older_than=cutoff)
    if not stale:
        return []
    return catalog.delete_invoices(db, stale)


def _default_notifier() -> Notifier:
    transport = get_transport()

    def notify(notification: InvoiceNotification) -> NotificationResult:
        return send_invoice_notification(notification, transport=transport)

    return notify


def _generate_invoice(
    db: Session,
    owner: User,
    services,
    reference_date: date,
    period: str,
    rng: random.Random | None,
) -> Invoice:
    items = build_line_items(services)
    totals = compute_totals(items)
    issue_date, due_date = period_bounds(reference_date)

    invoice_fields = {
        "owner_id": owner.id,
        "invoice_number": allocate_invoice_number(issue_date, rng=rng),
        "billing_period": period,
        "status": "pending",
        "issue_date": issue_date,
        "due_date": due_date,
        "subtotal": totals.subtotal,
        "tax": totals.tax,
        "total": totals.total,
    }
    item_fields = [
        {
            "service_id": item.service_id,
            "description": item.description,
            "quantity": item.quantity,
            "unit_price": item.unit_price,
            "total": item.total,
        }
        for item in items
    ]
    return catalog.persist_invoice_with_items(db, invoice_fields, item_fields)


def _notification_for(customer: Customer, invoice: Invoice, item_count: int) -> InvoiceNotification:
    return InvoiceNotification(
        customer_name=customer.name,
        contact_name=customer.contact_name or customer.name,
        email=customer.email,
        invoice_number=invoice.invoice_number,
        total=f"{invoice.total:.2f}",
        issue_date=format_us_date(invoice.issue_date),
        due_date=format_us_date(invoice.due_date),
        item_count=item_count,
    )


def run_billing_cycle(
    db: Session,
    reference_date: date | None = None,
    *,
    notifier: Notifier | None = None,
    cancel_event: threading.Event | None = None,
    rng: random.Random | None = None,
) -> BillingCycleResult:
    reference_date = reference_date or utc_today()
    period = billing_period_for(reference_date)
    result = BillingCycleResult(period=period)
    log = logger.bind(period=period)
    log.info("Billing cycle started")

    # Bulk phase: failures here abort the whole cycle.
    result.reconciled = reconcile_incomplete_invoices(db)
    customers = catalog.list_customers(db)
    ledger = PeriodLedger.from_invoices(catalog.list_all_invoices(db))
    notifier = notifier or _default_notifier()

    for customer in customers:
        if cancel_event is not None and cancel_event.is_set():
            result.cancelled = True
            log.warning("Billing cycle cancelled", remaining_from_customer_id=customer.id)
            break

        customer_log = log.bind(customer_id=customer.id)

        if not customer.active:
            result.skipped_count += 1
            customer_log.debug("Customer skipped", reason="inactive")
            continue

        try:
            users = catalog.list_users_for_customer(db, customer.id)
            owner = resolve_billing_owner(users)
            if owner is None:
                result.skipped_count += 1
                customer_log.info("Customer skipped", reason="no_contact_user")
                continue

            services = catalog.list_active_services_for_users(db, [u.id for u in users])
            if not services:
                result.skipped_count += 1
                customer_log.debug("Customer skipped", reason="no_active_services")
                continue

            if ledger.contains(owner.id, period):
                result.skipped_count += 1
                customer_log.debug("Customer skipped", reason="already_billed", owner_id=owner.id)
                continue

            invoice = _generate_invoice(db, owner, services, reference_date, period, rng)
        except Exception as exc:
            db.rollback()
            result.errors.append(f"Failed for {customer.name}: {exc}")
            customer_log.error("Invoice generation failed", error=str(exc))
            continue

        result.generated_count += 1
        result.invoices.append(InvoiceRead.model_validate(invoice))
        customer_log.info("Invoice generated", invoice_number=invoice.invoice_number, total=f"{invoice.total:.2f}")

        if customer.email:
            try:
                outcome = notifier(_notification_for(customer, invoice, len(services)))
            except Exception as exc:
                outcome = NotificationResult(success=False, error=str(exc))
            if not outcome.success:
                result.errors.append(f"Email failed for {customer.name}: {outcome.error}")
                customer_log.warning("Invoice notification failed", invoice_number=invoice.invoice_number, error=outcome.error)

    log.info(
        "Billing cycle complete",
        generated=result.generated_count,
        skipped=result.skipped_count,
        errors=len(result.errors),
        cancelled=result.cancelled,
    )
    return result
