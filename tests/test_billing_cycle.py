import threading
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from backend.app.db.base import Base
from backend.app.db.session import SessionLocal, engine
from backend.app.models.customer import Customer
from backend.app.models.invoice import Invoice
from backend.app.models.invoice_item import InvoiceItem
from backend.app.models.service import Service
from backend.app.models.user import User
from backend.app.services import catalog
from backend.app.services.billing import (
    reconcile_incomplete_invoices,
    resolve_billing_owner,
    run_billing_cycle,
)
from backend.app.services.errors import InvoicePersistenceError
from backend.app.services.notifications import NotificationResult

MARCH = date(2026, 3, 15)


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


class _RecordingNotifier:
    def __init__(self, result=None):
        self.sent = []
        self.result = result or NotificationResult(success=True)

    def __call__(self, notification):
        self.sent.append(notification)
        return self.result


class _FixedRng:
    def __init__(self, value):
        self.value = value

    def randrange(self, stop):
        return self.value


def _create_customer(db, name, email="billing@example.com", active=True, contact_name="Pat Doe"):
    customer = Customer(name=name, email=email, active=active, contact_name=contact_name)
    db.add(customer)
    db.commit()
    db.refresh(customer)
    return customer


def _create_user(db, customer, email, is_billing_contact=False):
    user = User(email=email, hashed_password="x", customer_id=customer.id, is_billing_contact=is_billing_contact)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def _create_service(db, user, price, name="Cabinet A12", status="active"):
    service = Service(
        user_id=user.id,
        name=name,
        type="colocation",
        status=status,
        location="MIA1",
        monthly_price=Decimal(price),
    )
    db.add(service)
    db.commit()
    db.refresh(service)
    return service


def _create_billable_customer(db, name, email_prefix, prices=("100.00",), customer_email="billing@example.com"):
    customer = _create_customer(db, name, email=customer_email)
    user = _create_user(db, customer, f"{email_prefix}@example.com")
    for index, price in enumerate(prices):
        _create_service(db, user, price, name=f"Service {index + 1}")
    return customer, user


def test_cycle_generates_one_invoice_per_customer():
    db = SessionLocal()
    try:
        _, user = _create_billable_customer(db, "Acme Corp", "acme", prices=("10.00", "25.50", "4.49"))
        notifier = _RecordingNotifier()

        result = run_billing_cycle(db, MARCH, notifier=notifier)

        assert result.period == "2026-03"
        assert result.generated_count == 1
        assert result.skipped_count == 0
        assert result.errors == []

        invoice = db.query(Invoice).one()
        assert invoice.owner_id == user.id
        assert invoice.subtotal == Decimal("39.99")
        assert invoice.tax == Decimal("0.00")
        assert invoice.total == Decimal("39.99")
        assert invoice.status == "pending"
        assert invoice.issue_date == date(2026, 3, 1)
        assert invoice.due_date == date(2026, 3, 31)
        assert invoice.billing_period == "2026-03"
        assert invoice.invoice_number.startswith("INV-202603-")

        items = db.query(InvoiceItem).filter(InvoiceItem.invoice_id == invoice.id).order_by(InvoiceItem.id).all()
        assert len(items) == 3
        assert sum(item.total for item in items) == invoice.subtotal
        assert items[0].description == "Service 1 - colocation (MIA1)"
        assert all(item.quantity == 1 for item in items)

        assert result.invoices[0].invoice_number == invoice.invoice_number
        assert len(notifier.sent) == 1
        assert notifier.sent[0].total == "39.99"
        assert notifier.sent[0].issue_date == "3/1/2026"
        assert notifier.sent[0].due_date == "3/31/2026"
        assert notifier.sent[0].item_count == 3
    finally:
        db.close()


def test_second_run_for_same_period_is_a_no_op():
    db = SessionLocal()
    try:
        _create_billable_customer(db, "Acme Corp", "acme")
        first = run_billing_cycle(db, MARCH, notifier=_RecordingNotifier())
        second = run_billing_cycle(db, date(2026, 3, 28), notifier=_RecordingNotifier())

        assert first.generated_count == 1
        assert second.generated_count == 0
        assert second.skipped_count == 1
        assert db.query(Invoice).count() == 1
    finally:
        db.close()


def test_next_month_is_billed_again():
    db = SessionLocal()
    try:
        _create_billable_customer(db, "Acme Corp", "acme")
        run_billing_cycle(db, MARCH, notifier=_RecordingNotifier())
        april = run_billing_cycle(db, date(2026, 4, 2), notifier=_RecordingNotifier())

        assert april.generated_count == 1
        assert april.invoices[0].invoice_number.startswith("INV-202604-")
        assert db.query(Invoice).count() == 2
    finally:
        db.close()


def test_legacy_invoice_number_blocks_rebilling():
    db = SessionLocal()
    try:
        _, user = _create_billable_customer(db, "Acme Corp", "acme")
        legacy = Invoice(
            owner_id=user.id,
            invoice_number="INV-202603-0042",
            status="paid",
            issue_date=date(2026, 3, 1),
            due_date=date(2026, 3, 31),
            subtotal=Decimal("100.00"),
            tax=Decimal("0.00"),
            total=Decimal("100.00"),
        )
        db.add(legacy)
        db.add(InvoiceItem(invoice=legacy, description="Cabinet", quantity=1, unit_price=Decimal("100.00"), total=Decimal("100.00")))
        db.commit()

        result = run_billing_cycle(db, MARCH, notifier=_RecordingNotifier())

        assert result.generated_count == 0
        assert result.skipped_count == 1
    finally:
        db.close()


def test_malformed_invoice_numbers_are_ignored_by_the_ledger():
    db = SessionLocal()
    try:
        _, user = _create_billable_customer(db, "Acme Corp", "acme")
        manual = Invoice(
            owner_id=user.id,
            invoice_number="MANUAL-7",
            status="paid",
            issue_date=date(2026, 3, 1),
            due_date=date(2026, 3, 31),
            subtotal=Decimal("5.00"),
            tax=Decimal("0.00"),
            total=Decimal("5.00"),
        )
        db.add(manual)
        db.add(InvoiceItem(invoice=manual, description="Manual charge", quantity=1, unit_price=Decimal("5.00"), total=Decimal("5.00")))
        db.commit()

        result = run_billing_cycle(db, MARCH, notifier=_RecordingNotifier())

        assert result.generated_count == 1
    finally:
        db.close()


def test_ineligible_customers_are_skipped():
    db = SessionLocal()
    try:
        inactive = _create_customer(db, "Dormant LLC", active=False)
        _create_service(db, _create_user(db, inactive, "dormant@example.com"), "50.00")

        _create_customer(db, "No Users Inc")

        idle = _create_customer(db, "Idle Co")
        idle_user = _create_user(db, idle, "idle@example.com")
        _create_service(db, idle_user, "75.00", status="suspended")

        notifier = _RecordingNotifier()
        result = run_billing_cycle(db, MARCH, notifier=notifier)

        assert result.generated_count == 0
        assert result.skipped_count == 3
        assert result.errors == []
        assert db.query(Invoice).count() == 0
        assert notifier.sent == []
    finally:
        db.close()


def test_one_failing_customer_does_not_stop_the_others(monkeypatch):
    db = SessionLocal()
    try:
        _create_billable_customer(db, "Alpha Ltd", "alpha")
        _, beta_user = _create_billable_customer(db, "Beta Corp", "beta")
        _create_billable_customer(db, "Gamma Inc", "gamma")

        original = catalog.persist_invoice_with_items

        def failing_persist(db, invoice_fields, item_fields):
            if invoice_fields["owner_id"] == beta_user.id:
                raise InvoicePersistenceError("disk full", invoice_fields["invoice_number"])
            return original(db, invoice_fields, item_fields)

        monkeypatch.setattr(catalog, "persist_invoice_with_items", failing_persist)

        result = run_billing_cycle(db, MARCH, notifier=_RecordingNotifier())

        assert result.generated_count == 2
        assert result.errors == ["Failed for Beta Corp: disk full"]
        assert len(result.invoices) == 2
        owners = {invoice.owner_id for invoice in db.query(Invoice).all()}
        assert beta_user.id not in owners
        assert len(owners) == 2
    finally:
        db.close()


def test_invoice_number_collision_leaves_no_orphan_rows():
    db = SessionLocal()
    try:
        _create_billable_customer(db, "Alpha Ltd", "alpha", prices=("10.00", "20.00"))
        _create_billable_customer(db, "Beta Corp", "beta", prices=("30.00",))

        result = run_billing_cycle(db, MARCH, notifier=_RecordingNotifier(), rng=_FixedRng(42))

        assert result.generated_count == 1
        assert len(result.errors) == 1
        assert result.errors[0].startswith("Failed for Beta Corp: ")
        assert "UNIQUE" in result.errors[0]
        assert db.query(Invoice).count() == 1
        assert db.query(InvoiceItem).count() == 2
    finally:
        db.close()


def test_bulk_read_failure_propagates(monkeypatch):
    db = SessionLocal()
    try:
        def broken(db):
            raise OperationalError("SELECT", {}, Exception("database is locked"))

        monkeypatch.setattr(catalog, "list_customers", broken)

        with pytest.raises(OperationalError):
            run_billing_cycle(db, MARCH, notifier=_RecordingNotifier())
    finally:
        db.close()


def test_email_failure_keeps_the_invoice():
    db = SessionLocal()
    try:
        _create_billable_customer(db, "Acme Corp", "acme")
        notifier = _RecordingNotifier(NotificationResult(success=False, error="SMTP down"))

        result = run_billing_cycle(db, MARCH, notifier=notifier)

        assert result.generated_count == 1
        assert result.errors == ["Email failed for Acme Corp: SMTP down"]
        assert db.query(Invoice).count() == 1
    finally:
        db.close()


def test_notifier_exception_is_reported_not_raised():
    db = SessionLocal()
    try:
        _create_billable_customer(db, "Acme Corp", "acme")

        def exploding(notification):
            raise RuntimeError("connection reset")

        result = run_billing_cycle(db, MARCH, notifier=exploding)

        assert result.generated_count == 1
        assert result.errors == ["Email failed for Acme Corp: connection reset"]
    finally:
        db.close()


def test_customer_without_email_is_not_notified():
    db = SessionLocal()
    try:
        _create_billable_customer(db, "Quiet Co", "quiet", customer_email=None)
        notifier = _RecordingNotifier()

        result = run_billing_cycle(db, MARCH, notifier=notifier)

        assert result.generated_count == 1
        assert notifier.sent == []
        assert result.errors == []
    finally:
        db.close()


def test_flagged_billing_contact_owns_the_invoice():
    db = SessionLocal()
    try:
        customer = _create_customer(db, "Acme Corp")
        first = _create_user(db, customer, "ops@example.com")
        contact = _create_user(db, customer, "ap@example.com", is_billing_contact=True)
        _create_service(db, first, "10.00")
        _create_service(db, contact, "15.00")

        result = run_billing_cycle(db, MARCH, notifier=_RecordingNotifier())

        invoice = db.query(Invoice).one()
        assert result.generated_count == 1
        assert invoice.owner_id == contact.id
        assert invoice.total == Decimal("25.00")
    finally:
        db.close()


def test_resolve_billing_owner_defaults_to_lowest_id():
    db = SessionLocal()
    try:
        customer = _create_customer(db, "Acme Corp")
        first = _create_user(db, customer, "first@example.com")
        second = _create_user(db, customer, "second@example.com")

        assert resolve_billing_owner([second, first]).id == first.id
        assert resolve_billing_owner([]) is None
    finally:
        db.close()


def test_cancellation_stops_between_customers():
    db = SessionLocal()
    try:
        _create_billable_customer(db, "Alpha Ltd", "alpha")
        _create_billable_customer(db, "Beta Corp", "beta")
        cancel = threading.Event()

        def notify_then_cancel(notification):
            cancel.set()
            return NotificationResult(success=True)

        result = run_billing_cycle(db, MARCH, notifier=notify_then_cancel, cancel_event=cancel)

        assert result.cancelled is True
        assert result.generated_count == 1
        assert db.query(Invoice).count() == 1
    finally:
        db.close()


def test_stale_itemless_invoice_is_reconciled_and_rebilled():
    db = SessionLocal()
    try:
        _, user = _create_billable_customer(db, "Acme Corp", "acme")
        stale = Invoice(
            owner_id=user.id,
            invoice_number="INV-202603-0001",
            billing_period="2026-03",
            status="pending",
            issue_date=date(2026, 3, 1),
            due_date=date(2026, 3, 31),
            subtotal=Decimal("100.00"),
            tax=Decimal("0.00"),
            total=Decimal("100.00"),
            created_at=datetime(2026, 3, 1, 6, 0, tzinfo=timezone.utc),
        )
        db.add(stale)
        db.commit()

        result = run_billing_cycle(db, MARCH, notifier=_RecordingNotifier(), rng=_FixedRng(77))

        assert result.reconciled == ["INV-202603-0001"]
        assert result.generated_count == 1
        invoice = db.query(Invoice).one()
        assert invoice.invoice_number == "INV-202603-0077"
    finally:
        db.close()


def test_recent_itemless_invoice_is_left_alone():
    db = SessionLocal()
    try:
        customer = _create_customer(db, "Acme Corp")
        user = _create_user(db, customer, "acme@example.com")
        db.add(
            Invoice(
                owner_id=user.id,
                invoice_number="INV-202603-0001",
                status="pending",
                issue_date=date(2026, 3, 1),
                due_date=date(2026, 3, 31),
                subtotal=Decimal("0.00"),
                tax=Decimal("0.00"),
                total=Decimal("0.00"),
            )
        )
        db.commit()

        assert reconcile_incomplete_invoices(db) == []
        assert db.query(Invoice).count() == 1
    finally:
        db.close()


def test_period_constraint_rejects_double_billing_from_stale_ledger(monkeypatch):
    db = SessionLocal()
    try:
        _, user = _create_billable_customer(db, "Acme Corp", "acme")
        existing = Invoice(
            owner_id=user.id,
            invoice_number="INV-202603-0001",
            billing_period="2026-03",
            status="pending",
            issue_date=date(2026, 3, 1),
            due_date=date(2026, 3, 31),
            subtotal=Decimal("100.00"),
            tax=Decimal("0.00"),
            total=Decimal("100.00"),
        )
        existing.items.append(InvoiceItem(description="Cabinet", quantity=1, unit_price=Decimal("100.00"), total=Decimal("100.00")))
        db.add(existing)
        db.commit()

        # Another cycle committed after this one read the invoice history.
        monkeypatch.setattr(catalog, "list_all_invoices", lambda db: [])

        result = run_billing_cycle(db, MARCH, notifier=_RecordingNotifier(), rng=_FixedRng(2))

        assert result.generated_count == 0
        assert len(result.errors) == 1
        assert result.errors[0].startswith("Failed for Acme Corp: ")
        assert db.query(Invoice).count() == 1
        assert db.query(Invoice).one().invoice_number == "INV-202603-0001"
    finally:
        db.close()
