"""Reads over customers, users, services and invoices, plus invoice persistence."""

from datetime import datetime
from typing import Any, Dict, Iterable, List

import structlog
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.app.models.customer import Customer
from backend.app.models.invoice import Invoice
from backend.app.models.invoice_item import InvoiceItem
from backend.app.models.service import Service
from backend.app.models.user import User
from backend.app.services.errors import InvoicePersistenceError

logger = structlog.get_logger(__name__)


def list_customers(db: Session) -> List[Customer]:
    return db.query(Customer).order_by(Customer.id.asc()).all()


def list_active_customers(db: Session) -> List[Customer]:
    return db.query(Customer).filter(Customer.active.is_(True)).order_by(Customer.id.asc()).all()


def list_users_for_customer(db: Session, customer_id: int) -> List[User]:
    return db.query(User).filter(User.customer_id == customer_id).order_by(User.id.asc()).all()


def list_active_services_for_users(db: Session, user_ids: Iterable[int]) -> List[Service]:
    user_ids = list(user_ids)
    if not user_ids:
        return []
    return (
        db.query(Service)
        .filter(Service.user_id.in_(user_ids), Service.status == "active")
        .order_by(Service.id.asc())
        .all()
    )


def list_all_invoices(db: Session) -> List[Invoice]:
    return db.query(Invoice).order_by(Invoice.issue_date.desc(), Invoice.id.desc()).all()


def get_invoice(db: Session, invoice_id: int) -> Invoice | None:
    return db.query(Invoice).filter(Invoice.id == invoice_id).first()


def list_invoice_items(db: Session, invoice_id: int) -> List[InvoiceItem]:
    return db.query(InvoiceItem).filter(InvoiceItem.invoice_id == invoice_id).order_by(InvoiceItem.id.asc()).all()


def get_customer_for_user(db: Session, user: User | None) -> Customer | None:
    if user is None or user.customer_id is None:
        return None
    return db.query(Customer).filter(Customer.id == user.customer_id).first()


def create_invoice(db: Session, fields: Dict[str, Any]) -> Invoice:
    invoice = Invoice(**fields)
    db.add(invoice)
    db.flush()  # obtain invoice id for invoice_items
    return invoice


def create_invoice_item(db: Session, fields: Dict[str, Any]) -> InvoiceItem:
    item = InvoiceItem(**fields)
    db.add(item)
    db.flush()
    return item


def persist_invoice_with_items(
    db: Session,
    invoice_fields: Dict[str, Any],
    item_fields: List[Dict[str, Any]],
) -> Invoice:
    """
    Write an invoice and all of its items as one transaction.

    Either the invoice is committed together with every item, or the session is
    rolled back and InvoicePersistenceError is raised; an invoice without items
    is never left behind.
    """
    invoice_number = invoice_fields.get("invoice_number")
    try:
        invoice = create_invoice(db, invoice_fields)
        for fields in item_fields:
            create_invoice_item(db, {**fields, "invoice_id": invoice.id})
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise InvoicePersistenceError(str(exc.orig) if getattr(exc, "orig", None) else str(exc), invoice_number) from exc
    db.refresh(invoice)
    return invoice


def find_incomplete_invoices(db: Session, older_than: datetime) -> List[Invoice]:
    """Pending invoices with zero items created before older_than."""
    item_count = (
        db.query(func.count(InvoiceItem.id))
        .filter(InvoiceItem.invoice_id == Invoice.id)
        .correlate(Invoice)
        .scalar_subquery()
    )
    return (
        db.query(Invoice)
        .filter(Invoice.status == "pending", Invoice.created_at < older_than, item_count == 0)
        .order_by(Invoice.id.asc())
        .all()
    )


def delete_invoices(db: Session, invoices: Iterable[Invoice]) -> List[str]:
    deleted = []
    for invoice in invoices:
        deleted.append(invoice.invoice_number)
        logger.warning("Deleting incomplete invoice", invoice_id=invoice.id, invoice_number=invoice.invoice_number)
        db.delete(invoice)
    db.commit()
    return deleted
