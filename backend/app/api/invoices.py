"""Invoice read and download routes."""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.orm import Session

from backend.app.core.security import get_current_user
from backend.app.db.session import get_db
from backend.app.models.invoice import Invoice
from backend.app.models.user import User
from backend.app.schemas.invoice import InvoiceDetail, InvoiceRead
from backend.app.services import catalog
from backend.app.services.invoice_pdf import render_invoice_pdf

router = APIRouter(prefix="/invoices", tags=["invoices"])


def _get_visible_invoice(db: Session, invoice_id: int, current_user: User) -> Invoice:
    invoice = catalog.get_invoice(db, invoice_id)
    if not invoice or (not current_user.is_admin and invoice.owner_id != current_user.id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invoice not found")
    return invoice


@router.get("/", response_model=List[InvoiceRead])
def list_invoices(
    skip: int = 0,
    limit: int = 50,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    query = db.query(Invoice)
    if not current_user.is_admin:
        query = query.filter(Invoice.owner_id == current_user.id)
    query = query.order_by(Invoice.issue_date.desc(), Invoice.id.desc()).offset(skip).limit(limit)
    return query.all()


@router.get("/{invoice_id}", response_model=InvoiceDetail)
def get_invoice(invoice_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    invoice = _get_visible_invoice(db, invoice_id, current_user)
    return InvoiceDetail.model_validate(invoice)


@router.get("/{invoice_id}/pdf")
def download_invoice_pdf(
    invoice_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    invoice = _get_visible_invoice(db, invoice_id, current_user)
    items = catalog.list_invoice_items(db, invoice.id)
    owner = invoice.owner
    customer = catalog.get_customer_for_user(db, owner)
    fallback_name = owner.display_name if owner else ""
    pdf_bytes = render_invoice_pdf(invoice, items, customer, fallback_name)
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="invoice_{invoice.invoice_number}.pdf"'},
    )
