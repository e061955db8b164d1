"""Admin billing endpoints."""

from typing import Optional

import structlog
from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from backend.app.core.security import get_current_admin
from backend.app.db.session import get_db
from backend.app.models.user import User
from backend.app.schemas.billing import BillingCycleResult, BillingRunRequest, EmailCheckResponse
from backend.app.services.billing import run_billing_cycle
from backend.app.services.notifications import verify_transport

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/admin/billing", tags=["admin-billing"])


@router.post("/run", response_model=BillingCycleResult)
def run_billing(
    payload: Optional[BillingRunRequest] = Body(default=None),
    db: Session = Depends(get_db),
    current_admin: User = Depends(get_current_admin),
):
    reference_date = payload.reference_date if payload else None
    logger.info("Billing run requested", admin_id=current_admin.id, reference_date=str(reference_date or ""))
    return run_billing_cycle(db, reference_date)


@router.get("/email-check", response_model=EmailCheckResponse)
def email_check(current_admin: User = Depends(get_current_admin)):
    return EmailCheckResponse(connected=verify_transport())
