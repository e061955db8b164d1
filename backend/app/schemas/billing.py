"""Billing cycle schemas."""

from datetime import date
from typing import List, Optional

from pydantic import BaseModel, Field

from backend.app.schemas.invoice import InvoiceRead


class BillingRunRequest(BaseModel):
    reference_date: Optional[date] = None


class BillingCycleResult(BaseModel):
    period: str
    generated_count: int = 0
    skipped_count: int = 0
    errors: List[str] = Field(default_factory=list)
    invoices: List[InvoiceRead] = Field(default_factory=list)
    reconciled: List[str] = Field(default_factory=list)
    cancelled: bool = False


class EmailCheckResponse(BaseModel):
    connected: bool
