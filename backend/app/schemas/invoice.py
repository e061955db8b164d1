"""Invoice schemas."""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, field_serializer

from backend.app.schemas.invoice_item import InvoiceItemRead


class InvoiceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    owner_id: int
    invoice_number: str
    billing_period: Optional[str] = None

    status: str
    issue_date: date
    due_date: date
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    paid_at: Optional[datetime] = None

    created_at: datetime

    @field_serializer("subtotal", "tax", "total")
    def _money(self, value: Decimal) -> str:
        return f"{value:.2f}"


class InvoiceDetail(InvoiceRead):
    items: List[InvoiceItemRead] = []
