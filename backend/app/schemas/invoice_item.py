"""Invoice item schemas."""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_serializer


class InvoiceItemRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    invoice_id: int
    service_id: Optional[int] = None
    description: str
    quantity: int
    unit_price: Decimal
    total: Decimal

    @field_serializer("unit_price", "total")
    def _money(self, value: Decimal) -> str:
        return f"{value:.2f}"
