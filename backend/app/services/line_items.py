"""Turn a customer's active services into invoice line items and totals."""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List

from backend.app.models.service import Service

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """Exact two-decimal Decimal from a Decimal, str, or int (never via float)."""
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def describe_service(service: Service) -> str:
    return f"{service.name} - {service.type} ({service.location})"


@dataclass(frozen=True)
class LineItemDraft:
    service_id: int | None
    description: str
    quantity: int
    unit_price: Decimal
    total: Decimal


@dataclass(frozen=True)
class InvoiceTotals:
    subtotal: Decimal
    tax: Decimal
    total: Decimal


def build_line_items(services: Iterable[Service]) -> List[LineItemDraft]:
    items = []
    for service in services:
        price = to_money(service.monthly_price)
        items.append(
            LineItemDraft(
                service_id=service.id,
                description=describe_service(service),
                quantity=1,
                unit_price=price,
                total=price,
            )
        )
    return items


def compute_totals(items: Iterable[LineItemDraft]) -> InvoiceTotals:
    subtotal = sum((item.total for item in items), Decimal("0.00"))
    tax = Decimal("0.00")
    return InvoiceTotals(subtotal=to_money(subtotal), tax=tax, total=to_money(subtotal + tax))
