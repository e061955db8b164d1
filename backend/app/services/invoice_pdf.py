"""
PDF invoice rendering with ReportLab.

Layout is absolute, measured from the top-left of a US Letter page: header,
invoice details, bill-to block, item table, totals and a payment-terms footer.
Rows that would run past the bottom of the item area continue on a new page.
Output is built with invariant=1, so the same inputs always produce the same
bytes.
"""

import io
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

import structlog
from reportlab.lib import colors
from reportlab.lib.pagesizes import LETTER
from reportlab.lib.utils import simpleSplit
from reportlab.pdfgen import canvas

from backend.app.core.settings import get_settings
from backend.app.core.time import format_us_date
from backend.app.models.customer import Customer
from backend.app.models.invoice import Invoice
from backend.app.models.invoice_item import InvoiceItem

logger = structlog.get_logger(__name__)

PAGE_WIDTH, PAGE_HEIGHT = LETTER
LEFT = 50
RIGHT = 545

ROW_HEIGHT = 18
ROW_LINE_HEIGHT = 10
ROW_LIMIT = 680
CONTINUATION_TOP = 50
TABLE_MIN_TOP = 240
FOOTER_MAX_TOP = 700
BOTTOM_LINE_TOP = 740
DESCRIPTION_WIDTH = 280

NAVY = colors.HexColor("#1e3a5f")
SLATE = colors.HexColor("#64748b")
INK = colors.HexColor("#1e293b")
MUTED = colors.HexColor("#475569")
FAINT = colors.HexColor("#94a3b8")
RULE = colors.HexColor("#e2e8f0")
HEADER_FILL = colors.HexColor("#f1f5f9")
PAID_GREEN = colors.HexColor("#16a34a")
OVERDUE_RED = colors.HexColor("#dc2626")
PENDING_AMBER = colors.HexColor("#f59e0b")

PAYMENT_TERMS = (
    "Payment is due within 30 days of the invoice date. "
    "Please reference the invoice number when making payment."
)


def format_money(value) -> str:
    if value is None:
        value = Decimal("0")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return f"${value:.2f}"


def status_color(status: str):
    if status == "paid":
        return PAID_GREEN
    if status in ("past_due", "overdue"):
        return OVERDUE_RED
    return PENDING_AMBER


def paginate_rows(row_heights: Sequence[float], first_row_top: float) -> List[Tuple[int, float]]:
    """Return (page index, top) for each row; a row starting below ROW_LIMIT moves to a new page."""
    positions = []
    page = 0
    top = first_row_top
    for height in row_heights:
        if top > ROW_LIMIT:
            page += 1
            top = CONTINUATION_TOP
        positions.append((page, top))
        top += height
    return positions


class _Page:
    """Thin wrapper translating top-down coordinates onto a ReportLab canvas."""

    def __init__(self, c: canvas.Canvas):
        self.c = c
        self.count = 1

    def new_page(self):
        self.c.showPage()
        self.count += 1

    def text(self, x, top, value, font="Helvetica", size=8, color=INK, align="left", width=None):
        self.c.setFillColor(color)
        self.c.setFont(font, size)
        baseline = PAGE_HEIGHT - top - size
        if align == "right":
            self.c.drawRightString(x + (width or 0), baseline, value)
        elif align == "center":
            self.c.drawCentredString(x + (width or 0) / 2, baseline, value)
        else:
            self.c.drawString(x, baseline, value)

    def rule(self, top):
        self.c.setStrokeColor(RULE)
        self.c.setLineWidth(0.5)
        self.c.line(LEFT, PAGE_HEIGHT - top, RIGHT, PAGE_HEIGHT - top)

    def fill_rect(self, x, top, width, height, color):
        self.c.setFillColor(color)
        self.c.rect(x, PAGE_HEIGHT - top - height, width, height, stroke=0, fill=1)


def _draw_header(page: _Page, invoice: Invoice) -> None:
    settings = get_settings()
    page.text(LEFT, 50, settings.company_name, font="Helvetica-Bold", size=22, color=NAVY)
    page.text(LEFT, 75, settings.company_tagline, color=SLATE)
    page.text(LEFT, 86, settings.company_address, color=SLATE)
    page.text(LEFT, 97, settings.company_contact_line, color=SLATE)

    page.text(400, 50, "INVOICE", font="Helvetica-Bold", size=28, color=NAVY, align="right", width=RIGHT - 400)

    details_top = 85
    labels = ("Invoice #:", "Issue Date:", "Due Date:", "Status:")
    for offset, label in enumerate(labels):
        page.text(400, details_top + offset * 12, label, color=SLATE, align="right", width=55)

    page.text(460, details_top, invoice.invoice_number, font="Helvetica-Bold")
    page.text(460, details_top + 12, format_us_date(invoice.issue_date), font="Helvetica-Bold")
    page.text(460, details_top + 24, format_us_date(invoice.due_date), font="Helvetica-Bold")
    page.text(460, details_top + 36, (invoice.status or "").upper(), font="Helvetica-Bold", color=status_color(invoice.status))

    page.rule(130)


def _bill_to_lines(customer: Optional[Customer]) -> List[str]:
    if customer is None:
        return []
    lines = []
    if customer.contact_name:
        lines.append(f"Attn: {customer.contact_name}")
    if customer.address:
        lines.append(customer.address)
    if customer.city or customer.state or customer.zip:
        separator = ", " if customer.city and customer.state else ""
        lines.append(f"{customer.city or ''}{separator}{customer.state or ''} {customer.zip or ''}".strip())
    if customer.email:
        lines.append(customer.email)
    if customer.phone:
        lines.append(customer.phone)
    return lines


def _draw_bill_to(page: _Page, customer: Optional[Customer], fallback_name: str) -> float:
    page.text(LEFT, 145, "BILL TO", font="Helvetica-Bold", color=SLATE)
    name = customer.name if customer is not None and customer.name else fallback_name
    page.text(LEFT, 160, name, font="Helvetica-Bold", size=10)
    top = 174
    for line in _bill_to_lines(customer):
        page.text(LEFT, top, line, color=MUTED)
        top += 12
    return top


def _draw_table_header(page: _Page, top: float) -> None:
    page.fill_rect(LEFT, top, RIGHT - LEFT, 20, HEADER_FILL)
    page.text(55, top + 6, "DESCRIPTION", font="Helvetica-Bold", size=7, color=MUTED)
    page.text(340, top + 6, "QTY", font="Helvetica-Bold", size=7, color=MUTED, align="center", width=40)
    page.text(385, top + 6, "UNIT PRICE", font="Helvetica-Bold", size=7, color=MUTED, align="right", width=70)
    page.text(460, top + 6, "TOTAL", font="Helvetica-Bold", size=7, color=MUTED, align="right", width=80)
    page.rule(top + 20)


def _description_lines(item: InvoiceItem) -> List[str]:
    return simpleSplit(item.description or "", "Helvetica", 8, DESCRIPTION_WIDTH) or [""]


def render_invoice_pdf(
    invoice: Invoice,
    items: Sequence[InvoiceItem],
    customer: Optional[Customer] = None,
    fallback_name: str = "",
    page_compression: bool = True,
) -> bytes:
    """Render one persisted invoice to PDF bytes."""
    settings = get_settings()
    buffer = io.BytesIO()
    c = canvas.Canvas(buffer, pagesize=LETTER, invariant=1, pageCompression=1 if page_compression else 0)
    c.setTitle(f"Invoice {invoice.invoice_number}")
    c.setAuthor(settings.company_name)
    page = _Page(c)

    _draw_header(page, invoice)
    bill_to_bottom = _draw_bill_to(page, customer, fallback_name)

    table_top = max(bill_to_bottom + 20, TABLE_MIN_TOP)
    _draw_table_header(page, table_top)

    wrapped = [_description_lines(item) for item in items]
    heights = [ROW_HEIGHT + (len(lines) - 1) * ROW_LINE_HEIGHT for lines in wrapped]
    positions = paginate_rows(heights, table_top + 26)

    current_page = 0
    row_bottom = table_top + 26
    for item, lines, height, (page_index, top) in zip(items, wrapped, heights, positions):
        if page_index != current_page:
            page.new_page()
            current_page = page_index
        for offset, line in enumerate(lines):
            page.text(55, top + offset * ROW_LINE_HEIGHT, line)
        page.text(340, top, str(item.quantity), align="center", width=40)
        page.text(385, top, format_money(item.unit_price), align="right", width=70)
        page.text(460, top, format_money(item.total), align="right", width=80)
        row_bottom = top + height
        page.rule(row_bottom - 4)

    has_tax = invoice.tax is not None and Decimal(str(invoice.tax)) > 0
    totals_top = row_bottom + 10
    totals_height = (28 if has_tax else 14) + 50 + 44
    if totals_top + totals_height > BOTTOM_LINE_TOP:
        page.new_page()
        totals_top = CONTINUATION_TOP

    page.text(385, totals_top, "Subtotal:", color=SLATE, align="right", width=70)
    page.text(460, totals_top, format_money(invoice.subtotal), align="right", width=80)
    if has_tax:
        page.text(385, totals_top + 14, "Tax:", color=SLATE, align="right", width=70)
        page.text(460, totals_top + 14, format_money(invoice.tax), align="right", width=80)

    total_line_top = totals_top + (28 if has_tax else 14)
    page.rule(total_line_top)
    page.text(385, total_line_top + 6, "Total Due:", font="Helvetica-Bold", size=11, color=NAVY, align="right", width=70)
    page.text(460, total_line_top + 6, format_money(invoice.total), font="Helvetica-Bold", size=11, color=NAVY, align="right", width=80)

    footer_top = min(total_line_top + 50, FOOTER_MAX_TOP)
    page.rule(footer_top)
    page.text(LEFT, footer_top + 8, "PAYMENT TERMS", font="Helvetica-Bold", size=7, color=SLATE)
    page.text(LEFT, footer_top + 20, PAYMENT_TERMS, size=7, color=MUTED)
    page.text(
        LEFT,
        footer_top + 32,
        f"For questions about this invoice, please contact {settings.billing_contact_email}",
        size=7,
        color=MUTED,
    )
    page.text(
        LEFT,
        BOTTOM_LINE_TOP,
        f"{settings.company_name}  |  {settings.company_tagline}  |  {settings.company_location}",
        size=6,
        color=FAINT,
        align="center",
        width=RIGHT - LEFT,
    )

    c.showPage()
    c.save()
    pdf_bytes = buffer.getvalue()
    buffer.close()
    logger.debug("Invoice PDF rendered", invoice_number=invoice.invoice_number, pages=page.count)
    return pdf_bytes
