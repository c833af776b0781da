# offsite_api/services/invoice_pdf.py
"""Render a contractor invoice as a one-page A4 PDF. Pure: dict in, bytes out."""
import io

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

FONT = "Helvetica"
FONT_BOLD = "Helvetica-Bold"
MARGIN = 50


def _money(v) -> str:
    return f"Rs. {v}"


def render_invoice_document(inv: dict) -> bytes:
    """
    Expected keys: invoice_number, created_at, project_name, contractor_name,
    week_start, week_end, labour_days, blended_rate, taxable_amount, gst_rate,
    gst_amount, total_amount; optional approved_by_name, approved_at.
    """
    buf = io.BytesIO()
    width, height = A4
    c = canvas.Canvas(buf, pagesize=A4)
    c.setTitle(f"Invoice {inv['invoice_number']}")

    y = height - MARGIN
    c.setFont(FONT_BOLD, 20)
    c.drawCentredString(width / 2, y, "LABOUR INVOICE")
    y -= 30
    c.setFont(FONT, 10)
    c.drawString(MARGIN, y, f"Invoice No: {inv['invoice_number']}")
    c.drawRightString(width - MARGIN, y, f"Date: {(inv.get('created_at') or '')[:10]}")
    y -= 24

    for label, value in (
        ("Project", inv.get("project_name") or "-"),
        ("Contractor", inv.get("contractor_name") or "-"),
        ("Period", f"{inv['week_start']} to {inv['week_end']}"),
    ):
        c.setFont(FONT_BOLD, 10)
        c.drawString(MARGIN, y, f"{label}:")
        c.setFont(FONT, 10)
        c.drawString(MARGIN + 80, y, str(value))
        y -= 16

    # line items
    y -= 14
    cols = (MARGIN, MARGIN + 250, MARGIN + 330, width - MARGIN)
    c.setFillColor(colors.HexColor("#f0f0f0"))
    c.rect(MARGIN, y - 6, width - 2 * MARGIN, 20, stroke=0, fill=1)
    c.setFillColor(colors.black)
    c.setFont(FONT_BOLD, 10)
    c.drawString(cols[0] + 4, y, "Description")
    c.drawRightString(cols[1] + 60, y, "Qty")
    c.drawRightString(cols[2] + 80, y, "Rate")
    c.drawRightString(cols[3] - 4, y, "Amount")
    y -= 22
    c.setFont(FONT, 10)
    c.drawString(cols[0] + 4, y, "Labour days")
    c.drawRightString(cols[1] + 60, y, str(inv["labour_days"]))
    c.drawRightString(cols[2] + 80, y, _money(inv["blended_rate"]))
    c.drawRightString(cols[3] - 4, y, _money(inv["taxable_amount"]))
    y -= 10
    c.line(MARGIN, y, width - MARGIN, y)

    # totals
    y -= 20
    for label, value, bold in (
        ("Taxable amount", inv["taxable_amount"], False),
        (f"GST ({inv['gst_rate']}%)", inv["gst_amount"], False),
        ("Total", inv["total_amount"], True),
    ):
        c.setFont(FONT_BOLD if bold else FONT, 11 if bold else 10)
        c.drawRightString(cols[2] + 80, y, label)
        c.drawRightString(cols[3] - 4, y, _money(value))
        y -= 18

    if inv.get("approved_at"):
        y -= 20
        c.setFont(FONT, 9)
        c.drawString(MARGIN, y, f"Approved by {inv.get('approved_by_name') or '-'} on {inv['approved_at'][:10]}")

    c.setFont(FONT, 8)
    c.setFillColor(colors.grey)
    c.drawCentredString(width / 2, MARGIN / 2, "System generated invoice")
    c.showPage()
    c.save()
    return buf.getvalue()
