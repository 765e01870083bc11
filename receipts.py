# receipts.py

from datetime import datetime
from io import BytesIO
from typing import List, Optional, Tuple

from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from models import Transaction


def _human(dt: Optional[datetime]) -> str:
    if not dt:
        return ""
    return dt.strftime("%Y %b %d %H:%M UTC")

def _money(amount: Optional[int], currency: str) -> str:
    if amount is None:
        return ""
    return f"{currency} {amount // 100}.{amount % 100:02d}"

def receipt_lines(txn: Transaction) -> List[Tuple[str, str]]:
    lines = [
        ("title", "Payment Receipt"),
        ("sp", ""),
        ("kv", f"Transaction ID: {txn.transaction_id}"),
        ("kv", f"Amount: {_money(txn.amount, txn.currency)}"),
        ("kv", f"Type: {txn.kind.value}"),
        ("kv", f"Method: {txn.payment_method or ''}"),
        ("kv", f"Status: {txn.status.value}"),
        ("kv", f"Completed at: {_human(txn.completed_at)}"),
        ("sp", ""),
        ("section", "Gateway"),
        ("kv", f"Gateway: {txn.payment_gateway}"),
        ("kv", f"Order ID: {txn.gateway_order_id or ''}"),
        ("kv", f"Payment ID: {txn.gateway_payment_id or ''}"),
    ]
    if txn.appointment_id:
        lines += [
            ("sp", ""),
            ("section", "Appointment"),
            ("kv", f"Number: #{txn.appointment_id}"),
            ("kv", f"Provider: {txn.provider_id or ''}"),
        ]
    return lines

def render_receipt_pdf(txn: Transaction) -> bytes:
    lines = receipt_lines(txn)
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    w, h = A4
    y = h - 60

    def draw_line(txt: str, lh: int = 20, bold: bool = False):
        nonlocal y
        c.setFont("Helvetica-Bold" if bold else "Helvetica", 12)
        c.drawString(40, y, txt)
        y -= lh

    c.setFont("Helvetica-Bold", 18)
    c.drawString(40, y, lines[0][1])
    y -= 30

    for kind, text in lines[2:]:
        if kind == "sp":
            y -= 8
            continue
        if kind == "section":
            y -= 6
            c.setFont("Helvetica-Bold", 14)
            c.drawString(40, y, text)
            y -= 22
            continue
        draw_line(text)

    c.showPage(); c.save()
    pdf = buf.getvalue(); buf.close()
    return pdf
