"""
PDF layouts for lab reports and bills (reportlab canvas, A4).

Both renderers return the document as bytes; storing or streaming it is
the caller's job.
"""

from datetime import datetime
from io import BytesIO

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas

PRIMARY = colors.HexColor("#11496C")
TABLE_HEADER_BG = colors.HexColor("#F3F4F6")
ROW_ALT_BG = colors.HexColor("#FAFAFA")
TEXT_MUTED = colors.HexColor("#4B5563")

FLAG_COLORS = {
    'abnormal': colors.HexColor("#D97706"),
    'critical': colors.HexColor("#DC2626"),
    'normal': colors.HexColor("#16A34A"),
}

LEFT = 18 * mm
RIGHT = 18 * mm
BOTTOM = 25 * mm


def _fmt_date(value):
    if not value:
        return '-'
    if isinstance(value, datetime):
        return value.strftime('%d %b %Y, %I:%M %p')
    return value.strftime('%d %b %Y')


def _address_line(address):
    if not isinstance(address, dict):
        return ''
    parts = [address.get(k) for k in ('line1', 'line2', 'city', 'state', 'postal_code', 'postalCode')]
    return ', '.join(str(p) for p in parts if p)


class _Page:
    """Tracks the cursor and breaks pages when a block won't fit."""

    def __init__(self, title, laboratory, footer):
        self.buf = BytesIO()
        self.c = canvas.Canvas(self.buf, pagesize=A4)
        self.width, self.height = A4
        self.title = title
        self.laboratory = laboratory
        self.footer = footer
        self.page_no = 1
        self.y = self._start()

    def _start(self):
        c = self.c
        lab = self.laboratory
        y = self.height - 18 * mm

        c.setFillColor(PRIMARY)
        c.setFont("Helvetica-Bold", 16)
        c.drawCentredString(self.width / 2, y, lab.lab_name or 'Laboratory')
        y -= 6 * mm

        c.setFont("Helvetica", 8)
        c.setFillColor(TEXT_MUTED)
        address = _address_line(lab.address)
        if address:
            c.drawCentredString(self.width / 2, y, address)
            y -= 4 * mm
        contact = '  |  '.join(p for p in (lab.phone, lab.email) if p)
        if contact:
            c.drawCentredString(self.width / 2, y, contact)
            y -= 4 * mm

        c.setStrokeColor(PRIMARY)
        c.setLineWidth(1)
        c.line(LEFT, y, self.width - RIGHT, y)
        y -= 8 * mm

        c.setFont("Helvetica-Bold", 12)
        c.setFillColor(PRIMARY)
        c.drawCentredString(self.width / 2, y, self.title)
        return y - 10 * mm

    def _draw_footer(self):
        c = self.c
        c.setFont("Helvetica", 7)
        c.setFillColor(TEXT_MUTED)
        c.drawString(LEFT, BOTTOM - 10 * mm, self.footer)
        c.drawRightString(self.width - RIGHT, BOTTOM - 10 * mm, f"Page {self.page_no}")

    def ensure_space(self, needed_mm):
        if self.y < BOTTOM + needed_mm * mm:
            self._draw_footer()
            self.c.showPage()
            self.page_no += 1
            self.y = self._start()

    def text(self, x, value, font="Helvetica", size=9, color=colors.black):
        self.c.setFont(font, size)
        self.c.setFillColor(color)
        self.c.drawString(x, self.y, str(value))

    def info_pair(self, left, right):
        self.text(LEFT, left)
        if right:
            self.c.drawRightString(self.width - RIGHT, self.y, str(right))
        self.y -= 5 * mm

    def table_header(self, columns):
        c = self.c
        c.setFillColor(TABLE_HEADER_BG)
        c.rect(LEFT, self.y - 2 * mm, self.width - LEFT - RIGHT, 7 * mm, stroke=0, fill=1)
        for x, label in columns:
            self.text(x, label, font="Helvetica-Bold", size=8)
        self.y -= 8 * mm

    def row_background(self, index):
        if index % 2 == 1:
            self.c.setFillColor(ROW_ALT_BG)
            self.c.rect(LEFT, self.y - 2 * mm, self.width - LEFT - RIGHT, 6 * mm, stroke=0, fill=1)

    def finish(self):
        self._draw_footer()
        self.c.showPage()
        self.c.save()
        return self.buf.getvalue()


def render_report_pdf(report):
    """Lab report: lab letterhead, patient block, results table, notes."""
    patient = report.patient
    page = _Page("LABORATORY REPORT", report.laboratory,
                 "This is a digitally generated report. For any queries, please contact the laboratory.")

    page.info_pair(f"Patient: {patient.full_name}", f"Report date: {_fmt_date(report.report_date)}")
    page.info_pair(f"Phone: {patient.phone or '-'}", f"Order: {str(report.order_id)[:8].upper()}")
    if patient.gender or patient.date_of_birth:
        page.info_pair(f"Gender: {patient.gender or '-'}", f"DOB: {_fmt_date(patient.date_of_birth)}")
    page.y -= 3 * mm

    page.text(LEFT, report.test_name, font="Helvetica-Bold", size=11, color=PRIMARY)
    page.y -= 8 * mm

    col_param = LEFT + 2 * mm
    col_value = LEFT + 65 * mm
    col_range = LEFT + 100 * mm
    col_flag = LEFT + 150 * mm

    results = report.results or []
    if results:
        page.table_header([
            (col_param, "Parameter"),
            (col_value, "Result"),
            (col_range, "Normal Range"),
            (col_flag, "Status"),
        ])
        for i, row in enumerate(results):
            page.ensure_space(15)
            page.row_background(i)
            value = f"{row.get('value', '-')} {row.get('unit') or ''}".strip()
            status = (row.get('status') or 'normal').lower()
            page.text(col_param, row.get('parameter') or '-', size=8)
            page.text(col_value, value or '-', size=8)
            page.text(col_range, row.get('normal_range') or row.get('normalRange') or '-', size=8)
            page.text(col_flag, status.title(), font="Helvetica-Bold", size=8,
                      color=FLAG_COLORS.get(status, colors.black))
            page.y -= 6 * mm
    else:
        page.text(LEFT, "No parameter results recorded.", size=9, color=TEXT_MUTED)
        page.y -= 6 * mm

    if report.notes:
        page.ensure_space(20)
        page.y -= 4 * mm
        page.text(LEFT, "Notes", font="Helvetica-Bold", size=10, color=PRIMARY)
        page.y -= 5 * mm
        for line in report.notes.splitlines():
            page.ensure_space(10)
            page.text(LEFT, line, size=9)
            page.y -= 5 * mm

    return page.finish()


def render_bill_pdf(bill, patient):
    """Itemized bill: one row per test, then the charge summary."""
    page = _Page("TEST BILL", bill.laboratory,
                 "This is a computer generated bill and does not require a signature.")

    page.info_pair(f"Patient: {patient.full_name}", f"Bill date: {_fmt_date(bill.generated_at)}")
    page.info_pair(f"Phone: {patient.phone or '-'}", f"Request: {str(bill.request_id)[:8].upper()}")
    page.y -= 3 * mm

    col_no = LEFT + 2 * mm
    col_name = LEFT + 12 * mm
    col_price = page.width - RIGHT - 2 * mm

    page.table_header([(col_no, "#"), (col_name, "Test")])
    page.c.drawRightString(col_price, page.y + 8 * mm, "Amount")

    for i, item in enumerate(bill.items or []):
        page.ensure_space(15)
        page.row_background(i)
        page.text(col_no, i + 1, size=8)
        page.text(col_name, item.get('name') or '-', size=8)
        page.c.drawRightString(col_price, page.y, f"{float(item.get('price') or 0):.2f}")
        page.y -= 6 * mm

    page.ensure_space(30)
    page.y -= 4 * mm
    summary = [
        ("Test amount", bill.test_amount),
        ("Delivery charge", bill.delivery_charge),
        ("Additional charges", bill.additional_charges),
    ]
    for label, amount in summary:
        page.text(col_name, label, size=9)
        page.c.drawRightString(col_price, page.y, f"{amount:.2f}")
        page.y -= 5 * mm

    page.c.setStrokeColor(TEXT_MUTED)
    page.c.line(col_name, page.y + 3 * mm, col_price, page.y + 3 * mm)
    page.y -= 2 * mm
    page.text(col_name, "Total", font="Helvetica-Bold", size=10, color=PRIMARY)
    page.c.drawRightString(col_price, page.y, f"{bill.total_amount:.2f}")

    return page.finish()
