"""Printable A5 receipt rendered with reportlab."""

from io import BytesIO

from reportlab.lib import colors
from reportlab.lib.pagesizes import A5
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas

BRAND = colors.HexColor('#4338ca')
MUTED = colors.HexColor('#64748b')
SOFT_BORDER = colors.HexColor('#e2e8f0')
LIGHT_BG = colors.HexColor('#eef2ff')


def money(amount):
    return f"Rs. {float(amount or 0):,.2f}"


def render_receipt_pdf(receipt, items, student, settings):
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=A5)
    width, height = A5
    x_margin = 12 * mm
    c.setTitle(f"Receipt {receipt.receipt_number}")

    # Header bar
    header_h = 24 * mm
    c.setFillColor(BRAND)
    c.rect(0, height - header_h, width, header_h, fill=1, stroke=0)
    c.setFillColor(colors.white)
    c.setFont('Helvetica-Bold', 13)
    c.drawString(x_margin, height - 10 * mm, settings.school_name or 'School')
    c.setFont('Helvetica', 8)
    contact = ' | '.join(filter(None, [settings.address, settings.phone, settings.email]))
    c.drawString(x_margin, height - 15 * mm, contact or 'Fee Receipt')
    if settings.academic_year:
        c.drawString(x_margin, height - 19.5 * mm, f"Academic Year {settings.academic_year}")

    y = height - header_h - 9 * mm

    def draw_kv(label, value):
        nonlocal y
        c.setFont('Helvetica', 9)
        c.setFillColor(MUTED)
        c.drawString(x_margin, y, label)
        c.setFillColor(colors.black)
        c.setFont('Helvetica-Bold', 9.5)
        c.drawRightString(width - x_margin, y, str(value))
        y -= 5.5 * mm

    draw_kv('Receipt No.', receipt.receipt_number)
    draw_kv('Date', receipt.receipt_date.strftime('%d-%m-%Y'))
    if student is not None:
        draw_kv('Student', student.student_name)
        draw_kv('Admission No.', student.admission_number)
        draw_kv('Class / Section', f"{student.grade} / {student.section}")
        draw_kv('Parent', student.parent_name)
    else:
        draw_kv('Student', 'Unknown')

    # Items table
    y -= 2 * mm
    c.setFillColor(LIGHT_BG)
    c.rect(x_margin, y - 2 * mm, width - 2 * x_margin, 7 * mm, fill=1, stroke=0)
    c.setFillColor(colors.black)
    c.setFont('Helvetica-Bold', 9)
    c.drawString(x_margin + 2 * mm, y, 'Description')
    c.drawString(x_margin + 70 * mm, y, 'Period')
    c.drawRightString(width - x_margin - 2 * mm, y, 'Amount')
    y -= 7 * mm

    c.setFont('Helvetica', 9)
    for item in items:
        c.drawString(x_margin + 2 * mm, y, item.description[:42])
        c.drawString(x_margin + 70 * mm, y, item.period or '')
        c.drawRightString(width - x_margin - 2 * mm, y, money(item.amount))
        y -= 5.5 * mm
        if y < 40 * mm:
            c.showPage()
            c.setFont('Helvetica', 9)
            y = height - 15 * mm

    c.setStrokeColor(SOFT_BORDER)
    c.line(x_margin, y + 2 * mm, width - x_margin, y + 2 * mm)
    y -= 3 * mm
    c.setFont('Helvetica-Bold', 11)
    c.drawString(x_margin + 2 * mm, y, 'Total')
    c.drawRightString(width - x_margin - 2 * mm, y, money(receipt.total_amount))
    y -= 9 * mm

    draw_kv('Payment Method', receipt.payment_method)
    if receipt.payment_reference:
        draw_kv('Reference', receipt.payment_reference)
    if receipt.remarks:
        draw_kv('Remarks', receipt.remarks)

    # Footer
    c.setFont('Helvetica', 8)
    c.setFillColor(MUTED)
    c.drawCentredString(width / 2, 14 * mm, settings.receipt_footer_text or '')
    if settings.principal_name:
        c.drawRightString(width - x_margin, 22 * mm, settings.principal_name)

    c.showPage()
    c.save()
    buf.seek(0)
    return buf
