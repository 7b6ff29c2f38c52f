"""Human-readable signature summary appended as the last page before signing."""

from io import BytesIO
from typing import Mapping

from pypdf import PdfReader, PdfWriter
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas

MARGIN = 20 * mm
LINE = 14
MAX_CHARS = 100
NOTE = "The embedded PAdES signature covers every page of this document, including this one."


def _wrap(text: str, width: int = MAX_CHARS):
    while len(text) > width:
        yield text[:width]
        text = "    " + text[width:]
    yield text


def render_summary(info: Mapping[str, str]) -> bytes:
    buf = BytesIO()
    width, height = A4
    c = canvas.Canvas(buf, pagesize=A4)
    c.setTitle("Signature summary")

    def heading(y):
        c.setFont("Helvetica-Bold", 14)
        c.drawString(MARGIN, y, "Digital Signature")
        c.setLineWidth(0.5)
        c.line(MARGIN, y - 6, width - MARGIN, y - 6)
        c.setFont("Helvetica", 10)
        return y - 30

    y = heading(height - MARGIN)
    for key, value in info.items():
        for chunk in _wrap(f"{key}: {value}"):
            if y < MARGIN + 2 * LINE:
                c.showPage()
                y = heading(height - MARGIN)
            c.drawString(MARGIN, y, chunk)
            y -= LINE

    c.setFont("Helvetica-Oblique", 8)
    c.drawString(MARGIN, MARGIN, NOTE)
    c.showPage()
    c.save()
    return buf.getvalue()


def append_summary(pdf_bytes: bytes, info: Mapping[str, str]) -> bytes:
    writer = PdfWriter()
    writer.append(PdfReader(BytesIO(pdf_bytes)))
    writer.append(PdfReader(BytesIO(render_summary(info))))
    out = BytesIO()
    writer.write(out)
    return out.getvalue()
