"""
Note renderers.

Both renderers print the same content, produced by ``note_lines()``.  The
content is limited to fields that cannot change once a note is Issued
(identity, parties, amounts, shares, actors, approval/issue dates), so
re-rendering an unchanged Issued note reproduces its bytes exactly.
Administrative metadata (bank account, narration) stays off the artifact
because it remains editable after issuance.
"""

from datetime import datetime
from decimal import Decimal
from io import BytesIO
from typing import Mapping

from reportlab.lib.colors import HexColor
from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from notes_kernel.domain.dtos import NoteDTO
from notes_kernel.domain.ports import PartyRecord

TITLES = {"CN": "CREDIT NOTE", "DN": "DEBIT NOTE"}


def _amount(value: Decimal) -> str:
    return f"{value:,.2f}"


def _pct(value: Decimal) -> str:
    return f"{format(value.normalize(), 'f')}%"


def _when(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S UTC") if value else "-"


def _party(related: Mapping[str, PartyRecord], key: str, party_id: str | None) -> str:
    if party_id is None:
        return "-"
    record = related.get(key)
    if record is None:
        return party_id
    return f"{record.display_name} ({party_id})"


def note_lines(note: NoteDTO, related: Mapping[str, PartyRecord]) -> list[tuple[str, str]]:
    """Ordered (label, value) rows; a label of "" starts a new section."""
    rows: list[tuple[str, str]] = [
        ("Document", TITLES[note.note_type]),
        ("Document No.", note.document_number),
        ("Status", note.status),
        ("Date", note.created_at.strftime("%Y-%m-%d")),
        ("", "PARTIES"),
        ("Client", _party(related, "client", note.client_id)),
        ("Policy", _party(related, "policy", note.policy_id)),
        ("Insurer", _party(related, "insurer", note.insurer_id)),
        ("", f"AMOUNTS ({note.currency})"),
        ("Gross Premium", _amount(note.gross_premium)),
        (f"Brokerage @ {_pct(note.brokerage_pct)}", _amount(note.brokerage_amount)),
        (f"VAT on Brokerage @ {_pct(note.vat_pct)}", _amount(note.vat_on_brokerage)),
        (
            f"Agent Commission @ {_pct(note.agent_commission_pct)}",
            _amount(note.agent_commission_amount),
        ),
        ("Net Brokerage", _amount(note.net_brokerage)),
        ("NAICOM Levy", _amount(note.levies.niacom)),
        ("NCRIB Levy", _amount(note.levies.ncrib)),
        ("Education Tax", _amount(note.levies.ed_tax)),
        ("Total Levies", _amount(note.total_levies)),
        ("Net Amount Due", _amount(note.net_amount_due)),
    ]
    if note.shares:
        rows.append(("", "CO-INSURANCE"))
        for share in note.shares:
            label = _party(related, f"insurer:{share.insurer_id}", share.insurer_id)
            rows.append((f"{label} @ {_pct(share.percentage)}", _amount(share.amount)))
    rows.extend([
        ("", "AUTHORISATION"),
        ("Prepared By", str(note.prepared_by)),
        ("Authorized By", str(note.authorized_by) if note.authorized_by else "-"),
        ("Approved At", _when(note.approved_at)),
        ("Issued By", str(note.issued_by) if note.issued_by else "-"),
        ("Issued At", _when(note.issued_at)),
    ])
    return rows


class PlainTextNoteRenderer:
    """UTF-8 text layout; byte-stable for identical input."""

    content_type = "text/plain; charset=utf-8"
    extension = ".txt"

    def render(self, note: NoteDTO, related: Mapping[str, PartyRecord]) -> bytes:
        out: list[str] = []
        for label, value in note_lines(note, related):
            if not label:
                out.append("")
                out.append(f"== {value} ==")
            else:
                out.append(f"{label:<40} {value}")
        return ("\n".join(out) + "\n").encode("utf-8")


class ReportLabNoteRenderer:
    """
    A4 PDF via reportlab.

    The canvas runs in invariant mode, which pins the creation date and
    document ID, so identical input yields identical bytes.
    """

    content_type = "application/pdf"
    extension = ".pdf"

    WIDTH, HEIGHT = A4
    MARGIN = 50
    LINE = 16
    ACCENT = HexColor("#1B2A4A")

    def __init__(self, company_name: str = "Insurance Brokers Ltd"):
        self._company_name = company_name

    def render(self, note: NoteDTO, related: Mapping[str, PartyRecord]) -> bytes:
        buffer = BytesIO()
        c = canvas.Canvas(buffer, pagesize=A4, invariant=1)
        c.setTitle(note.document_number)
        c.setAuthor(self._company_name)
        c.setCreator("notes_kernel")

        y = self._header(c, note)
        for label, value in note_lines(note, related):
            if y < self.MARGIN + self.LINE:
                c.showPage()
                y = self.HEIGHT - self.MARGIN
            if not label:
                y -= self.LINE / 2
                c.setFont("Helvetica-Bold", 11)
                c.setFillColor(self.ACCENT)
                c.drawString(self.MARGIN, y, value)
                c.setFillColor(HexColor("#000000"))
            else:
                c.setFont("Helvetica", 10)
                c.drawString(self.MARGIN, y, label)
                c.drawRightString(self.WIDTH - self.MARGIN, y, value)
            y -= self.LINE

        c.showPage()
        c.save()
        return buffer.getvalue()

    def _header(self, c: canvas.Canvas, note: NoteDTO) -> float:
        y = self.HEIGHT - self.MARGIN
        c.setFillColor(self.ACCENT)
        c.setFont("Helvetica-Bold", 16)
        c.drawString(self.MARGIN, y, self._company_name)
        c.setFont("Helvetica-Bold", 14)
        c.drawRightString(self.WIDTH - self.MARGIN, y, TITLES[note.note_type])
        c.setStrokeColor(self.ACCENT)
        c.line(self.MARGIN, y - 8, self.WIDTH - self.MARGIN, y - 8)
        c.setFillColor(HexColor("#000000"))
        return y - 2 * self.LINE - 8
