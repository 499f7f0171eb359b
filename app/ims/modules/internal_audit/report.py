"""
Internal audit report (A4 PDF) rendered with reportlab platypus.
"""
from __future__ import annotations

import os
from datetime import date
from io import BytesIO
from typing import Any
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import cm
from reportlab.platypus import Image, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from app.ims.modules.internal_audit.models import AuditExecution, AuditParticipant
from app.ims.modules.internal_audit.service import count_findings
from app.ims.utils import utcnow

DEFAULT_HEADER: dict[str, str] = {
    "title": "INTERNAL AUDIT REPORT",
    "standards": "ISO 9001:2015 / 14001:2015 / 45001:2018",
    "doc_no": "MR/L4/005",
    "issue": "01 / 12.02.2020",
    "rev_no": "01",
    "rev_date": "04.12.2025",
}

FOOTER_TEXT = (
    "This is a computer-generated document. Audit conducted as per ISO 9001:2015, "
    "14001:2015, and 45001:2018 standards."
)

_BORDER = colors.HexColor("#94a3b8")
_HEAD_BG = colors.HexColor("#f1f5f9")
_NC_HEAD_BG = colors.HexColor("#991b1b")

PAGE_WIDTH = A4[0] - 2 * cm


def _fmt_date(value: str | date | None) -> str:
    if not value:
        return "-"
    if isinstance(value, str):
        try:
            value = date.fromisoformat(value[:10])
        except ValueError:
            return value
    return value.strftime("%d.%m.%Y")


def _styles() -> dict[str, ParagraphStyle]:
    base = getSampleStyleSheet()
    return {
        "title": ParagraphStyle("ReportTitle", parent=base["Title"], fontSize=14, leading=17, spaceAfter=2),
        "subtitle": ParagraphStyle("ReportSubtitle", parent=base["Normal"], fontSize=9, alignment=TA_CENTER, textColor=colors.HexColor("#64748b")),
        "section": ParagraphStyle("Section", parent=base["Heading3"], fontSize=11, spaceBefore=12, spaceAfter=6),
        "cell": ParagraphStyle("Cell", parent=base["Normal"], fontSize=9, leading=11),
        "head": ParagraphStyle("Head", parent=base["Normal"], fontSize=9, leading=11, fontName="Helvetica-Bold"),
        "nc_head": ParagraphStyle("NcHead", parent=base["Normal"], fontSize=9, leading=11, fontName="Helvetica-Bold", textColor=colors.white),
        "small": ParagraphStyle("Small", parent=base["Normal"], fontSize=8, leading=10, textColor=colors.HexColor("#64748b")),
        "meta": ParagraphStyle("Meta", parent=base["Normal"], fontSize=8, leading=11),
    }


def _p(text: Any, style: ParagraphStyle) -> Paragraph:
    return Paragraph(escape("" if text is None else str(text)), style)


def _grid(data: list[list[Any]], widths: list[float], extra: list[tuple] | None = None) -> Table:
    t = Table(data, colWidths=widths, repeatRows=1)
    t.setStyle(
        TableStyle(
            [
                ("GRID", (0, 0), (-1, -1), 0.5, _BORDER),
                ("VALIGN", (0, 0), (-1, -1), "TOP"),
                ("LEFTPADDING", (0, 0), (-1, -1), 5),
                ("RIGHTPADDING", (0, 0), (-1, -1), 5),
                ("TOPPADDING", (0, 0), (-1, -1), 4),
                ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
            ]
            + (extra or [])
        )
    )
    return t


def _header_block(header: dict[str, str], st: dict[str, ParagraphStyle], logo_path: str | None) -> Table:
    if logo_path and os.path.isfile(logo_path):
        left: Any = Image(logo_path, width=2.6 * cm, height=1.8 * cm, kind="proportional")
    else:
        left = _p("", st["cell"])
    center = [_p(header["title"], st["title"]), _p(header["standards"], st["subtitle"])]
    right = [
        Paragraph(f"<b>Doc No:</b> {escape(header['doc_no'])}", st["meta"]),
        Paragraph(f"<b>Issue No / Date:</b> {escape(header['issue'])}", st["meta"]),
        Paragraph(f"<b>Rev No:</b> {escape(header['rev_no'])}", st["meta"]),
        Paragraph(f"<b>Rev. Date:</b> {escape(header['rev_date'])}", st["meta"]),
    ]
    t = Table([[left, center, right]], colWidths=[PAGE_WIDTH * 0.18, PAGE_WIDTH * 0.5, PAGE_WIDTH * 0.32])
    t.setStyle(
        TableStyle(
            [
                ("BOX", (0, 0), (-1, -1), 1.5, colors.HexColor("#334155")),
                ("LINEAFTER", (0, 0), (1, 0), 1.5, colors.HexColor("#334155")),
                ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
                ("ALIGN", (0, 0), (0, 0), "CENTER"),
            ]
        )
    )
    return t


def build_audit_report(
    execution: AuditExecution,
    auditees: list[AuditParticipant],
    *,
    header_overrides: dict | None = None,
    logo_path: str | None = None,
) -> bytes:
    header = dict(DEFAULT_HEADER)
    if isinstance(header_overrides, dict):
        header.update({k: str(v) for k, v in header_overrides.items() if k in DEFAULT_HEADER and v})

    st = _styles()
    schedule = execution.schedule
    entries = list(execution.entries or [])
    counts = count_findings(entries)

    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        rightMargin=1 * cm,
        leftMargin=1 * cm,
        topMargin=1.5 * cm,
        bottomMargin=1.5 * cm,
        title=f"Internal audit - {schedule.department}",
    )
    story: list[Any] = [_header_block(header, st, logo_path), Spacer(1, 0.5 * cm)]

    # Details
    auditee_names = ", ".join(a.name for a in auditees) or schedule.department
    auditor_names = ", ".join(a.name for a in schedule.auditors) or "N/A"
    quarter = PAGE_WIDTH / 4
    details = [
        [_p("Department", st["head"]), _p(schedule.department, st["cell"]), _p("Audit Date", st["head"]), _p(_fmt_date(execution.date), st["cell"])],
        [_p("Auditee", st["head"]), _p(auditee_names, st["cell"]), "", ""],
        [_p("Auditors", st["head"]), _p(auditor_names, st["cell"]), "", ""],
    ]
    story.append(
        _grid(
            details,
            [quarter] * 4,
            [
                ("SPAN", (1, 1), (3, 1)),
                ("SPAN", (1, 2), (3, 2)),
                ("BACKGROUND", (0, 0), (0, -1), _HEAD_BG),
                ("BACKGROUND", (2, 0), (2, 0), _HEAD_BG),
            ],
        )
    )

    # Observations
    story.append(_p("AUDIT OBSERVATIONS", st["section"]))
    obs_rows: list[list[Any]] = [
        [_p(h, st["head"]) for h in ("#", "Title", "Doc No", "Observation / Finding", "Clause", "Status")]
    ]
    titled = [e for e in entries if e.get("title")]
    for idx, e in enumerate(titled, start=1):
        obs_rows.append(
            [
                _p(idx, st["cell"]),
                _p(e.get("title"), st["head"]),
                _p(e.get("doc_number"), st["small"]),
                _p(e.get("observation"), st["cell"]),
                _p(e.get("clause"), st["cell"]),
                _p(e.get("status"), st["head"]),
            ]
        )
    obs_extra = [("BACKGROUND", (0, 0), (-1, 0), _HEAD_BG)]
    if not titled:
        obs_rows.append([_p("No observations recorded.", st["small"]), "", "", "", "", ""])
        obs_extra.append(("SPAN", (0, 1), (-1, 1)))
    w = PAGE_WIDTH
    story.append(_grid(obs_rows, [w * 0.05, w * 0.17, w * 0.12, w * 0.44, w * 0.11, w * 0.11], obs_extra))

    # Non-conformities
    ncs = [e for e in entries if e.get("status") == "NC"]
    if ncs:
        story.append(_p("NON-CONFORMITY DETAILS", st["section"]))
        nc_rows: list[list[Any]] = [
            [_p(h, st["nc_head"]) for h in ("Sr.", "NC Statement", "Requirement", "Clause", "Target Date")]
        ]
        for idx, e in enumerate(ncs, start=1):
            nc_rows.append(
                [
                    _p(idx, st["cell"]),
                    _p(e.get("nc_statement") or "-", st["cell"]),
                    _p(e.get("requirement") or "-", st["cell"]),
                    _p(e.get("clause"), st["cell"]),
                    _p(_fmt_date(e.get("target_date")), st["cell"]),
                ]
            )
        story.append(
            _grid(
                nc_rows,
                [w * 0.06, w * 0.42, w * 0.26, w * 0.12, w * 0.14],
                [("BACKGROUND", (0, 0), (-1, 0), _NC_HEAD_BG)],
            )
        )

    # Summary
    story.append(Spacer(1, 0.5 * cm))
    summary = Table(
        [
            ["TOTAL NCS", "AREAS FOR IMPROVEMENT", "COMPLIANT POINTS"],
            [str(counts["NC"]), str(counts["AFI"]), str(counts["OK"])],
        ],
        colWidths=[PAGE_WIDTH / 3] * 3,
    )
    summary.setStyle(
        TableStyle(
            [
                ("BOX", (0, 0), (-1, -1), 0.5, _BORDER),
                ("BACKGROUND", (0, 0), (-1, -1), colors.HexColor("#f8fafc")),
                ("ALIGN", (0, 0), (-1, -1), "CENTER"),
                ("FONTSIZE", (0, 0), (-1, 0), 8),
                ("TEXTCOLOR", (0, 0), (-1, 0), colors.HexColor("#64748b")),
                ("FONTNAME", (0, 1), (-1, 1), "Helvetica-Bold"),
                ("FONTSIZE", (0, 1), (-1, 1), 18),
                ("TOPPADDING", (0, 1), (-1, 1), 8),
                ("BOTTOMPADDING", (0, 1), (-1, 1), 10),
                ("TEXTCOLOR", (0, 1), (0, 1), colors.HexColor("#dc2626")),
                ("TEXTCOLOR", (1, 1), (1, 1), colors.HexColor("#ca8a04")),
                ("TEXTCOLOR", (2, 1), (2, 1), colors.HexColor("#16a34a")),
            ]
        )
    )
    story.append(summary)

    story.append(Spacer(1, 0.8 * cm))
    story.append(_p(FOOTER_TEXT, st["small"]))
    story.append(_p(f"Generated on: {utcnow().strftime('%d.%m.%Y %H:%M')} UTC", st["small"]))

    doc.build(story)
    return buffer.getvalue()
