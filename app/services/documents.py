"""Marksheet document rendering and caching."""

import base64
import binascii
import logging
import time
from collections import OrderedDict
from collections.abc import Callable
from io import BytesIO

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import cm
from reportlab.lib.utils import ImageReader
from reportlab.platypus import HRFlowable, Image, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import NotFoundError
from app.models.marksheet import Marksheet
from app.services.lifecycle import DISPATCHABLE_STATUSES
from app.services.results import derive_overall_result, normalize_subjects

logger = logging.getLogger(__name__)

COLLEGE_NAME = "MEENAKSHI SUNDARARAJAN ENGINEERING COLLEGE"

DEPARTMENT_NAMES = {
    "AI_DS": "Artificial Intelligence and Data Science",
    "CSE": "Computer Science and Engineering",
    "HNS": "Humanities & Science (H&S)",
    "IT": "Information Technology",
    "ECE": "Electronics and Communication Engineering",
    "EEE": "Electrical and Electronics Engineering",
    "MECH": "Mechanical Engineering",
    "CIVIL": "Civil Engineering",
}

RESULT_COLORS = {
    "Pass": colors.HexColor("#15803d"),
    "Fail": colors.HexColor("#b91c1c"),
    "Absent": colors.HexColor("#b45309"),
}


class DocumentCache:
    """Bounded cache of rendered documents with TTL expiry and LRU eviction."""

    def __init__(
        self,
        max_size: int,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, bytes]] = OrderedDict()

    def get(self, key: str) -> bytes | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, value = entry
        if self._clock() - stored_at > self.ttl_seconds:
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return value

    def put(self, key: str, value: bytes) -> None:
        self._entries[key] = (self._clock(), value)
        self._entries.move_to_end(key)
        self._evict()

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def _evict(self) -> None:
        now = self._clock()
        for key in [k for k, (stored_at, _) in self._entries.items() if now - stored_at > self.ttl_seconds]:
            del self._entries[key]
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)


_document_cache: DocumentCache | None = None


def get_document_cache() -> DocumentCache:
    """Process-wide document cache owned by the document service."""
    global _document_cache
    if _document_cache is None:
        _document_cache = DocumentCache(
            max_size=settings.DOCUMENT_CACHE_MAX_SIZE,
            ttl_seconds=settings.DOCUMENT_CACHE_TTL_SECONDS,
        )
    return _document_cache


def document_url(marksheet: Marksheet) -> str:
    """Public URL the WhatsApp provider fetches the PDF from."""
    base = settings.PUBLIC_BASE_URL.rstrip("/")
    return f"{base}{settings.API_V1_PREFIX}/documents/marksheets/{marksheet.document_token}.pdf"


def _decode_signature(data_url: str | None) -> BytesIO | None:
    if not data_url:
        return None
    encoded = data_url.split(",", 1)[1] if "," in data_url else data_url
    try:
        image = BytesIO(base64.b64decode(encoded, validate=True))
        ImageReader(image).getSize()
    except (binascii.Error, ValueError, OSError):
        logger.warning("Unreadable signature image; leaving the signature blank")
        return None
    image.seek(0)
    return image


class DocumentService:
    """Renders marksheet PDFs, serving repeat requests from the cache."""

    def __init__(self, db: Session, cache: DocumentCache | None = None):
        self.db = db
        self.cache = cache if cache is not None else get_document_cache()

    def get_pdf(self, document_token: str) -> bytes:
        """PDF of an approved, rescheduled or dispatched marksheet.

        Anything else is reported as missing so the public URL never
        reveals drafts or pending requests.
        """
        marksheet = self.db.execute(
            select(Marksheet).where(Marksheet.document_token == document_token)
        ).scalar_one_or_none()
        if not marksheet or marksheet.status not in DISPATCHABLE_STATUSES:
            raise NotFoundError("Document", document_token)

        # The version makes any edit produce a fresh key
        key = f"pdf_{marksheet.id}_v{marksheet.version}"
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        content = self.render_pdf(marksheet)
        self.cache.put(key, content)
        return content

    def render_pdf(self, marksheet: Marksheet) -> bytes:
        buffer = BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            leftMargin=1.8 * cm,
            rightMargin=1.8 * cm,
            topMargin=1.5 * cm,
            bottomMargin=1.5 * cm,
            title=f"Marksheet - {marksheet.student_name}",
            author=COLLEGE_NAME,
        )
        styles = getSampleStyleSheet()
        center = ParagraphStyle("Center", parent=styles["Normal"], alignment=1, fontSize=9)
        heading = ParagraphStyle("Heading", parent=styles["Title"], fontSize=14, spaceAfter=4)

        exam_date = marksheet.examination_date
        exam_name = (marksheet.examination_name or "End Semester Examinations").upper()
        elements = [
            Paragraph(COLLEGE_NAME, heading),
            Paragraph("(AN AUTONOMOUS INSTITUTION AFFILIATED TO ANNA UNIVERSITY)", center),
            Paragraph("OFFICE OF THE CONTROLLER OF EXAMINATIONS", center),
            Paragraph(f"<b>{exam_name} - {exam_date.strftime('%B').upper()} - {exam_date.year}</b>", center),
            Spacer(1, 0.3 * cm),
            HRFlowable(width="100%", thickness=1, color=colors.black),
            Spacer(1, 0.4 * cm),
        ]

        department = DEPARTMENT_NAMES.get(marksheet.department, marksheet.department)
        year_sem = marksheet.year + (f"/{marksheet.semester}" if marksheet.semester else "")
        info = Table(
            [
                ["Register Number:", marksheet.reg_number],
                ["Student Name:", marksheet.student_name],
                ["Department:", f"B.Tech {department}"],
                ["Year/Semester:", year_sem],
            ],
            colWidths=[4.5 * cm, 12 * cm],
        )
        info.setStyle(TableStyle([
            ("FONTNAME", (0, 0), (0, -1), "Helvetica-Bold"),
            ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
        ]))
        elements.extend([info, Spacer(1, 0.5 * cm)])

        subjects = normalize_subjects(marksheet.subjects or [])
        rows = [["S.No", "Course", "Marks", "Result"]]
        for index, subject in enumerate(subjects, start=1):
            marks = subject.get("marks")
            rows.append([
                str(index),
                subject.get("subject_name", ""),
                "AB" if isinstance(marks, str) else ("-" if marks is None else f"{marks:g}"),
                subject["result"],
            ])
        table = Table(rows, colWidths=[1.5 * cm, 10 * cm, 2.5 * cm, 2.5 * cm], repeatRows=1)
        table_style = [
            ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#e8e8e8")),
            ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
            ("GRID", (0, 0), (-1, -1), 0.75, colors.black),
            ("ALIGN", (0, 0), (0, -1), "CENTER"),
            ("ALIGN", (2, 0), (-1, -1), "CENTER"),
            ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ]
        for row_index, subject in enumerate(subjects, start=1):
            table_style.append(("TEXTCOLOR", (3, row_index), (3, row_index), RESULT_COLORS[subject["result"]]))
        table.setStyle(TableStyle(table_style))

        overall = derive_overall_result(subjects).value
        elements.extend([
            table,
            Spacer(1, 0.4 * cm),
            Paragraph(f"<b>Overall Result:</b> {overall}", styles["Normal"]),
            Spacer(1, 1.5 * cm),
            self._signature_block(marksheet),
        ])

        doc.build(elements)
        return buffer.getvalue()

    def _signature_block(self, marksheet: Marksheet) -> Table:
        cells = []
        for data_url, name, role in (
            (marksheet.staff_signature, marksheet.staff_name, "Class Advisor"),
            (marksheet.hod_signature, marksheet.hod_name, "Head of the Department"),
        ):
            image = _decode_signature(data_url)
            cells.append([
                Image(image, width=3.5 * cm, height=1.2 * cm) if image else Spacer(1, 1.2 * cm),
                Paragraph(f"<b>{name or ''}</b><br/>{role}", ParagraphStyle("Sig", alignment=1, fontSize=9)),
            ])
        block = Table([[cells[0][0], cells[1][0]], [cells[0][1], cells[1][1]]], colWidths=[8 * cm, 8 * cm])
        block.setStyle(TableStyle([("ALIGN", (0, 0), (-1, -1), "CENTER")]))
        return block
