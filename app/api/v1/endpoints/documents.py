"""Marksheet document endpoints.

Documents are fetched by the WhatsApp provider, so they are served
without authentication. The path carries each marksheet's random
document token rather than its id.
"""

from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.services.documents import DocumentService

router = APIRouter()


@router.get("/marksheets/{document_token}.pdf")
def get_marksheet_pdf(
    document_token: str,
    db: Annotated[Session, Depends(get_db)],
):
    """Rendered PDF of a marksheet that has been approved for dispatch."""
    service = DocumentService(db)
    content = service.get_pdf(document_token)
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": "inline; filename=marksheet.pdf"},
    )
