"""
File Upload Utility - validate resume uploads and extract their text.

Supported formats:
- PDF (.pdf) using PyPDF2
- Word (.docx) using python-docx
- Legacy Word (.doc) accepted for storage, no text extraction

Max file size: 10MB
"""

import io
import logging
from typing import Optional, Tuple

from docx import Document
from fastapi import HTTPException, UploadFile
from PyPDF2 import PdfReader

logger = logging.getLogger(__name__)

MAX_FILE_SIZE_MB = 10
MAX_FILE_SIZE_BYTES = MAX_FILE_SIZE_MB * 1024 * 1024
ALLOWED_EXTENSIONS = {'.pdf', '.doc', '.docx'}
ALLOWED_CONTENT_TYPES = {
    'application/pdf',
    'application/msword',
    'application/vnd.openxmlformats-officedocument.wordprocessingml.document',
}
RESUME_REQUIRED_MESSAGE = "Please upload your resume (PDF or DOC/DOCX, max 10MB)."
RESUME_INVALID_MESSAGE = "Please upload a PDF or DOC/DOCX file under 10MB."


def get_file_extension(filename: str) -> str:
    """Get lowercase file extension."""
    if '.' not in filename:
        return ''
    return '.' + filename.rsplit('.', 1)[1].lower()


def is_allowed_resume(filename: str, content_type: Optional[str]) -> bool:
    """Either the declared content type or the extension has to be a resume format."""
    type_allowed = bool(content_type) and content_type in ALLOWED_CONTENT_TYPES
    return type_allowed or get_file_extension(filename or '') in ALLOWED_EXTENSIONS


def has_upload(file: Optional[UploadFile]) -> bool:
    return file is not None and bool(getattr(file, "filename", ""))


async def read_resume_upload(file: Optional[UploadFile], field: Optional[str] = None) -> Optional[Tuple[bytes, str, str]]:
    """
    Read and validate an uploaded resume.

    Returns:
        Tuple of (content, filename, content_type), or None when nothing
        (or an empty file) was uploaded

    Raises:
        HTTPException 400 when the file is the wrong type or too large
    """
    if not has_upload(file):
        return None

    content = await file.read()
    if not content:
        return None

    if not is_allowed_resume(file.filename, file.content_type) or len(content) > MAX_FILE_SIZE_BYTES:
        detail = {"field": field, "error": RESUME_INVALID_MESSAGE} if field else RESUME_INVALID_MESSAGE
        raise HTTPException(status_code=400, detail=detail)

    return content, file.filename, file.content_type or 'application/octet-stream'


def extract_text(content: bytes, content_type: Optional[str] = None, filename: Optional[str] = None) -> Optional[str]:
    """
    Extract plain text from a resume.
    Returns None when the format has no extractor or extraction fails.
    """
    lower_name = (filename or '').lower()
    lower_type = (content_type or '').lower()

    is_pdf = 'pdf' in lower_type or lower_name.endswith('.pdf')
    is_docx = 'wordprocessingml.document' in lower_type or lower_name.endswith('.docx')

    try:
        if is_pdf:
            return extract_from_pdf(content)
        if is_docx:
            return extract_from_docx(content)
    except Exception as e:
        logger.warning("Resume text extraction failed for %s: %s", filename, e)
        return None
    return None


def extract_from_pdf(content: bytes) -> str:
    """Extract text from PDF bytes."""
    reader = PdfReader(io.BytesIO(content))
    text_parts = []
    for page in reader.pages:
        page_text = page.extract_text()
        if page_text:
            text_parts.append(page_text)
    return '\n'.join(text_parts)


def extract_from_docx(content: bytes) -> str:
    """Extract text from DOCX bytes."""
    doc = Document(io.BytesIO(content))
    text_parts = []

    # Extract paragraphs
    for para in doc.paragraphs:
        if para.text.strip():
            text_parts.append(para.text)

    # Extract tables
    for table in doc.tables:
        for row in table.rows:
            row_text = [cell.text.strip() for cell in row.cells if cell.text.strip()]
            if row_text:
                text_parts.append(' | '.join(row_text))

    return '\n'.join(text_parts)
