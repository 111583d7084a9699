from __future__ import annotations

import base64
import io
import logging
import os
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional

import anyio
from docx import Document
from pypdf import PdfReader

if TYPE_CHECKING:
    from .providers import QuizGenerationService

logger = logging.getLogger(__name__)

PDF_MIME = "application/pdf"
DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
TEXT_MIMES = ("text/plain", "text/markdown")

IMAGE_EXTENSIONS = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
}


@dataclass(frozen=True)
class ImagePayload:
    base64_data: str
    mime_type: str


def _normalize_text(text: str) -> str:
    text = text.replace("\u00a0", " ")
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    lines = [ln.strip() for ln in text.split("\n")]
    return "\n".join(lines).strip()


def detect_kind(file_name: str, mime_type: str = "") -> Optional[str]:
    """
    Returns one of pdf | docx | text | image, or None when unsupported.
    MIME type wins; the extension is consulted when the type is missing or generic.
    """
    mime = (mime_type or "").strip().lower()
    ext = os.path.splitext(file_name or "")[1].lower()

    if mime == PDF_MIME:
        return "pdf"
    if mime == DOCX_MIME:
        return "docx"
    if mime.startswith("image/"):
        return "image"
    if mime in TEXT_MIMES:
        return "text"

    if ext == ".pdf":
        return "pdf"
    if ext == ".docx":
        return "docx"
    if ext in (".txt", ".md"):
        return "text"
    if ext in IMAGE_EXTENSIONS:
        return "image"
    return None


def image_mime_type(file_name: str, mime_type: str = "") -> str:
    mime = (mime_type or "").strip().lower()
    if mime.startswith("image/"):
        return mime
    ext = os.path.splitext(file_name or "")[1].lower()
    return IMAGE_EXTENSIONS.get(ext, "image/png")


def extract_text_from_pdf(data: bytes) -> str:
    reader = PdfReader(io.BytesIO(data))
    pages: List[str] = []
    for p in reader.pages:
        pages.append((p.extract_text() or "").strip())
    return _normalize_text("\n\n".join(pages))


def extract_text_from_docx(data: bytes) -> str:
    doc = Document(io.BytesIO(data))
    parts: List[str] = [para.text for para in doc.paragraphs]
    for table in doc.tables:
        for row in table.rows:
            cells = [cell.text.strip() for cell in row.cells]
            parts.append(" | ".join(c for c in cells if c))
    return _normalize_text("\n".join(parts))


def extract_text_from_txt(data: bytes) -> str:
    # utf-8 first, then latin-1 fallback
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        return data.decode("latin-1", errors="ignore")


def encode_image(data: bytes, mime_type: str) -> ImagePayload:
    return ImagePayload(base64_data=base64.b64encode(data).decode("ascii"), mime_type=mime_type)


class TextExtractor:
    """
    Default extraction collaborator. Parsing runs in a worker thread so the
    event loop keeps ticking progress while a large PDF is read; OCR goes
    through the configured generation provider.
    """

    def __init__(self, ocr_service: Optional["QuizGenerationService"] = None) -> None:
        self.ocr_service = ocr_service

    async def extract_pdf(self, data: bytes) -> str:
        return await anyio.to_thread.run_sync(lambda: extract_text_from_pdf(data))

    async def extract_docx(self, data: bytes) -> str:
        return await anyio.to_thread.run_sync(lambda: extract_text_from_docx(data))

    async def read_plain_text(self, data: bytes) -> str:
        return _normalize_text(extract_text_from_txt(data))

    async def ocr_image(self, image: ImagePayload) -> Optional[str]:
        if self.ocr_service is None:
            logger.info("ocr_skipped reason=no_service mime=%s", image.mime_type)
            return None
        return await self.ocr_service.ocr_image(image)
