"""PDF attachments, persisted as base64 data URLs or external links."""

import base64
from typing import Optional

PDF_MIME = "application/pdf"
DATA_URL_PREFIX = f"data:{PDF_MIME};base64,"
PDF_MAGIC = b"%PDF"


class AttachmentError(ValueError):
    pass


def is_data_url(url: Optional[str]) -> bool:
    return bool(url) and url.startswith("data:")


def to_data_url(content: bytes) -> str:
    return DATA_URL_PREFIX + base64.b64encode(content).decode("ascii")


def validate_attachment_url(url: Optional[str]) -> Optional[str]:
    """Accept a PDF data URL or an http(s) link; empty means no attachment."""
    if url is None:
        return None
    url = url.strip()
    if not url:
        return None
    if url.startswith(DATA_URL_PREFIX):
        try:
            base64.b64decode(url[len(DATA_URL_PREFIX):], validate=True)
        except ValueError as e:
            raise AttachmentError("attachment is not valid base64") from e
        return url
    if is_data_url(url):
        raise AttachmentError("only PDF attachments are supported")
    if url.startswith(("http://", "https://")):
        return url
    raise AttachmentError("attachment must be a PDF data URL or an http(s) URL")


def encode_pdf_upload(
    content: bytes,
    *,
    filename: Optional[str],
    content_type: Optional[str],
    max_bytes: int,
) -> str:
    """Check an uploaded file is a PDF within the size limit and return its data URL."""
    if not content:
        raise AttachmentError("No file uploaded")
    if len(content) > max_bytes:
        raise AttachmentError(f"File too large (max {max_bytes} bytes)")
    declared_pdf = content_type == PDF_MIME or (filename or "").lower().endswith(".pdf")
    if not declared_pdf or not content.startswith(PDF_MAGIC):
        raise AttachmentError("Only PDF files are allowed")
    return to_data_url(content)
