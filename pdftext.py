import io
import logging

import fitz  # PyMuPDF
import pytesseract
from PIL import Image

from config import OCR_MIN_TEXT_LENGTH
from errors import ExternalServiceError

logger = logging.getLogger(__name__)


def extract_structured_text(data: bytes) -> str:
    with fitz.open(stream=data, filetype="pdf") as doc:
        return "".join(page.get_text() for page in doc)


def ocr_first_page(data: bytes) -> str:
    """Render the first page at 2x and run Tesseract over it."""
    try:
        with fitz.open(stream=data, filetype="pdf") as doc:
            if doc.page_count == 0:
                return ""
            pix = doc[0].get_pixmap(matrix=fitz.Matrix(2, 2))
            image = Image.open(io.BytesIO(pix.tobytes("png")))
        return pytesseract.image_to_string(image, lang="eng")
    except (RuntimeError, ValueError, OSError, pytesseract.TesseractError) as e:
        logger.error("OCR failed: %s", e)
        raise ExternalServiceError(f"Failed to extract text from PDF: {e}")


def extract_text(data: bytes) -> str:
    try:
        text = extract_structured_text(data)
        if len(text) >= OCR_MIN_TEXT_LENGTH:
            return text
        logger.info("Only %d characters of embedded text, falling back to OCR", len(text))
    except (RuntimeError, ValueError) as e:
        logger.info("Structured extraction failed, falling back to OCR: %s", e)
    return ocr_first_page(data)


def contains_identity(text: str, name: str, registration_number: str) -> bool:
    # a match on either field is enough
    haystack = (text or "").lower()
    needles = [n.strip().lower() for n in (name, registration_number) if n and n.strip()]
    return any(n in haystack for n in needles)


def verify_pdf_content(data: bytes, name: str, registration_number: str) -> bool:
    found = contains_identity(extract_text(data), name, registration_number)
    logger.info("PDF verification for %s: %s", registration_number, "matched" if found else "no match")
    return found
