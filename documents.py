import logging
import os
from typing import Callable

from config import ALLOWED_UPLOAD_TYPES, MAX_UPLOAD_BYTES
from drive import DriveStorage
from errors import NotFound, ValidationError
from schemas import DOCUMENT_CATEGORIES, DocumentReference

logger = logging.getLogger(__name__)


def stored_file_name(category: str, registration_number: str, original_name: str) -> str:
    ext = os.path.splitext(original_name or "")[1].lstrip(".").lower() or "pdf"
    return f"{category}_{registration_number}.{ext}"


class DocumentIntake:
    """Validate an uploaded document, check it names the student, and store it in Drive."""

    def __init__(self, storage: DriveStorage, verify_content: Callable[[bytes, str, str], bool],
                 max_bytes: int = MAX_UPLOAD_BYTES):
        self.storage = storage
        self.verify_content = verify_content
        self.max_bytes = max_bytes

    def validate(self, data: bytes, content_type: str) -> None:
        if not data:
            raise ValidationError("Please upload a PDF file", {"file": "File is required"})
        if content_type not in ALLOWED_UPLOAD_TYPES:
            raise ValidationError("Only PDF files are allowed", {"file": "Only PDF files are allowed"})
        if len(data) > self.max_bytes:
            limit_mb = self.max_bytes / (1024 * 1024)
            raise ValidationError(
                f"File too large, the limit is {limit_mb:g} MB",
                {"file": f"File must be at most {limit_mb:g} MB"},
            )

    def process(self, category: str, data: bytes, content_type: str, filename: str,
                registration_number: str, batch: str, name: str) -> DocumentReference:
        if category not in DOCUMENT_CATEGORIES:
            raise NotFound(f"Unknown document type: {category}")
        self.validate(data, content_type)
        missing = {
            field: f"{field} is required"
            for field, value in (("registrationNumber", registration_number), ("batch", batch), ("name", name))
            if not value
        }
        if missing:
            raise ValidationError("Missing student details", missing)

        if not self.verify_content(data, name, registration_number):
            raise ValidationError(
                "The uploaded PDF does not contain the student name and registration number. "
                "Please verify the document and try again."
            )

        folder_id = self.storage.ensure_student_folder(batch, registration_number, name)
        stored = self.storage.upload_file(
            data, stored_file_name(category, registration_number, filename), content_type, folder_id
        )
        logger.info("Stored %s for %s as %s", category, registration_number, stored.get("id"))
        return DocumentReference(
            file_id=stored["id"],
            file_name=stored["name"],
            web_view_link=stored["webViewLink"],
        )
