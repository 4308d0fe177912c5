"""
Google Drive storage for internship documents.

Files live under a fixed hierarchy below the configured root folder:

    <root>/<batch start year>/details/<registrationNumber>_<Student_Name>/

Folders are looked up before they are created, so provisioning the same
student twice reuses the existing folders.
"""
import io
import json
import logging
import re
from typing import Optional

import httplib2
from google.auth.exceptions import GoogleAuthError
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import Error as GoogleApiError
from googleapiclient.http import MediaIoBaseUpload

from config import DRIVE_ROOT_FOLDER_ID, DRIVE_SCOPES, GOOGLE_CREDENTIALS
from errors import ExternalServiceError

logger = logging.getLogger(__name__)

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
DETAILS_FOLDER = "details"
WHITESPACE_RE = re.compile(r"\s+")


def build_drive_service():
    if not GOOGLE_CREDENTIALS:
        raise ExternalServiceError("Google Drive credentials are not configured")
    try:
        info = json.loads(GOOGLE_CREDENTIALS)
        credentials = service_account.Credentials.from_service_account_info(info, scopes=DRIVE_SCOPES)
        return build("drive", "v3", credentials=credentials, cache_discovery=False)
    except (ValueError, GoogleAuthError) as e:
        raise ExternalServiceError(f"Failed to initialise Google Drive client: {e}")


def _quote(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


def student_folder_name(registration_number: str, student_name: str) -> str:
    return f"{registration_number}_{WHITESPACE_RE.sub('_', student_name.strip())}"


class DriveStorage:
    def __init__(self, service=None, root_folder_id: str = DRIVE_ROOT_FOLDER_ID):
        self._service = service
        self.root_folder_id = root_folder_id

    @property
    def service(self):
        if self._service is None:
            self._service = build_drive_service()
        return self._service

    def _execute(self, request, what: str):
        try:
            return request.execute()
        except (GoogleApiError, GoogleAuthError, httplib2.HttpLib2Error, OSError) as e:
            logger.error("Google Drive call failed (%s): %s", what, e)
            raise ExternalServiceError(f"Failed to {what}: {e}")

    def find_folder(self, name: str, parent_id: Optional[str] = None) -> Optional[str]:
        parent_id = parent_id or self.root_folder_id
        query = (
            f"mimeType='{FOLDER_MIME_TYPE}' and name='{_quote(name)}' "
            f"and '{_quote(parent_id)}' in parents and trashed=false"
        )
        response = self._execute(
            self.service.files().list(q=query, fields="files(id, name)", spaces="drive"),
            "find folder",
        )
        files = response.get("files", [])
        return files[0]["id"] if files else None

    def create_folder(self, name: str, parent_id: Optional[str] = None) -> str:
        body = {
            "name": name,
            "mimeType": FOLDER_MIME_TYPE,
            "parents": [parent_id or self.root_folder_id],
        }
        response = self._execute(self.service.files().create(body=body, fields="id"), "create folder")
        logger.info("Created Drive folder %s (%s)", name, response["id"])
        return response["id"]

    def get_or_create_folder(self, name: str, parent_id: Optional[str] = None) -> str:
        return self.find_folder(name, parent_id) or self.create_folder(name, parent_id)

    def ensure_student_folder(self, batch: str, registration_number: str, student_name: str) -> str:
        batch_year = batch.split("-")[0]
        year_id = self.get_or_create_folder(batch_year, self.root_folder_id)
        details_id = self.get_or_create_folder(DETAILS_FOLDER, year_id)
        return self.get_or_create_folder(student_folder_name(registration_number, student_name), details_id)

    def upload_file(self, data: bytes, name: str, mime_type: str, folder_id: str) -> dict:
        media = MediaIoBaseUpload(io.BytesIO(data), mimetype=mime_type, resumable=False)
        return self._execute(
            self.service.files().create(
                body={"name": name, "parents": [folder_id]},
                media_body=media,
                fields="id, name, webViewLink",
            ),
            "upload file",
        )
