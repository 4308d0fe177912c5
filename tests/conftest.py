import itertools
import os
import re

os.environ.setdefault("BCRYPT_ROUNDS", "4")

import mongomock
import pytest
from fastapi.testclient import TestClient

import main
from database import get_db
from documents import DocumentIntake
from drive import FOLDER_MIME_TYPE, DriveStorage

ROOT_FOLDER = "root-folder"

NAME_RE = re.compile(r"name='((?:\\.|[^'\\])*)'")
PARENT_RE = re.compile(r"'((?:\\.|[^'\\])*)' in parents")


def _unquote(value: str) -> str:
    return re.sub(r"\\(.)", r"\1", value)


class FakeRequest:
    def __init__(self, fn):
        self.fn = fn

    def execute(self):
        return self.fn()


class FakeFiles:
    def __init__(self, drive):
        self.drive = drive

    def list(self, q, fields=None, spaces=None):
        return FakeRequest(lambda: self.drive.list(q))

    def create(self, body, fields=None, media_body=None):
        return FakeRequest(lambda: self.drive.create(body, media_body))


class FakeDriveService:
    """In-memory stand-in for the Drive v3 `files()` resource."""

    def __init__(self):
        self.files_by_id = {}
        self.calls = []
        self.fail_with = None
        self._ids = itertools.count(1)

    def files(self):
        return FakeFiles(self)

    def list(self, q):
        self.calls.append(("list", q))
        if self.fail_with:
            raise self.fail_with
        name = _unquote(NAME_RE.search(q).group(1))
        parent = _unquote(PARENT_RE.search(q).group(1))
        matches = [
            {"id": f["id"], "name": f["name"]}
            for f in self.files_by_id.values()
            if f["mimeType"] == FOLDER_MIME_TYPE and f["name"] == name
            and parent in f["parents"] and not f.get("trashed")
        ]
        return {"files": matches}

    def create(self, body, media_body=None):
        self.calls.append(("create", body["name"]))
        if self.fail_with:
            raise self.fail_with
        file_id = f"id{next(self._ids)}"
        record = {
            "id": file_id,
            "name": body["name"],
            "mimeType": body.get("mimeType", media_body.mimetype() if media_body else None),
            "parents": body["parents"],
            "webViewLink": f"https://drive.google.com/file/d/{file_id}/view",
        }
        self.files_by_id[file_id] = record
        return {"id": file_id, "name": record["name"], "webViewLink": record["webViewLink"]}

    def folders(self):
        return [f for f in self.files_by_id.values() if f["mimeType"] == FOLDER_MIME_TYPE]

    def uploads(self):
        return [f for f in self.files_by_id.values() if f["mimeType"] != FOLDER_MIME_TYPE]


class FakeVerifier:
    def __init__(self):
        self.result = True
        self.calls = []

    def __call__(self, data, name, registration_number):
        self.calls.append((name, registration_number))
        return self.result


@pytest.fixture
def db():
    return mongomock.MongoClient()["interntrack_test"]


@pytest.fixture
def drive_service():
    return FakeDriveService()


@pytest.fixture
def storage(drive_service):
    return DriveStorage(drive_service, ROOT_FOLDER)


@pytest.fixture
def verifier():
    return FakeVerifier()


@pytest.fixture
def client(db, storage, verifier):
    main.app.dependency_overrides[get_db] = lambda: db
    main.app.dependency_overrides[main.get_document_intake] = lambda: DocumentIntake(storage, verifier)
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


_counter = itertools.count(1)


def student_payload(**overrides):
    n = next(_counter)
    payload = {
        "name": "Asha Rao",
        "email": f"student{n}@example.edu",
        "password": "secret123",
        "role": "student",
        "registrationNumber": f"{3122220000000 + n}",
        "batch": "2022-26",
        "mobileNumber": "9876543210",
    }
    payload.update(overrides)
    return payload


def coordinator_payload(**overrides):
    n = next(_counter)
    payload = {
        "name": "Dr. Meena",
        "email": f"coordinator{n}@example.edu",
        "password": "secret123",
        "role": "coordinator",
    }
    payload.update(overrides)
    return payload


def auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def register(client):
    def _register(payload):
        res = client.post("/auth/register", json=payload)
        assert res.status_code == 201, res.json()
        body = res.json()
        return body["token"], body["user"]
    return _register


@pytest.fixture
def student(register):
    return register(student_payload())


@pytest.fixture
def other_student(register):
    return register(student_payload(name="Ravi Kumar", batch="2021-25"))


@pytest.fixture
def coordinator(register):
    return register(coordinator_payload())


def internship_payload(**overrides):
    payload = {
        "companyName": "Acme Corp",
        "internshipType": "Industry",
        "obtainedThroughCDC": True,
        "internshipLocation": "India",
        "internshipStartDate": "2024-01-01",
        "internshipEndDate": "2024-03-01",
        "stipend": 15000,
        "academicYear": "2023-2024",
        "offerLetterFile": {
            "fileId": "offer-1",
            "fileName": "offerLetter_3122220000001.pdf",
            "webViewLink": "https://drive.google.com/file/d/offer-1/view",
        },
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def submit(client):
    def _submit(token, **overrides):
        res = client.post("/internships", json=internship_payload(**overrides), headers=auth(token))
        assert res.status_code == 201, res.json()
        return res.json()["data"]
    return _submit
