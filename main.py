import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional

from fastapi import Body, Depends, FastAPI, File, Form, Query, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import DuplicateKeyError
from starlette.exceptions import HTTPException as StarletteHTTPException

import database
from config import CORS_ORIGINS, DATABASE_NAME, DATABASE_URL, GOOGLE_CREDENTIALS, LOG_LEVEL, MAX_UPLOAD_BYTES
from database import ensure_indexes, get_db
from documents import DocumentIntake
from drive import DriveStorage
from errors import ApiError, Unauthenticated, ValidationError
from internships import (
    create_internship,
    delete_internship,
    get_internship,
    list_internships,
    update_internship,
    verify_internship,
)
from pdftext import verify_pdf_content
from reports import dashboard_stats
from schemas import (
    InternshipCreate,
    InternshipUpdate,
    LoginRequest,
    StudentRegistration,
    VerifyRequest,
    field_errors,
    parse_registration,
    user_out,
)
from security import create_token, get_current_user, hash_password, require_role, verify_password

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        ensure_indexes(database.db)
    yield


app = FastAPI(title="InternTrack API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------- Error envelopes ----------

@app.exception_handler(ApiError)
async def api_error_handler(request, exc: ApiError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request, exc: RequestValidationError):
    errors = field_errors(exc)
    logger.warning("%s %s -> 400: %s", request.method, request.url.path, errors)
    err = ValidationError(next(iter(errors.values()), "Invalid request"), errors)
    return JSONResponse(status_code=400, content=err.to_dict())


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"success": False, "message": str(exc.detail)})


@app.exception_handler(Exception)
async def unexpected_error_handler(request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"success": False, "message": "Internal server error"})


# ---------- Dependencies ----------

@lru_cache(maxsize=1)
def get_drive_storage() -> DriveStorage:
    return DriveStorage()


def get_document_intake(storage: DriveStorage = Depends(get_drive_storage)) -> DocumentIntake:
    return DocumentIntake(storage, verify_pdf_content)


# ---------- Basic Routes ----------

@app.get("/")
def root():
    return {"message": "InternTrack API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if DATABASE_URL else "❌ Not Set",
        "database_name": "✅ Set" if DATABASE_NAME else "❌ Not Set",
        "drive_credentials": "✅ Set" if GOOGLE_CREDENTIALS else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if database.db is not None:
            response["collections"] = database.db.list_collection_names()
            response["database"] = "✅ Connected"
            response["connection_status"] = "Connected"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# ---------- Auth ----------

def email_taken() -> ValidationError:
    return ValidationError("Email already registered", {"email": "Email already registered"})


def registration_number_taken() -> ValidationError:
    return ValidationError(
        "Registration number already registered",
        {"registrationNumber": "Registration number already registered"},
    )


def insert_user(db, user_doc: dict):
    # unique indexes settle concurrent registrations that both passed the lookups
    try:
        return db["user"].insert_one(user_doc).inserted_id
    except DuplicateKeyError:
        if db["user"].find_one({"email": user_doc["email"]}):
            raise email_taken()
        raise registration_number_taken()


@app.post("/auth/register", status_code=201)
def register(payload: dict = Body(...), db=Depends(get_db)):
    registration = parse_registration(payload)
    if db["user"].find_one({"email": registration.email}):
        raise email_taken()

    user_doc = {
        "name": registration.name,
        "email": registration.email,
        "passwordHash": hash_password(registration.password),
        "role": registration.role,
        "createdAt": datetime.now(timezone.utc),
    }
    if isinstance(registration, StudentRegistration):
        if db["user"].find_one({"role": "student", "registrationNumber": registration.registration_number}):
            raise registration_number_taken()
        user_doc.update({
            "registrationNumber": registration.registration_number,
            "batch": registration.batch,
            "mobileNumber": registration.mobile_number,
        })

    user_doc["_id"] = insert_user(db, user_doc)
    logger.info("Registered %s %s", user_doc["role"], user_doc["_id"])
    return {"success": True, "token": create_token(user_doc), "user": user_out(user_doc)}


@app.post("/auth/login")
def login(payload: LoginRequest, db=Depends(get_db)):
    if not payload.email or not payload.password:
        raise ValidationError("Please provide email and password")
    user = db["user"].find_one({"email": payload.email})
    if not user or not verify_password(payload.password, user.get("passwordHash", "")):
        raise Unauthenticated("Invalid credentials")
    return {"success": True, "token": create_token(user), "user": user_out(user)}


@app.get("/auth/me")
def me(user=Depends(get_current_user)):
    return {"success": True, "user": user_out(user)}


# ---------- Internships ----------

@app.post("/internships", status_code=201)
def create_internship_route(payload: InternshipCreate, user=Depends(require_role("student")), db=Depends(get_db)):
    return {"success": True, "data": create_internship(db, user, payload)}


@app.get("/internships")
def list_internships_route(
    batch: Optional[str] = None,
    company_name: Optional[str] = Query(None, alias="companyName"),
    academic_year: Optional[str] = Query(None, alias="academicYear"),
    internship_type: Optional[str] = Query(None, alias="internshipType"),
    obtained_through_cdc: Optional[str] = Query(None, alias="obtainedThroughCDC"),
    internship_location: Optional[str] = Query(None, alias="internshipLocation"),
    verified: Optional[str] = None,
    min_stipend: Optional[float] = Query(None, alias="minStipend"),
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    filters = {
        "batch": batch,
        "companyName": company_name,
        "academicYear": academic_year,
        "internshipType": internship_type,
        "obtainedThroughCDC": obtained_through_cdc,
        "internshipLocation": internship_location,
        "verified": verified,
        "minStipend": min_stipend,
    }
    data = list_internships(db, user, filters)
    return {"success": True, "count": len(data), "data": data}


@app.get("/internships/stats/dashboard")
def dashboard(user=Depends(require_role("coordinator")), db=Depends(get_db)):
    return {"success": True, "data": dashboard_stats(db)}


@app.get("/internships/{internship_id}")
def get_internship_route(internship_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    return {"success": True, "data": get_internship(db, user, internship_id)}


@app.put("/internships/{internship_id}")
def update_internship_route(
    internship_id: str,
    payload: InternshipUpdate,
    user=Depends(require_role("student")),
    db=Depends(get_db),
):
    return {"success": True, "data": update_internship(db, user, internship_id, payload)}


@app.put("/internships/{internship_id}/verify")
def verify_internship_route(
    internship_id: str,
    payload: Optional[VerifyRequest] = None,
    user=Depends(require_role("coordinator")),
    db=Depends(get_db),
):
    comments = payload.comments if payload else None
    return {"success": True, "data": verify_internship(db, user, internship_id, comments)}


@app.delete("/internships/{internship_id}")
def delete_internship_route(internship_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    delete_internship(db, user, internship_id)
    return {"success": True, "data": {}}


# ---------- Files ----------

@app.post("/files/upload/{category}")
def upload_document(
    category: str,
    file: Optional[UploadFile] = File(None),
    registration_number: Optional[str] = Form(None, alias="registrationNumber"),
    batch: Optional[str] = Form(None),
    name: Optional[str] = Form(None),
    user=Depends(require_role("student")),
    intake: DocumentIntake = Depends(get_document_intake),
):
    data = file.file.read(MAX_UPLOAD_BYTES + 1) if file else b""
    reference = intake.process(
        category,
        data,
        file.content_type if file else None,
        file.filename if file else None,
        registration_number=registration_number or user.get("registrationNumber"),
        batch=batch or user.get("batch"),
        name=name or user.get("name"),
    )
    return {"success": True, "fileDetails": reference.model_dump(by_alias=True)}
