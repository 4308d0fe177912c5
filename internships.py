"""
Internship record lifecycle: create, list, read, update, verify and delete.

Every function takes the database handle and the requesting user document, so
authorization decisions are made against an explicit identity.
"""
import logging
import math
import re
from datetime import date, datetime, time, timezone
from typing import Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ReturnDocument

from database import serialize
from errors import Forbidden, NotFound, ValidationError
from schemas import InternshipCreate, InternshipUpdate
from security import ensure_owner, is_coordinator

logger = logging.getLogger(__name__)

DEFAULT_VERIFICATION_COMMENT = "Verified"
STUDENT_FIELDS = ("name", "email", "registrationNumber", "batch", "mobileNumber")


def calculate_duration(start, end) -> int:
    """Whole days between two dates, rounded up."""
    return math.ceil((to_datetime(end) - to_datetime(start)).total_seconds() / 86400)


def to_datetime(value) -> datetime:
    if isinstance(value, datetime):
        return value.replace(tzinfo=None) if value.tzinfo else value
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    raise TypeError(f"Unsupported date value: {value!r}")


def check_date_range(start, end) -> None:
    if to_datetime(end) <= to_datetime(start):
        raise ValidationError(
            "End date must be after start date",
            {"internshipEndDate": "End date must be after start date"},
        )


def parse_id(internship_id: str) -> ObjectId:
    try:
        return ObjectId(internship_id)
    except (InvalidId, TypeError):
        raise NotFound("Internship not found")


def find_or_404(db, internship_id: str) -> dict:
    internship = db["internship"].find_one({"_id": parse_id(internship_id)})
    if not internship:
        raise NotFound("Internship not found")
    return internship


def _to_storage(fields: dict) -> dict:
    for key in ("internshipStartDate", "internshipEndDate"):
        if key in fields:
            fields[key] = to_datetime(fields[key])
    return fields


def internships_out(db, internships: list) -> list:
    """Serialize records with `student` populated from the owner account."""
    ids = list({d.get("student") for d in internships if d.get("student") is not None})
    owners = {u["_id"]: u for u in db["user"].find({"_id": {"$in": ids}})} if ids else {}
    out = []
    for internship in internships:
        record = serialize(internship)
        owner = owners.get(internship.get("student"))
        if owner:
            record["student"] = {"_id": str(owner["_id"]), **{k: owner.get(k) for k in STUDENT_FIELDS}}
        out.append(record)
    return out


def internship_out(db, internship: dict) -> dict:
    return internships_out(db, [internship])[0]


# ---------- Operations ----------

def create_internship(db, user: dict, payload: InternshipCreate) -> dict:
    check_date_range(payload.internship_start_date, payload.internship_end_date)
    doc = _to_storage(payload.model_dump(by_alias=True, exclude_none=True))

    # snapshot of the student's identity at submission time
    for key in STUDENT_FIELDS:
        if not doc.get(key):
            doc[key] = user.get(key)
    missing = {key: f"{key} is required" for key in STUDENT_FIELDS if not doc.get(key)}
    if missing:
        raise ValidationError("Missing student details", missing)

    now = datetime.now(timezone.utc)
    doc.update({
        "student": user["_id"],
        "duration": calculate_duration(doc["internshipStartDate"], doc["internshipEndDate"]),
        "verified": False,
        "verifiedBy": None,
        "verificationDate": None,
        "verificationComments": None,
        "createdAt": now,
        "updatedAt": now,
    })
    doc["_id"] = db["internship"].insert_one(doc).inserted_id
    logger.info("Internship %s created by %s", doc["_id"], user["_id"])
    return internship_out(db, doc)


def build_filter(user: dict, filters: Optional[dict] = None) -> dict:
    filters = filters or {}
    query = {}
    if not is_coordinator(user):
        query["student"] = user["_id"]

    for key in ("batch", "academicYear", "internshipType", "internshipLocation"):
        if filters.get(key):
            query[key] = filters[key]
    if filters.get("companyName"):
        query["companyName"] = {"$regex": re.escape(filters["companyName"]), "$options": "i"}
    for key in ("obtainedThroughCDC", "verified"):
        value = filters.get(key)
        if value is not None and value != "":
            query[key] = str(value).lower() == "true"
    if filters.get("minStipend") is not None:
        query["stipend"] = {"$gte": filters["minStipend"]}
    return query


def list_internships(db, user: dict, filters: Optional[dict] = None) -> list:
    query = build_filter(user, filters)
    docs = db["internship"].find(query).sort("createdAt", -1)
    return internships_out(db, list(docs))


def get_internship(db, user: dict, internship_id: str) -> dict:
    internship = find_or_404(db, internship_id)
    ensure_owner(user, internship)
    return internship_out(db, internship)


def update_internship(db, user: dict, internship_id: str, payload: InternshipUpdate) -> dict:
    if is_coordinator(user):
        raise Forbidden("Coordinators cannot modify internship submissions")
    internship = find_or_404(db, internship_id)
    ensure_owner(user, internship, action="update")
    if internship.get("verified"):
        raise Forbidden("Verified internships cannot be modified")

    changes = _to_storage(payload.model_dump(by_alias=True, exclude_none=True))
    if "internshipStartDate" in changes or "internshipEndDate" in changes:
        start = changes.get("internshipStartDate", internship["internshipStartDate"])
        end = changes.get("internshipEndDate", internship["internshipEndDate"])
        check_date_range(start, end)
        changes["duration"] = calculate_duration(start, end)
    changes["updatedAt"] = datetime.now(timezone.utc)

    updated = db["internship"].find_one_and_update(
        {"_id": internship["_id"], "verified": False},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        # verified or deleted between the read and the write
        raise Forbidden("Verified internships cannot be modified")
    return internship_out(db, updated)


def verify_internship(db, user: dict, internship_id: str, comments: Optional[str] = None) -> dict:
    internship = find_or_404(db, internship_id)
    update = {
        "verified": True,
        "verifiedBy": user["_id"],
        "verificationDate": datetime.now(timezone.utc),
        "verificationComments": comments or DEFAULT_VERIFICATION_COMMENT,
    }
    updated = db["internship"].find_one_and_update(
        {"_id": internship["_id"]},
        {"$set": update},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise NotFound("Internship not found")
    logger.info("Internship %s verified by %s", internship_id, user["_id"])
    return internship_out(db, updated)


def delete_internship(db, user: dict, internship_id: str) -> None:
    internship = find_or_404(db, internship_id)
    ensure_owner(user, internship, action="delete")
    db["internship"].delete_one({"_id": internship["_id"]})
    logger.info("Internship %s deleted by %s", internship_id, user["_id"])
