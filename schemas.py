"""
Database and request schemas for the InternTrack API

MongoDB collections:
- user: students and coordinators
- internship: internship submissions with their document references

Wire and storage field names are camelCase (registrationNumber, companyName, ...),
Python attributes are snake_case.
"""
import re
from datetime import date
from typing import Annotated, Dict, Iterable, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from errors import ValidationError

Role = Literal["student", "coordinator"]
InternshipType = Literal["Academic", "Industry"]
InternshipLocation = Literal["India", "Abroad"]

DOCUMENT_CATEGORIES = ("offerLetter", "permissionLetter", "completionCertificate")

REGISTRATION_NUMBER_RE = re.compile(r"^\d{13}$")
BATCH_RE = re.compile(r"^\d{4}-\d{2}$")
MOBILE_RE = re.compile(r"^\d{10}$")
ACADEMIC_YEAR_RE = re.compile(r"^\d{4}-\d{4}$")
UNSAFE_CHARS_RE = re.compile(r"[<>&'\"]")


# ---------- Field checks ----------

def check_registration_number(value: str) -> str:
    if not REGISTRATION_NUMBER_RE.match(value):
        raise ValueError(f"{value} is not a valid registration number! Must be 13 digits.")
    return value


def check_batch(value: str) -> str:
    if not BATCH_RE.match(value):
        raise ValueError("Batch should be in format: YYYY-YY")
    return value


def check_mobile_number(value: str) -> str:
    if not MOBILE_RE.match(value):
        raise ValueError("Mobile number should be 10 digits")
    return value


def check_academic_year(value: str) -> str:
    if not ACADEMIC_YEAR_RE.match(value):
        raise ValueError("Academic year format should be YYYY-YYYY (e.g., 2023-2024)")
    first, second = (int(part) for part in value.split("-"))
    if second != first + 1:
        raise ValueError("Academic year must span two consecutive years")
    return value


def sanitize(value):
    if isinstance(value, str):
        return UNSAFE_CHARS_RE.sub("", value)
    return value


def field_errors(exc: PydanticValidationError, skip: Iterable[str] = ()) -> Dict[str, str]:
    """Flatten pydantic errors into {field: message}, first message per field wins."""
    skip = {"body", "query", "path", *skip}
    errors: Dict[str, str] = {}
    for err in exc.errors():
        parts = [str(p) for p in err["loc"] if p not in skip]
        key = ".".join(parts) if parts else "request"
        msg = err["msg"]
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        errors.setdefault(key, msg)
    return errors


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)


# ---------- Users ----------

class RegistrationBase(CamelModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)


class StudentRegistration(RegistrationBase):
    role: Literal["student"]
    registration_number: str
    batch: str
    mobile_number: str

    validate_registration_number = field_validator("registration_number")(check_registration_number)
    validate_batch = field_validator("batch")(check_batch)
    validate_mobile_number = field_validator("mobile_number")(check_mobile_number)


class CoordinatorRegistration(RegistrationBase):
    role: Literal["coordinator"]


Registration = Annotated[Union[StudentRegistration, CoordinatorRegistration], Field(discriminator="role")]
registration_adapter = TypeAdapter(Registration)


def parse_registration(data: dict) -> Union[StudentRegistration, CoordinatorRegistration]:
    data = dict(data or {})
    role = data.get("role") or "student"
    if role not in ("student", "coordinator"):
        raise ValidationError("Invalid role", {"role": "Role must be student or coordinator"})
    data["role"] = role
    try:
        return registration_adapter.validate_python(data)
    except PydanticValidationError as e:
        errors = field_errors(e, skip=(role,))
        raise ValidationError(next(iter(errors.values())), errors)


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


def user_out(user: dict) -> dict:
    return {
        "id": str(user["_id"]),
        "name": user.get("name"),
        "email": user.get("email"),
        "role": user.get("role"),
        "registrationNumber": user.get("registrationNumber"),
        "batch": user.get("batch"),
        "mobileNumber": user.get("mobileNumber"),
    }


# ---------- Internships ----------

class DocumentReference(CamelModel):
    file_id: str = Field(..., min_length=1)
    file_name: str = Field(..., min_length=1)
    web_view_link: str = Field(..., min_length=1)


class InternshipUpdate(CamelModel):
    registration_number: Optional[str] = None
    batch: Optional[str] = None
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    mobile_number: Optional[str] = None
    company_name: Optional[str] = Field(default=None, min_length=1)
    internship_type: Optional[InternshipType] = None
    obtained_through_cdc: Optional[bool] = Field(default=None, alias="obtainedThroughCDC")
    internship_location: Optional[InternshipLocation] = None
    internship_start_date: Optional[date] = None
    internship_end_date: Optional[date] = None
    stipend: Optional[float] = None
    academic_year: Optional[str] = None
    offer_letter_file: Optional[DocumentReference] = None
    permission_letter_file: Optional[DocumentReference] = None
    completion_certificate_file: Optional[DocumentReference] = None

    @field_validator("registration_number", "batch", "name", "email", "mobile_number",
                     "company_name", "academic_year", mode="before")
    @classmethod
    def sanitize_strings(cls, v):
        return sanitize(v)

    @field_validator("registration_number")
    @classmethod
    def validate_registration_number(cls, v):
        return v if v is None else check_registration_number(v)

    @field_validator("batch")
    @classmethod
    def validate_batch(cls, v):
        return v if v is None else check_batch(v)

    @field_validator("mobile_number")
    @classmethod
    def validate_mobile_number(cls, v):
        return v if v is None else check_mobile_number(v)

    @field_validator("academic_year")
    @classmethod
    def validate_academic_year(cls, v):
        return v if v is None else check_academic_year(v)

    @field_validator("stipend")
    @classmethod
    def validate_stipend(cls, v):
        if v is not None and v < 0:
            raise ValueError("Stipend must be a positive number")
        return v


class InternshipCreate(InternshipUpdate):
    company_name: str = Field(..., min_length=1)
    internship_type: InternshipType
    obtained_through_cdc: bool = Field(..., alias="obtainedThroughCDC")
    internship_location: InternshipLocation
    internship_start_date: date
    internship_end_date: date
    stipend: float
    academic_year: str
    offer_letter_file: DocumentReference


class VerifyRequest(BaseModel):
    comments: Optional[str] = None

