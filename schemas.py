"""
Database Schemas for the Trainee Portal

Trainee is stored in the "trainee" MongoDB collection with snake_case field
names. The request/response models speak camelCase on the wire.
"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Trainee(BaseModel):
    """trainee collection document (password_hash is never sent to clients)"""
    full_name: str = Field(..., max_length=100, description="Unique display name")
    school: str = Field(..., max_length=100)
    email: str = Field(..., description="Unique login, trimmed and lower-cased")
    password_hash: str = Field(..., description="bcrypt hash")
    role: Literal["trainee", "admin"] = "trainee"
    job_role: Optional[str] = Field(default=None, description="Job role picked at sign-up")
    job_role_other: Optional[str] = Field(default=None, max_length=50)
    interested_in_certification: bool
    training_attended: Optional[bool] = None
    courses_interested: List[str] = Field(default_factory=list, max_length=10)
    courses_other: List[str] = Field(default_factory=list, max_length=10)
    mobile_number: Optional[str] = None
    grade_teach: Optional[str] = None
    years_experience: Optional[float] = Field(default=None, ge=0)
    created_at: datetime


# -----------------
# Requests
# -----------------

class SignUpIn(CamelModel):
    full_name: str = ""
    school: str = ""
    email: str = ""
    password: str = ""
    job_role: Optional[str] = None
    job_role_other: Optional[str] = None
    interested_in_certification: Optional[bool] = None
    training_attended: Optional[bool] = None
    courses_interested: List[str] = Field(default_factory=list)
    courses_other: List[str] = Field(default_factory=list)
    mobile_number: Optional[str] = None
    grade_teach: Optional[str] = None
    years_experience: Optional[float] = None


class SignInIn(CamelModel):
    email: str = ""
    password: str = ""


class TraineeUpdate(CamelModel):
    """Partial profile edit; only fields sent by the client are applied."""
    full_name: Optional[str] = None
    school: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    job_role: Optional[str] = None
    job_role_other: Optional[str] = None
    interested_in_certification: Optional[bool] = None
    training_attended: Optional[bool] = None
    courses_interested: Optional[List[str]] = None
    courses_other: Optional[List[str]] = None
    mobile_number: Optional[str] = None
    grade_teach: Optional[str] = None
    years_experience: Optional[float] = None


# -----------------
# Responses
# -----------------

class TraineeOut(CamelModel):
    id: str
    full_name: str
    school: str
    email: str
    role: str
    job_role: Optional[str] = None
    job_role_other: Optional[str] = None
    interested_in_certification: bool
    training_attended: Optional[bool] = None
    courses_interested: List[str] = Field(default_factory=list)
    courses_other: List[str] = Field(default_factory=list)
    mobile_number: Optional[str] = None
    grade_teach: Optional[str] = None
    years_experience: Optional[float] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "TraineeOut":
        return cls(
            id=str(doc.get("_id")),
            full_name=doc.get("full_name", ""),
            school=doc.get("school", ""),
            email=doc.get("email", ""),
            role=doc.get("role", "trainee"),
            job_role=doc.get("job_role"),
            job_role_other=doc.get("job_role_other"),
            interested_in_certification=bool(doc.get("interested_in_certification", False)),
            training_attended=doc.get("training_attended"),
            courses_interested=doc.get("courses_interested") or [],
            courses_other=doc.get("courses_other") or [],
            mobile_number=doc.get("mobile_number"),
            grade_teach=doc.get("grade_teach"),
            years_experience=doc.get("years_experience"),
            created_at=doc.get("created_at"),
        )


class ImportRowError(CamelModel):
    row_number: Optional[int] = None
    email: Optional[str] = None
    error: str


class ImportResult(CamelModel):
    processed_rows: int = 0
    unique_emails: int = 0
    upserted_count: int = 0
    matched_count: int = 0
    modified_count: int = 0
    error_count: int = 0
    errors: List[ImportRowError] = Field(default_factory=list)


class CourseCount(BaseModel):
    course: str
    count: int


class MonthCount(BaseModel):
    year: int
    month: int
    count: int


class BucketCount(BaseModel):
    bucket: str
    count: int


class CertificationSplit(BaseModel):
    yes: int
    no: int


class DashboardStats(CamelModel):
    total_users: int
    cert: CertificationSplit
    courses: List[CourseCount]
    registrations_over_time: List[MonthCount]
    courses_per_trainee: List[BucketCount]
