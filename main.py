import logging
import re
import secrets
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, File, Header, Query, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pymongo.errors import PyMongoError

import config
import database
from exceptions import (
    AdminAccessError,
    DuplicateTraineeError,
    ImportRejectedError,
    NotFoundError,
    TraineePortalError,
    ValidationFailed,
)
from importer import import_trainees_csv
from logging_config import setup_logging
from parsing import LIST_SEPARATOR_RE, clean_text, is_valid_email, normalize_email, normalize_list
from schemas import (
    DashboardStats,
    ImportResult,
    SignInIn,
    SignUpIn,
    Trainee,
    TraineeOut,
    TraineeUpdate,
)
from security import get_password_hash, verify_password
from stats import dashboard_stats, export_csv
from store import ROLE_ADMIN, ROLE_TRAINEE, TraineeStore

setup_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="Trainee Portal API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(TraineePortalError)
async def portal_error_handler(request: Request, exc: TraineePortalError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


# -----------------
# Utility functions
# -----------------

NAME_RE = re.compile(r"^[A-Za-z\s]+$")
PASSWORD_RULE_RE = re.compile(r"(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[^A-Za-z0-9])")
MAX_NAME_LENGTH = 100
MAX_COURSES = 10
MAX_JOB_ROLE_OTHER_LENGTH = 50
JOB_ROLES = (
    "Business Analyst",
    "Implementation Consultant",
    "System Developer",
    "Quality Assurance",
    "Other",
)


def get_store() -> TraineeStore:
    return TraineeStore(database.collection(database.TRAINEE_COLLECTION))


def require_admin(x_admin_key: Optional[str] = Header(default=None)) -> None:
    """Guard admin routes with the shared ADMIN_API_KEY.

    Without a configured key the routes stay closed, except in development.
    """
    if not config.ADMIN_API_KEY:
        if config.ENVIRONMENT == "development":
            return
        raise TraineePortalError("Admin access is not configured", status_code=503)
    if not x_admin_key:
        raise TraineePortalError("No admin key provided", status_code=401)
    if not secrets.compare_digest(x_admin_key, config.ADMIN_API_KEY):
        raise AdminAccessError("Admin only")


def check_full_name(value: Optional[str]) -> str:
    name = (value or "").strip()
    if not name:
        raise ValidationFailed("Full name is required.")
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationFailed("Full name must be 100 characters or fewer.")
    if not NAME_RE.match(name):
        raise ValidationFailed("Full name may only contain letters and spaces.")
    return name


def check_school(value: Optional[str]) -> str:
    school = (value or "").strip()
    if not school:
        raise ValidationFailed("School / Institution is required.")
    if len(school) > MAX_NAME_LENGTH:
        raise ValidationFailed("School / Institution must be 100 characters or fewer.")
    return school


def check_email(value: Optional[str]) -> str:
    email = normalize_email(value or "")
    if not is_valid_email(email):
        raise ValidationFailed("A valid email address is required.")
    return email


def check_password(value: Optional[str]) -> str:
    if not value:
        raise ValidationFailed("Password is required.")
    if len(value) < 8 or len(value) > 128:
        raise ValidationFailed("Password must be between 8 and 128 characters.")
    if not PASSWORD_RULE_RE.match(value):
        raise ValidationFailed("Password must include upper and lower case letters, a number, and a symbol.")
    return value


def check_job_role(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    role = value.strip()
    if role not in JOB_ROLES:
        raise ValidationFailed("Invalid role value.")
    return role


def check_job_role_other(value: Optional[str]) -> Optional[str]:
    other = clean_text(value)
    if len(other) > MAX_JOB_ROLE_OTHER_LENGTH:
        raise ValidationFailed("Other role must be 50 characters or fewer.")
    return other or None


def check_courses(values: Optional[List[str]], label: str) -> List[str]:
    items = normalize_list(values or [])
    if len(items) > MAX_COURSES:
        raise ValidationFailed(f"Invalid {label} value.")
    # separators would split the entry on CSV re-import
    if any(LIST_SEPARATOR_RE.search(item) for item in items):
        raise ValidationFailed(f"{label} entries may not contain ',', ';' or '|'.")
    return items


def check_years(value: Optional[float]) -> Optional[float]:
    if value is not None and value < 0:
        raise ValidationFailed("Years of experience must not be negative.")
    return value


def profile_changes(payload: TraineeUpdate) -> Dict[str, Any]:
    """Validate the fields an edit actually sent and map them to document fields."""
    sent = payload.model_dump(exclude_unset=True)
    changes: Dict[str, Any] = {}
    if "full_name" in sent:
        changes["full_name"] = check_full_name(sent["full_name"])
    if "school" in sent:
        changes["school"] = check_school(sent["school"])
    if "email" in sent:
        changes["email"] = check_email(sent["email"])
    if sent.get("password"):
        changes["password_hash"] = get_password_hash(check_password(sent["password"]))
    if "job_role" in sent:
        changes["job_role"] = check_job_role(sent["job_role"])
    if "job_role_other" in sent:
        changes["job_role_other"] = check_job_role_other(sent["job_role_other"])
    if sent.get("interested_in_certification") is not None:
        changes["interested_in_certification"] = sent["interested_in_certification"]
    if "training_attended" in sent:
        changes["training_attended"] = sent["training_attended"]
    if "courses_interested" in sent:
        changes["courses_interested"] = check_courses(sent["courses_interested"], "coursesInterested")
    if "courses_other" in sent:
        changes["courses_other"] = check_courses(sent["courses_other"], "coursesOther")
    for field in ("mobile_number", "grade_teach"):
        if field in sent:
            changes[field] = clean_text(sent[field])
    if "years_experience" in sent:
        changes["years_experience"] = check_years(sent["years_experience"])
    return changes


def seed_admin() -> None:
    """Create the configured admin account if it does not exist yet"""
    if not (config.ADMIN_EMAIL and config.ADMIN_PASSWORD):
        return
    store = get_store()
    email = normalize_email(config.ADMIN_EMAIL)
    if store.find_by_email(email):
        logger.info("Admin already exists: %s", email)
        return
    account = Trainee(
        full_name="Admin",
        school="N/A",
        email=email,
        password_hash=get_password_hash(config.ADMIN_PASSWORD),
        role=ROLE_ADMIN,
        interested_in_certification=False,
        created_at=datetime.now(timezone.utc),
    )
    store.create(account.model_dump())
    logger.info("Admin created: %s", email)


@app.on_event("startup")
def on_startup():
    if database.db is None:
        logger.warning("DATABASE_URL not set; running without a database")
        return
    try:
        database.ensure_indexes()
        seed_admin()
    except (PyMongoError, TraineePortalError):
        logger.exception("Database initialisation failed")


# -----------------
# Basic routes
# -----------------

@app.get("/")
def read_root():
    return {"message": "Trainee Portal API Running"}


@app.get("/api/health")
def health():
    response = {
        "ok": False,
        "backend": "running",
        "database": "not configured",
        "databaseName": None,
    }
    if database.db is None:
        return response

    response["databaseName"] = database.db.name
    try:
        database.db.command("ping")
        response["ok"] = True
        response["database"] = "connected"
    except PyMongoError as e:
        response["database"] = f"error: {str(e)[:50]}"
    return response


# -----------------
# Auth
# -----------------

@app.post("/api/auth/signup", response_model=TraineeOut, status_code=201)
def sign_up(payload: SignUpIn, store: TraineeStore = Depends(get_store)):
    name = check_full_name(payload.full_name)
    school = check_school(payload.school)
    email = check_email(payload.email)
    password = check_password(payload.password)
    job_role = check_job_role(payload.job_role)
    job_role_other = check_job_role_other(payload.job_role_other) if job_role == "Other" else None
    if payload.interested_in_certification is None:
        raise ValidationFailed("Please indicate interest in certification.")
    courses = check_courses(payload.courses_interested, "coursesInterested")
    courses_other = check_courses(payload.courses_other, "coursesOther")
    years = check_years(payload.years_experience)

    if store.find_by_email(email):
        raise DuplicateTraineeError("email")

    trainee = Trainee(
        full_name=name,
        school=school,
        email=email,
        password_hash=get_password_hash(password),
        role=ROLE_TRAINEE,
        job_role=job_role,
        job_role_other=job_role_other,
        interested_in_certification=payload.interested_in_certification,
        training_attended=payload.training_attended is True,
        courses_interested=courses,
        courses_other=courses_other,
        mobile_number=clean_text(payload.mobile_number),
        grade_teach=clean_text(payload.grade_teach),
        years_experience=years,
        created_at=datetime.now(timezone.utc),
    )
    created = store.create(trainee.model_dump())
    logger.info("Trainee signed up: %s", created["_id"])
    return TraineeOut.from_document(created)


@app.post("/api/auth/signin", response_model=TraineeOut)
def sign_in(payload: SignInIn, store: TraineeStore = Depends(get_store)):
    user = store.find_by_email(normalize_email(payload.email))
    if not user or not verify_password(payload.password, user.get("password_hash", "")):
        raise ValidationFailed("Invalid credentials")
    return TraineeOut.from_document(user)


# -----------------
# Admin
# -----------------

admin = APIRouter(prefix="/api/admin", dependencies=[Depends(require_admin)])


@admin.get("/stats", response_model=DashboardStats)
def get_stats(store: TraineeStore = Depends(get_store)):
    return dashboard_stats(store)


@admin.get("/users", response_model=List[TraineeOut])
def list_users(store: TraineeStore = Depends(get_store)):
    return [TraineeOut.from_document(doc) for doc in store.list_trainees()]


@admin.get("/courses/enrolled", response_model=List[TraineeOut])
def enrolled_in_course(course: str = Query(..., min_length=1), store: TraineeStore = Depends(get_store)):
    return [TraineeOut.from_document(doc) for doc in store.list_trainees(course=course)]


@admin.post("/users/import-csv", response_model=ImportResult)
def import_users_csv(file: Optional[UploadFile] = File(default=None), store: TraineeStore = Depends(get_store)):
    if file is None:
        raise ImportRejectedError("No file uploaded")
    # one byte over the ceiling is enough to reject
    payload = file.file.read(config.MAX_IMPORT_BYTES + 1)
    logger.info("CSV import started: %s (%d bytes)", file.filename, len(payload))
    return import_trainees_csv(payload, store)


@admin.get("/users/export-csv")
def export_users_csv(store: TraineeStore = Depends(get_store)):
    content = export_csv(store.list_trainees())
    return Response(
        content=content,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": 'attachment; filename="trainees.csv"'},
    )


@admin.get("/users/{user_id}", response_model=TraineeOut)
def get_user(user_id: str, store: TraineeStore = Depends(get_store)):
    doc = store.find_by_id(user_id)
    if not doc:
        raise NotFoundError("User not found")
    return TraineeOut.from_document(doc)


@admin.put("/users/{user_id}", response_model=TraineeOut)
def update_user(user_id: str, payload: TraineeUpdate, store: TraineeStore = Depends(get_store)):
    doc = store.update(user_id, profile_changes(payload))
    if not doc:
        raise NotFoundError("User not found")
    logger.info("Trainee updated: %s", user_id)
    return TraineeOut.from_document(doc)


@admin.delete("/users/{user_id}")
def delete_user(user_id: str, store: TraineeStore = Depends(get_store)):
    if not store.delete(user_id):
        raise NotFoundError("User not found")
    logger.info("Trainee deleted: %s", user_id)
    return {"msg": "User deleted"}


app.include_router(admin)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
