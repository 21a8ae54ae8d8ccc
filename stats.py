"""
Admin dashboard aggregations and the CSV export.
"""
import csv
import io
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from schemas import BucketCount, CertificationSplit, CourseCount, DashboardStats, MonthCount
from store import ROLE_TRAINEE, TraineeStore

REGISTRATION_MONTHS = 6
COURSE_BUCKETS = ("0", "1", "2", "3+")

EXPORT_COLUMNS = (
    "fullName",
    "school",
    "interestedInCertification",
    "email",
    "coursesInterested",
    "coursesOther",
    "createdAt",
    "trainingAttended",
    "mobileNumber",
    "gradeTeach",
    "yearsExperience",
)


def _month_window(now: datetime, months: int) -> List[Tuple[int, int]]:
    """(year, month) pairs for the last `months` calendar months, oldest first."""
    year, month = now.year, now.month
    out = []
    for _ in range(months):
        out.append((year, month))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(out))


def courses_pipeline() -> List[Dict[str, Any]]:
    return [
        {"$match": {"role": ROLE_TRAINEE}},
        {"$unwind": "$courses_interested"},
        {"$group": {"_id": "$courses_interested", "count": {"$sum": 1}}},
        {"$sort": {"count": -1, "_id": 1}},
    ]


def registrations_pipeline(since: datetime) -> List[Dict[str, Any]]:
    return [
        {"$match": {"role": ROLE_TRAINEE, "created_at": {"$gte": since}}},
        {"$group": {
            "_id": {"year": {"$year": "$created_at"}, "month": {"$month": "$created_at"}},
            "count": {"$sum": 1},
        }},
        {"$sort": {"_id.year": 1, "_id.month": 1}},
    ]


def courses_per_trainee_pipeline() -> List[Dict[str, Any]]:
    size = {"$size": {"$ifNull": ["$courses_interested", []]}}
    return [
        {"$match": {"role": ROLE_TRAINEE}},
        {"$project": {"n": size}},
        {"$group": {
            "_id": {"$switch": {
                "branches": [
                    {"case": {"$eq": ["$n", 0]}, "then": "0"},
                    {"case": {"$eq": ["$n", 1]}, "then": "1"},
                    {"case": {"$eq": ["$n", 2]}, "then": "2"},
                ],
                "default": "3+",
            }},
            "count": {"$sum": 1},
        }},
    ]


def dashboard_stats(store: TraineeStore, now: Optional[datetime] = None) -> DashboardStats:
    now = now or datetime.now(timezone.utc)
    months = _month_window(now, REGISTRATION_MONTHS)
    first_year, first_month = months[0]
    since = datetime(first_year, first_month, 1, tzinfo=timezone.utc)

    courses = [
        CourseCount(course=str(row["_id"]), count=row["count"])
        for row in store.aggregate(courses_pipeline())
        if row.get("_id")
    ]

    by_month = {
        (row["_id"]["year"], row["_id"]["month"]): row["count"]
        for row in store.aggregate(registrations_pipeline(since))
    }
    registrations = [MonthCount(year=y, month=m, count=by_month.get((y, m), 0)) for y, m in months]

    by_bucket = {row["_id"]: row["count"] for row in store.aggregate(courses_per_trainee_pipeline())}
    buckets = [BucketCount(bucket=b, count=by_bucket.get(b, 0)) for b in COURSE_BUCKETS]

    return DashboardStats(
        total_users=store.count({"role": ROLE_TRAINEE}),
        cert=CertificationSplit(
            yes=store.count({"role": ROLE_TRAINEE, "interested_in_certification": True}),
            no=store.count({"role": ROLE_TRAINEE, "interested_in_certification": False}),
        ),
        courses=courses,
        registrations_over_time=registrations,
        courses_per_trainee=buckets,
    )


def _format_bool(value: Any) -> str:
    if value is None:
        return ""
    return "true" if value else "false"


def _format_date(value: Any) -> str:
    if not isinstance(value, datetime):
        return ""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return f"{value.month}/{value.day}/{value.year} {value.hour:02d}:{value.minute:02d}"


def _format_number(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def export_row(doc: Dict[str, Any]) -> List[str]:
    return [
        doc.get("full_name", ""),
        doc.get("school", ""),
        _format_bool(doc.get("interested_in_certification")),
        doc.get("email", ""),
        ";".join(doc.get("courses_interested") or []),
        ";".join(doc.get("courses_other") or []),
        _format_date(doc.get("created_at")),
        _format_bool(doc.get("training_attended")),
        doc.get("mobile_number") or "",
        doc.get("grade_teach") or "",
        _format_number(doc.get("years_experience")),
    ]


def export_csv(docs: Iterable[Dict[str, Any]]) -> str:
    """Render trainees in the import column layout (no credentials)."""
    output = io.StringIO()
    writer = csv.writer(output, lineterminator="\n")
    writer.writerow(EXPORT_COLUMNS)
    for doc in docs:
        writer.writerow(export_row(doc))
    return output.getvalue()
