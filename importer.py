"""
CSV Trainee Importer.

Turns an uploaded CSV into one unordered batch of upserts keyed on the
normalized email, and reports per-row what happened:

    header check -> row parse -> email check + last-row-wins de-duplication
    -> per-row validation -> upsert build -> bulk_upsert -> ImportResult

Header problems and malformed CSV reject the whole request before any write.
Everything that can be pinned on a single row is collected as a row error and
the rest of the file still imports.
"""
import csv
import io
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, NamedTuple, Optional, Tuple, Union

import config
from exceptions import ImportRejectedError
from parsing import (
    Cell,
    Invalid,
    is_valid_email,
    normalize_email,
    parse_bool,
    parse_date,
    parse_number,
    read_cell,
    split_list,
)
from schemas import ImportResult, ImportRowError
from security import get_password_hash
from store import ROLE_TRAINEE, TraineeStore, UpsertOperation

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("fullName", "school", "interestedInCertification", "email")
OPTIONAL_COLUMNS = (
    "coursesInterested",
    "coursesOther",
    "password",
    "createdAt",
    "trainingAttended",
    "mobileNumber",
    "gradeTeach",
    "yearsExperience",
)
MAX_LIST_ENTRIES = 10
INVALID_EMAIL = "email is required and must be valid"

# list columns -> document field
_LIST_FIELDS = (("coursesInterested", "courses_interested"), ("coursesOther", "courses_other"))
# free-text columns -> document field
_TEXT_FIELDS = (("mobileNumber", "mobile_number"), ("gradeTeach", "grade_teach"))


class CsvRow(NamedTuple):
    row_number: int
    record: Dict[str, str]


def _decode(payload: bytes) -> str:
    try:
        return payload.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ImportRejectedError(f"CSV parse error: file is not valid UTF-8 ({exc.reason})")


def read_csv(text: str) -> Tuple[List[str], List[CsvRow]]:
    """
    Split CSV text into its header and data rows.

    Row numbers are line numbers in the file (header = 1). Missing trailing
    cells are left out of a row's record so they read as absent; blank lines
    are skipped.
    """
    reader = csv.reader(io.StringIO(text, newline=""), strict=True)
    try:
        first = next(reader, None)
    except csv.Error as exc:
        raise ImportRejectedError(f"CSV parse error: {exc}")

    header = [cell.strip() for cell in (first or [])]
    if not any(header):
        raise ImportRejectedError("CSV header is empty")

    missing = [col for col in REQUIRED_COLUMNS if col not in header]
    if missing:
        raise ImportRejectedError(
            f"Missing required columns: {', '.join(missing)}",
            details={"missingColumns": missing},
        )

    rows: List[CsvRow] = []
    try:
        for cells in reader:
            if not any(cell.strip() for cell in cells):
                continue
            extra = cells[len(header):]
            if any(cell.strip() for cell in extra):
                raise ImportRejectedError(
                    f"CSV parse error: line {reader.line_num} has {len(cells)} fields "
                    f"but the header has {len(header)}"
                )
            record = {name: value for name, value in zip(header, cells) if name}
            rows.append(CsvRow(reader.line_num, record))
    except csv.Error as exc:
        raise ImportRejectedError(f"CSV parse error at line {reader.line_num}: {exc}")

    return header, rows


def _latest_row_per_email(rows: List[CsvRow]) -> Tuple[Dict[str, CsvRow], List[ImportRowError]]:
    """
    Keep the last row for each normalized email.

    The email is checked before de-duplication: rows with a blank or malformed
    email have no key, so each one is reported on its own line and none of them
    counts towards uniqueEmails.
    """
    latest: Dict[str, CsvRow] = {}
    errors: List[ImportRowError] = []
    for row in rows:
        email = normalize_email(row.record.get("email", ""))
        if not is_valid_email(email):
            errors.append(ImportRowError(row_number=row.row_number, email=email or None, error=INVALID_EMAIL))
            continue
        latest[email] = row
    return latest, errors


def build_upsert(
    row: CsvRow,
    email: str,
    now: datetime,
    default_password_hash: Callable[[], str],
) -> Union[UpsertOperation, Invalid]:
    """Validate one winning row and turn it into an upsert, or say why not."""
    record = row.record

    full_name = read_cell(record, "fullName")
    if not full_name.has_value:
        return Invalid("fullName is required")

    school = read_cell(record, "school")
    if not school.has_value:
        return Invalid("school is required")

    certification = parse_bool(read_cell(record, "interestedInCertification").text)
    if isinstance(certification, Invalid):
        return Invalid("interestedInCertification must be true/false/yes/no/1/0")

    set_fields = {
        "full_name": full_name.text,
        "school": school.text,
        "interested_in_certification": certification.value,
        "role": ROLE_TRAINEE,
    }
    set_on_insert = {"email": email, "created_at": now}

    training = read_cell(record, "trainingAttended")
    if training.has_value:
        parsed = parse_bool(training.text)
        if isinstance(parsed, Invalid):
            return Invalid("trainingAttended must be true/false/yes/no/1/0")
        set_fields["training_attended"] = parsed.value

    years = read_cell(record, "yearsExperience")
    if years.has_value:
        parsed = parse_number(years.text)
        if isinstance(parsed, Invalid):
            return Invalid("yearsExperience must contain a number")
        if parsed.value < 0:
            return Invalid("yearsExperience must not be negative")
        set_fields["years_experience"] = parsed.value

    created = read_cell(record, "createdAt")
    if created.has_value:
        parsed = parse_date(created.text)
        if isinstance(parsed, Invalid):
            return Invalid("createdAt must be M/D/YYYY, M/D/YYYY HH:mm or an ISO date")
        set_on_insert["created_at"] = parsed.value

    for column, field in _LIST_FIELDS:
        cell: Cell = read_cell(record, column)
        if not cell.present:
            continue
        items = split_list(cell.text)
        if len(items) > MAX_LIST_ENTRIES:
            return Invalid(f"{column} allows at most {MAX_LIST_ENTRIES} entries")
        set_fields[field] = items

    for column, field in _TEXT_FIELDS:
        cell = read_cell(record, column)
        if cell.has_value:
            set_fields[field] = cell.text

    password = read_cell(record, "password")
    if password.has_value:
        # explicit password rotates existing credentials too
        set_fields["password_hash"] = get_password_hash(password.text)
    else:
        set_on_insert["password_hash"] = default_password_hash()

    return UpsertOperation(email, set_fields, set_on_insert)


def _result(
    processed: int,
    unique: int,
    errors: List[ImportRowError],
    inserted: int = 0,
    matched: int = 0,
    modified: int = 0,
) -> ImportResult:
    errors = sorted(errors, key=lambda e: (e.row_number is None, e.row_number or 0))
    return ImportResult(
        processed_rows=processed,
        unique_emails=unique,
        upserted_count=inserted,
        matched_count=matched,
        modified_count=modified,
        error_count=len(errors),
        errors=errors,
    )


def import_trainees_csv(payload: bytes, store: TraineeStore, now: Optional[datetime] = None) -> ImportResult:
    """
    Import trainees from CSV bytes.

    Raises ImportRejectedError when nothing may be written (bad size, header or
    CSV syntax, or no valid rows) and StoreUnavailableError when the batch
    fails as a whole.
    """
    if not payload:
        raise ImportRejectedError("Uploaded file is empty")
    if len(payload) > config.MAX_IMPORT_BYTES:
        raise ImportRejectedError(
            f"File too large; the limit is {config.MAX_IMPORT_BYTES} bytes",
            status_code=413,
        )

    now = now or datetime.now(timezone.utc)
    _, rows = read_csv(_decode(payload))
    latest, errors = _latest_row_per_email(rows)

    hashed_default: List[str] = []

    def default_password_hash() -> str:
        # one salt per request keeps large imports fast
        if not hashed_default:
            hashed_default.append(get_password_hash(config.DEFAULT_IMPORT_PASSWORD))
        return hashed_default[0]

    ops: List[UpsertOperation] = []
    origins: List[CsvRow] = []
    for email, row in sorted(latest.items(), key=lambda item: item[1].row_number):
        outcome = build_upsert(row, email, now, default_password_hash)
        if isinstance(outcome, Invalid):
            errors.append(ImportRowError(row_number=row.row_number, email=email, error=outcome.reason))
            continue
        ops.append(outcome)
        origins.append(row)

    if not ops:
        result = _result(len(rows), len(latest), errors)
        logger.info("CSV import rejected: %d rows, none valid", len(rows))
        raise ImportRejectedError("No valid rows to import", details=result.model_dump(by_alias=True))

    outcome = store.bulk_upsert(ops)
    for failure in outcome.errors:
        if 0 <= failure.index < len(ops):
            row_number: Optional[int] = origins[failure.index].row_number
            email: Optional[str] = ops[failure.index].email
        else:
            row_number, email = None, None
        errors.append(ImportRowError(row_number=row_number, email=email, error=failure.message))

    result = _result(len(rows), len(latest), errors, outcome.inserted, outcome.matched, outcome.modified)
    logger.info(
        "CSV import: %d rows, %d emails, %d inserted, %d matched, %d modified, %d errors",
        result.processed_rows,
        result.unique_emails,
        result.upserted_count,
        result.matched_count,
        result.modified_count,
        result.error_count,
    )
    for err in result.errors:
        logger.debug("CSV import row %s (%s): %s", err.row_number, err.email, err.error)
    return result
