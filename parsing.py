"""
Tolerant parsers for human-edited CSV cells.

Every parser returns either Ok(value) or Invalid(reason); callers check with
isinstance instead of treating None as failure.
"""
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Union

from dateutil import parser as date_parser

EMAIL_RE = re.compile(r"^\S+@\S+\.\S+$")

_TRUE_WORDS = {"true", "yes", "1"}
_FALSE_WORDS = {"false", "no", "0"}

_NUMBER_RE = re.compile(r"[-+]?(?:\d+(?:\.\d*)?|\.\d+)")
_US_DATE_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})(?:\s+(\d{1,2}):(\d{2}))?$")
LIST_SEPARATOR_RE = re.compile(r"[;|,]")
_WHITESPACE_RE = re.compile(r"\s+")


class Ok(NamedTuple):
    value: Any


class Invalid(NamedTuple):
    reason: str


Parsed = Union[Ok, Invalid]


class CellState(Enum):
    ABSENT = "absent"
    EMPTY = "empty"
    VALUE = "value"


class Cell(NamedTuple):
    """A CSV cell: missing from the row, present but blank, or carrying text."""

    state: CellState
    text: str = ""

    @property
    def present(self) -> bool:
        return self.state is not CellState.ABSENT

    @property
    def has_value(self) -> bool:
        return self.state is CellState.VALUE


def read_cell(record: Dict[str, str], column: str) -> Cell:
    if column not in record:
        return Cell(CellState.ABSENT)
    text = (record[column] or "").strip()
    if not text:
        return Cell(CellState.EMPTY)
    return Cell(CellState.VALUE, text)


def normalize_email(value: str) -> str:
    return (value or "").strip().lower()


def is_valid_email(value: str) -> bool:
    return bool(value) and EMAIL_RE.match(value) is not None


def parse_bool(text: str) -> Parsed:
    """Accept true/false/yes/no/1/0 in any case."""
    word = (text or "").strip().lower()
    if word in _TRUE_WORDS:
        return Ok(True)
    if word in _FALSE_WORDS:
        return Ok(False)
    return Invalid(f"'{text}' is not a recognised yes/no value")


def parse_number(text: str) -> Parsed:
    """Pull the first numeric token out of free text, e.g. '5 years' -> 5."""
    match = _NUMBER_RE.search(text or "")
    if not match:
        return Invalid(f"'{text}' does not contain a number")
    token = match.group(0)
    number = float(token)
    if number.is_integer() and "." not in token:
        return Ok(int(number))
    return Ok(number)


def parse_date(text: str) -> Parsed:
    """
    Parse M/D/YYYY or M/D/YYYY HH:mm (24-hour), falling back to dateutil for
    anything else. Naive results are taken as UTC.
    """
    value = (text or "").strip()
    match = _US_DATE_RE.match(value)
    if match:
        month, day, year, hour, minute = match.groups()
        try:
            parsed = datetime(
                int(year), int(month), int(day),
                int(hour or 0), int(minute or 0),
                tzinfo=timezone.utc,
            )
        except ValueError:
            return Invalid(f"'{text}' is not a valid date")
        return Ok(parsed)

    try:
        parsed = date_parser.parse(value)
    except (ValueError, OverflowError):
        return Invalid(f"'{text}' is not a valid date")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return Ok(parsed.astimezone(timezone.utc))


def clean_text(value: Any) -> str:
    """Trim and collapse internal runs of whitespace."""
    return _WHITESPACE_RE.sub(" ", str(value if value is not None else "")).strip()


def normalize_list(values: List[Any]) -> List[str]:
    return [item for item in (clean_text(v) for v in values) if item]


def split_list(text: str) -> List[str]:
    """Split on ; | or , and drop empty tokens: 'A; B ,C' -> ['A', 'B', 'C']."""
    if not text:
        return []
    return normalize_list(LIST_SEPARATOR_RE.split(text))
