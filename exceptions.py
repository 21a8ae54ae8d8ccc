"""
Application exceptions.

Each carries the HTTP status it should surface as; main.py renders them as
{"msg": message, **details}.
"""
from typing import Any, Dict, Optional


class TraineePortalError(Exception):
    """Base exception for all portal errors"""

    status_code = 500

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"msg": self.message, **self.details}


class ImportRejectedError(TraineePortalError):
    """The whole CSV import was refused; nothing was written."""

    status_code = 400


class ValidationFailed(TraineePortalError):
    status_code = 400


class DuplicateTraineeError(TraineePortalError):
    """A unique index (email or full name) rejected the write."""

    status_code = 400

    def __init__(self, field: str):
        self.field = field
        label = "full name" if field == "full_name" else "email"
        super().__init__(f"This {label} is already registered.")


class NotFoundError(TraineePortalError):
    status_code = 404


class AdminAccessError(TraineePortalError):
    status_code = 403


class StoreUnavailableError(TraineePortalError):
    """The database could not be reached or failed without per-row detail."""

    status_code = 500

    def __init__(self, message: str = "Server error"):
        super().__init__(message)
