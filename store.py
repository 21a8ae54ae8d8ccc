"""
Trainee Record Store: the pymongo-backed persistence layer for trainee accounts.

Documents are keyed by a unique `email`; `full_name` carries a second unique index.
Driver errors are translated here so the HTTP layer only sees application exceptions.
"""
import functools
import logging
from typing import Any, Dict, List, NamedTuple, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import DESCENDING, ReturnDocument, UpdateOne
from pymongo.errors import BulkWriteError, DuplicateKeyError, PyMongoError

from exceptions import DuplicateTraineeError, StoreUnavailableError

logger = logging.getLogger(__name__)

DUPLICATE_KEY_CODE = 11000

ROLE_TRAINEE = "trainee"
ROLE_ADMIN = "admin"


class UpsertOperation(NamedTuple):
    email: str
    set_fields: Dict[str, Any]
    set_on_insert_fields: Dict[str, Any]


class WriteFailure(NamedTuple):
    index: int
    code: Optional[int]
    message: str


class BulkUpsertResult(NamedTuple):
    inserted: int
    matched: int
    modified: int
    errors: List[WriteFailure]


def duplicate_field(details: Optional[Dict[str, Any]]) -> str:
    """Name the unique field a duplicate-key error tripped on."""
    details = details or {}
    key_pattern = details.get("keyPattern") or details.get("keyValue") or {}
    if "full_name" in key_pattern or "full_name" in str(details.get("errmsg", "")):
        return "full_name"
    return "email"


def _write_error_message(error: Dict[str, Any]) -> str:
    if error.get("code") == DUPLICATE_KEY_CODE:
        if duplicate_field(error) == "full_name":
            return "This full name is already registered."
        return "This email is already registered."
    return error.get("errmsg") or "Write failed"


def _object_id(value: str) -> Optional[ObjectId]:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def _guarded(func):
    @functools.wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except DuplicateKeyError as exc:
            raise DuplicateTraineeError(duplicate_field(exc.details)) from exc
        except PyMongoError as exc:
            logger.exception("Trainee store %s failed", func.__name__)
            raise StoreUnavailableError() from exc
    return wrapper


class TraineeStore:
    def __init__(self, collection):
        self.collection = collection

    @_guarded
    def find_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return self.collection.find_one({"email": email})

    @_guarded
    def find_by_id(self, trainee_id: str) -> Optional[Dict[str, Any]]:
        oid = _object_id(trainee_id)
        if oid is None:
            return None
        return self.collection.find_one({"_id": oid})

    @_guarded
    def create(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        doc = dict(doc)
        res = self.collection.insert_one(doc)
        doc["_id"] = res.inserted_id
        return doc

    @_guarded
    def list_trainees(self, course: Optional[str] = None) -> List[Dict[str, Any]]:
        filt: Dict[str, Any] = {"role": ROLE_TRAINEE}
        if course:
            filt["courses_interested"] = course
        cursor = self.collection.find(filt, {"password_hash": 0}).sort("created_at", DESCENDING)
        return list(cursor)

    @_guarded
    def update(self, trainee_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        oid = _object_id(trainee_id)
        if oid is None:
            return None
        if not fields:
            return self.collection.find_one({"_id": oid})
        return self.collection.find_one_and_update(
            {"_id": oid},
            {"$set": fields},
            return_document=ReturnDocument.AFTER,
        )

    @_guarded
    def delete(self, trainee_id: str) -> bool:
        oid = _object_id(trainee_id)
        if oid is None:
            return False
        return self.collection.delete_one({"_id": oid}).deleted_count == 1

    @_guarded
    def count(self, filt: Dict[str, Any]) -> int:
        return self.collection.count_documents(filt)

    @_guarded
    def aggregate(self, pipeline: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return list(self.collection.aggregate(pipeline))

    @_guarded
    def bulk_upsert(self, ops: List[UpsertOperation]) -> BulkUpsertResult:
        """
        Apply all upserts as one unordered batch.

        Per-operation write errors come back as WriteFailure entries indexed by
        position in `ops`; the rest of the batch still commits. A failure that
        carries no per-operation detail raises StoreUnavailableError.
        """
        if not ops:
            return BulkUpsertResult(0, 0, 0, [])

        requests = []
        for op in ops:
            update: Dict[str, Any] = {"$set": op.set_fields}
            if op.set_on_insert_fields:
                update["$setOnInsert"] = op.set_on_insert_fields
            # admin accounts never match, so their email surfaces as a duplicate key
            filt = {"email": op.email, "role": {"$ne": ROLE_ADMIN}}
            requests.append(UpdateOne(filt, update, upsert=True))

        try:
            res = self.collection.bulk_write(requests, ordered=False)
        except BulkWriteError as exc:
            details = exc.details or {}
            write_errors = details.get("writeErrors") or []
            if not write_errors:
                logger.error("Bulk upsert failed without per-operation errors: %s", details)
                raise StoreUnavailableError() from exc
            failures = [
                WriteFailure(err.get("index", -1), err.get("code"), _write_error_message(err))
                for err in write_errors
            ]
            return BulkUpsertResult(
                details.get("nUpserted", 0),
                details.get("nMatched", 0),
                details.get("nModified", 0),
                failures,
            )

        return BulkUpsertResult(res.upserted_count, res.matched_count, res.modified_count, [])
