"""
Trainee Portal - Test Configuration and Fixtures
"""
import copy
import os
from typing import Any, Dict, List, Optional

# Set testing environment before the app modules read it
os.environ["DATABASE_URL"] = ""
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["DEFAULT_IMPORT_PASSWORD"] = "Default123!"
os.environ["ENVIRONMENT"] = "development"
os.environ.pop("ADMIN_API_KEY", None)
os.environ["ADMIN_EMAIL"] = ""
os.environ["ADMIN_PASSWORD"] = ""

import pytest
from bson import ObjectId
from bson.errors import InvalidId
from fastapi.testclient import TestClient

from exceptions import DuplicateTraineeError
from main import app, get_store
from store import DUPLICATE_KEY_CODE, BulkUpsertResult, UpsertOperation, WriteFailure


class InMemoryTraineeStore:
    """
    TraineeStore double backed by a dict.

    Follows MongoDB rules the importer depends on: upserts keyed on email,
    $setOnInsert only applied when inserting, unique email and full_name, and
    nModified counting only documents whose values really changed.
    """

    def __init__(self):
        self.docs: Dict[ObjectId, Dict[str, Any]] = {}
        self.bulk_calls: List[List[UpsertOperation]] = []

    def _by_email(self, email: str) -> Optional[Dict[str, Any]]:
        for doc in self.docs.values():
            if doc.get("email") == email:
                return doc
        return None

    def _clash(self, doc: Dict[str, Any]) -> Optional[str]:
        for other in self.docs.values():
            if other["_id"] == doc.get("_id"):
                continue
            if other.get("email") == doc.get("email"):
                return "email"
            if other.get("full_name") == doc.get("full_name"):
                return "full_name"
        return None

    @staticmethod
    def _oid(value: str) -> Optional[ObjectId]:
        try:
            return ObjectId(value)
        except (InvalidId, TypeError):
            return None

    def find_by_email(self, email):
        doc = self._by_email(email)
        return copy.deepcopy(doc) if doc else None

    def find_by_id(self, trainee_id):
        doc = self.docs.get(self._oid(trainee_id))
        return copy.deepcopy(doc) if doc else None

    def create(self, doc):
        doc = dict(doc)
        doc["_id"] = ObjectId()
        field = self._clash(doc)
        if field:
            raise DuplicateTraineeError(field)
        self.docs[doc["_id"]] = doc
        return copy.deepcopy(doc)

    def list_trainees(self, course=None):
        out = [
            {k: v for k, v in doc.items() if k != "password_hash"}
            for doc in self.docs.values()
            if doc.get("role") == "trainee"
            and (not course or course in (doc.get("courses_interested") or []))
        ]
        return sorted(out, key=lambda d: d.get("created_at"), reverse=True)

    def update(self, trainee_id, fields):
        oid = self._oid(trainee_id)
        if oid not in self.docs:
            return None
        updated = {**self.docs[oid], **fields}
        field = self._clash(updated)
        if field:
            raise DuplicateTraineeError(field)
        self.docs[oid] = updated
        return copy.deepcopy(updated)

    def delete(self, trainee_id):
        return self.docs.pop(self._oid(trainee_id), None) is not None

    def bulk_upsert(self, ops):
        self.bulk_calls.append(list(ops))
        inserted = matched = modified = 0
        errors = []
        for index, op in enumerate(ops):
            existing = self._by_email(op.email)
            if existing is not None and existing.get("role") == "admin":
                existing = None
            if existing is None:
                doc = {"_id": ObjectId(), "email": op.email, **op.set_on_insert_fields, **op.set_fields}
                field = self._clash(doc)
                if field:
                    errors.append(WriteFailure(index, DUPLICATE_KEY_CODE, DuplicateTraineeError(field).message))
                    continue
                self.docs[doc["_id"]] = doc
                inserted += 1
                continue

            updated = {**existing, **op.set_fields}
            field = self._clash(updated)
            if field:
                errors.append(WriteFailure(index, DUPLICATE_KEY_CODE, DuplicateTraineeError(field).message))
                continue
            matched += 1
            if updated != existing:
                self.docs[existing["_id"]] = updated
                modified += 1
        return BulkUpsertResult(inserted, matched, modified, errors)


@pytest.fixture
def store() -> InMemoryTraineeStore:
    return InMemoryTraineeStore()


@pytest.fixture
def client(store):
    """Test client with the in-memory store swapped in"""
    app.dependency_overrides[get_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


def make_csv(*lines: str) -> bytes:
    return ("\n".join(lines) + "\n").encode("utf-8")
