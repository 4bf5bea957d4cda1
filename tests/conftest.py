import copy
from types import SimpleNamespace

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from credentials import CredentialService
from main import app, get_credential_service, get_review_service
from notifications import NotificationError
from reviews import ReviewService
from schemas import Product

TEST_SECRET = "test-secret"


def _matches(doc, flt):
    for key, cond in flt.items():
        if key == "$or":
            if not any(_matches(doc, sub) for sub in cond):
                return False
            continue
        value = doc.get(key)
        if isinstance(cond, dict) and "$in" in cond:
            if value not in cond["$in"]:
                return False
        elif value != cond:
            return False
    return True


class FakeCursor(list):
    def sort(self, keys):
        for field, direction in reversed(keys):
            super().sort(key=lambda d: d.get(field), reverse=direction < 0)
        return self


class FakeCollection:
    """Just enough of a pymongo collection for the services under test."""

    def __init__(self):
        self.docs = []

    def create_index(self, *args, **kwargs):
        return "ok"

    def insert_one(self, doc):
        stored = copy.deepcopy(doc)
        stored.setdefault("_id", ObjectId())
        self.docs.append(stored)
        return SimpleNamespace(inserted_id=stored["_id"])

    def find_one(self, flt=None):
        for doc in self.docs:
            if _matches(doc, flt or {}):
                return copy.deepcopy(doc)
        return None

    def find(self, flt=None):
        return FakeCursor(copy.deepcopy(d) for d in self.docs if _matches(d, flt or {}))

    def update_one(self, flt, update):
        for doc in self.docs:
            if _matches(doc, flt):
                doc.update(update.get("$set", {}))
                return SimpleNamespace(matched_count=1, modified_count=1)
        return SimpleNamespace(matched_count=0, modified_count=0)

    def delete_one(self, flt):
        for i, doc in enumerate(self.docs):
            if _matches(doc, flt):
                del self.docs[i]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    def delete_many(self, flt):
        keep = [d for d in self.docs if not _matches(d, flt)]
        removed = len(self.docs) - len(keep)
        self.docs = keep
        return SimpleNamespace(deleted_count=removed)


class FakeDatabase(dict):
    def __missing__(self, name):
        self[name] = FakeCollection()
        return self[name]


class RecordingNotifier:
    def __init__(self):
        self.sent = []
        self.fail = False
        self.configured = True

    def send(self, to, subject, text):
        if self.fail:
            raise NotificationError("delivery failed")
        self.sent.append({"to": to, "subject": subject, "text": text})
        return "msg-%d" % len(self.sent)


@pytest.fixture
def fake_db():
    return FakeDatabase()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def credentials(fake_db, notifier):
    return CredentialService(fake_db, notifier, secret_key=TEST_SECRET)


@pytest.fixture
def review_service(fake_db):
    return ReviewService(fake_db)


@pytest.fixture
def client(fake_db, notifier):
    app.dependency_overrides[get_credential_service] = lambda: CredentialService(fake_db, notifier, secret_key=TEST_SECRET)
    app.dependency_overrides[get_review_service] = lambda: ReviewService(fake_db)
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


@pytest.fixture
def product_factory(fake_db):
    def make(seller_id=None, title="Rice cooker"):
        doc = Product(seller_id=str(seller_id or ObjectId()), title=title, price=49.0).model_dump()
        return str(fake_db["product"].insert_one(doc).inserted_id)
    return make
