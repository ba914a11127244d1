"""Shared fixtures.

The document store is an in-memory mongomock database swapped in through
``database.reset_db`` and Firebase verification is replaced by a lookup that
accepts tokens of the form ``token-<email>``.
"""
from datetime import datetime, timedelta, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient

import auth
import database
import main

TOKEN_PREFIX = "token-"


def fake_verify_token(id_token):
    if id_token.startswith(TOKEN_PREFIX):
        return id_token[len(TOKEN_PREFIX):]
    return None


def auth_header(email):
    return {"Authorization": f"Bearer {TOKEN_PREFIX}{email}"}


@pytest.fixture
def db():
    mongo = mongomock.MongoClient()["BloodDonationAppDB"]
    database.reset_db(mongo)
    database.ensure_indexes()
    yield mongo
    database.reset_db(None)


@pytest.fixture
def verified(monkeypatch):
    calls = []

    def verify(id_token):
        calls.append(id_token)
        return fake_verify_token(id_token)

    monkeypatch.setattr(auth, "verify_token", verify)
    return calls


@pytest.fixture
def client(db, verified):
    return TestClient(main.app)


@pytest.fixture
def make_user(db):
    def _make(email, role="donor", status="active", **fields):
        doc = {"email": email, "name": email.split("@")[0], "role": role, "status": status,
               "createdAt": datetime.now(timezone.utc)}
        doc.update(fields)
        db["user"].insert_one(doc)
        return doc
    return _make


@pytest.fixture
def admin(make_user):
    make_user("admin@x.com", role="admin")
    return auth_header("admin@x.com")


@pytest.fixture
def volunteer(make_user):
    make_user("vol@x.com", role="volunteer")
    return auth_header("vol@x.com")


@pytest.fixture
def make_request(db):
    """Insert donation requests with strictly increasing createdAt."""
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    counter = {"n": 0}

    def _make(requester_email="req@x.com", donation_status="pending", **fields):
        counter["n"] += 1
        doc = {
            "requester_email": requester_email,
            "requester_name": "Req",
            "recipient_name": f"Recipient {counter['n']}",
            "recipient_district": "Dhaka",
            "recipient_upazila": "Savar",
            "hospital_name": "DMCH",
            "blood_group": "A+",
            "donation_date": "2024-02-01",
            "donation_time": "10:00",
            "donation_status": donation_status,
            "createdAt": start + timedelta(minutes=counter["n"]),
        }
        doc.update(fields)
        doc["_id"] = db["request"].insert_one(doc).inserted_id
        return doc
    return _make
