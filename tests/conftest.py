"""
Shared fixtures: an in-memory MongoDB (mongomock) wired into the app through
the `get_db` dependency, plus small factories for seeding documents.
"""

import mongomock
import pytest
from fastapi.testclient import TestClient

from database import create_document, ensure_indexes, get_db
from main import app


@pytest.fixture
def db():
    database = mongomock.MongoClient()["assetverse_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_hr(db):
    def _make(email="hr@acme.com", company="Acme", limit=5):
        create_document(db, "user", {
            "name": "HR Manager",
            "email": email,
            "role": "hr",
            "company_name": company,
            "package": "basic",
            "package_limit": limit,
        })
        return db["user"].find_one({"email": email})
    return _make


@pytest.fixture
def make_employee(db):
    def _make(email="emp@acme.com", name="Employee"):
        create_document(db, "user", {"name": name, "email": email, "role": "employee"})
        return db["user"].find_one({"email": email})
    return _make


@pytest.fixture
def make_asset(db):
    def _make(name="laptop", quantity=5, type="returnable"):
        return create_document(db, "asset", {"name": name, "quantity": quantity, "type": type})
    return _make


@pytest.fixture
def laptop(make_asset):
    return make_asset()
