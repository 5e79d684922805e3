"""
HTTP surface tests through FastAPI's TestClient.
"""

import mongomock
import pytest
from fastapi.testclient import TestClient

import users
from database import get_db
from main import app
from tests.helpers import asset_quantity


@pytest.fixture
def seeded(client, make_hr, make_employee, laptop):
    make_hr(limit=5)
    make_employee()
    return laptop


def create_request(client, asset_id, quantity=2, email="emp@acme.com"):
    response = client.post("/asset_requests", json={
        "assetId": asset_id,
        "quantity": quantity,
        "userName": "Employee",
        "email": email,
        "reason": "new hire",
    })
    assert response.status_code == 201
    return response.json()["inserted_id"]


def approve_body(asset_id, quantity=2):
    return {
        "hrEmail": "hr@acme.com",
        "employeeEmail": "emp@acme.com",
        "assetId": asset_id,
        "quantityNeeded": quantity,
    }


def test_root(client):
    assert client.get("/").json() == {"message": "AssetVerse Backend Running"}


def test_full_lifecycle(client, db, seeded):
    request_id = create_request(client, seeded)

    response = client.put(f"/asset_requests/{request_id}/approve", json=approve_body(seeded))
    assert response.status_code == 200
    assert response.json()["success"] is True
    assert asset_quantity(db, seeded) == 3

    response = client.put(f"/asset_requests/{request_id}/return")
    assert response.json()["success"] is True
    assert asset_quantity(db, seeded) == 5

    response = client.put(f"/asset_requests/{request_id}/return")
    assert response.status_code == 200
    assert response.json()["already_returned"] is True
    assert asset_quantity(db, seeded) == 5


def test_create_request_unknown_asset(client):
    response = client.post("/asset_requests", json={
        "assetId": "5f1d7f5b9d3e2a1b2c3d4e5f",
        "quantity": 1,
        "userName": "Employee",
        "email": "emp@acme.com",
    })
    assert response.status_code == 400
    assert response.json() == {"success": False, "message": "Asset not found"}


def test_approve_at_capacity_is_forbidden(client, db, make_hr, make_employee, laptop):
    make_hr(limit=1)
    make_employee()
    make_employee(email="other@acme.com")
    first = create_request(client, laptop, quantity=1)
    client.put(f"/asset_requests/{first}/approve", json=approve_body(laptop, quantity=1))

    second = create_request(client, laptop, quantity=1, email="other@acme.com")
    body = approve_body(laptop, quantity=1)
    body["employeeEmail"] = "other@acme.com"
    response = client.put(f"/asset_requests/{second}/approve", json=body)

    assert response.status_code == 403
    assert response.json()["success"] is False
    assert asset_quantity(db, laptop) == 4


def test_approve_insufficient_stock(client, db, seeded):
    request_id = create_request(client, seeded, quantity=9)
    response = client.put(f"/asset_requests/{request_id}/approve", json=approve_body(seeded, quantity=9))

    assert response.status_code == 400
    assert response.json()["message"] == "Not enough asset quantity"
    assert client.get("/asset_requests").json()["requests"][0]["status"] == "pending"


def test_approve_twice_conflicts(client, seeded):
    request_id = create_request(client, seeded)
    client.put(f"/asset_requests/{request_id}/approve", json=approve_body(seeded))

    response = client.put(f"/asset_requests/{request_id}/approve", json=approve_body(seeded))
    assert response.status_code == 409


def test_approve_requires_quantity(client, seeded):
    request_id = create_request(client, seeded)
    body = approve_body(seeded)
    del body["quantityNeeded"]

    assert client.put(f"/asset_requests/{request_id}/approve", json=body).status_code == 422


def test_reject_then_return(client, seeded):
    request_id = create_request(client, seeded)

    assert client.put(f"/asset_requests/{request_id}/reject").json()["success"] is True
    assert client.put(f"/asset_requests/{request_id}/reject").status_code == 404
    assert client.put(f"/asset_requests/{request_id}/return").status_code == 409


def test_invalid_request_id(client):
    response = client.put("/asset_requests/not-an-id/return")
    assert response.status_code == 400


def test_remove_affiliation_requires_header(client):
    response = client.delete("/affiliations/5f1d7f5b9d3e2a1b2c3d4e5f")
    assert response.status_code == 400
    assert response.json()["message"] == "HR email required"


def test_hr_employees_and_removal(client, seeded):
    request_id = create_request(client, seeded)
    client.put(f"/asset_requests/{request_id}/approve", json=approve_body(seeded))

    listing = client.get("/hr/employees", headers={"hremail": "hr@acme.com"}).json()
    assert listing["total"] == 1
    affiliation_id = listing["employees"][0]["affiliation_id"]

    response = client.delete(f"/affiliations/{affiliation_id}", headers={"hremail": "hr@acme.com"})
    assert response.json() == {"success": True}
    assert client.get("/hr/employees", headers={"hremail": "hr@acme.com"}).json()["total"] == 0


def test_register_hr(client, monkeypatch):
    monkeypatch.setattr(users, "HR_SECRET_CODE", "open-sesame")
    body = {"name": "Hana", "email": "hana@acme.com", "role": "hr", "companyName": "Acme"}

    assert client.post("/users", json={**body, "hrCode": "nope"}).status_code == 403
    assert client.post("/users", json={**body, "hrCode": "open-sesame"}).json()["role"] == "hr"
    assert client.get("/users/hana@acme.com/role").json() == {"role": "hr"}
    assert client.post("/users", json=body).json() == {"message": "User already exists"}


def test_get_unknown_user(client):
    assert client.get("/users/nobody@acme.com").status_code == 404


def test_asset_crud(client):
    created = client.post("/assets", json={"name": "  Chair ", "type": "non-returnable", "quantity": 4})
    assert created.status_code == 201
    asset_id = created.json()["inserted_id"]

    assert client.get(f"/assets/{asset_id}").json()["name"] == "chair"
    assert client.put(f"/assets/{asset_id}", json={"quantity": 7}).json()["success"] is True
    assert client.get("/assets", params={"search": "cha"}).json()["assets"][0]["quantity"] == 7
    assert client.post("/assets", json={"name": "desk", "type": "returnable", "quantity": -1}).status_code == 422
    assert client.delete(f"/assets/{asset_id}").json() == {"deleted_count": 1}
    assert client.get(f"/assets/{asset_id}").status_code == 404


def test_dashboard(client, seeded, make_asset):
    make_asset(name="pen", quantity=100, type="non-returnable")
    create_request(client, seeded)
    create_request(client, seeded, quantity=1)

    pie = {row["_id"]: row["count"] for row in client.get("/api/dashboard/pie").json()}
    assert pie == {"returnable": 1, "non-returnable": 1}
    assert client.get("/api/dashboard/bar").json() == [{"_id": "laptop", "count": 2}]


def test_startup_creates_unique_indexes(monkeypatch):
    database = mongomock.MongoClient()["assetverse_startup"]
    monkeypatch.setitem(app.dependency_overrides, get_db, lambda: database)

    with TestClient(app):
        pass

    assert database["user"].index_information()["email_1"]["unique"] is True
    assert database["affiliation"].index_information()["employee_id_1_company_key_1"]["unique"] is True
