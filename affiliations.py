"""
Employee <-> HR company links.

An affiliation is keyed on (employee_id, company_key), where company_key is
the case-folded company name, so "Acme" and "acme " are the same company.
"""

import logging
import re
from typing import Dict, Optional, Tuple

from bson import ObjectId
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import now, paginate, parse_object_id
from errors import NotFound, ValidationError
from schemas import AFFILIATION, USER, Affiliation

logger = logging.getLogger(__name__)


def company_key(company_name: str) -> str:
    return (company_name or "").strip().casefold()


def ensure_affiliation(
    db: Database, employee: Dict, company_name: str, hr_email: Optional[str] = None
) -> Tuple[Optional[ObjectId], bool]:
    """
    Create an active affiliation unless one already exists for the pair.

    Returns (affiliation_id, created). A single upsert does the
    find-or-insert, so repeated calls leave exactly one record.
    """
    key = company_key(company_name)
    record = Affiliation(
        employee_id=str(employee["_id"]),
        employee_email=employee["email"],
        company_name=company_name.strip(),
        company_key=key,
        hr_email=hr_email,
        joined_at=now(),
    ).model_dump(exclude={"employee_id", "company_key"}, exclude_none=True)

    try:
        result = db[AFFILIATION].update_one(
            {"employee_id": employee["_id"], "company_key": key},
            {"$setOnInsert": record},
            upsert=True,
        )
    except DuplicateKeyError:
        # a concurrent upsert inserted the same pair first
        result = None
    if result is not None and result.upserted_id is not None:
        logger.info("Affiliated %s with %s", employee["email"], company_name)
        return result.upserted_id, True
    existing = db[AFFILIATION].find_one({"employee_id": employee["_id"], "company_key": key}, {"_id": 1})
    return (existing["_id"] if existing else None), False


def remove_created_affiliation(db: Database, affiliation_id: ObjectId) -> None:
    db[AFFILIATION].delete_one({"_id": affiliation_id})


def remove_affiliation(db: Database, affiliation_id: str, hr_email: Optional[str]) -> Dict:
    if not hr_email:
        raise ValidationError("HR email required")
    oid = parse_object_id(affiliation_id, "affiliation ID")

    hr = db[USER].find_one({"email": hr_email, "role": "hr"})
    if not hr:
        raise NotFound("HR not found")

    result = db[AFFILIATION].delete_one({"_id": oid, "company_key": company_key(hr.get("company_name"))})
    if result.deleted_count == 0:
        raise NotFound("Employee affiliation not found")
    logger.info("Affiliation %s removed by %s", affiliation_id, hr_email)
    return {"success": True}


def count_active(db: Database, company_name: str) -> int:
    return db[AFFILIATION].count_documents({"company_key": company_key(company_name), "status": "active"})


def rename_company(db: Database, old_name: str, new_name: str) -> int:
    old_key, new_key = company_key(old_name), company_key(new_name)
    if old_key != new_key:
        # employees already under the new name keep that record
        already = db[AFFILIATION].distinct("employee_id", {"company_key": new_key})
        db[AFFILIATION].delete_many({"company_key": old_key, "employee_id": {"$in": already}})
    result = db[AFFILIATION].update_many(
        {"company_key": old_key},
        {"$set": {"company_name": new_name.strip(), "company_key": new_key}},
    )
    return result.modified_count


def list_company_employees(db: Database, hr_email: Optional[str], page: int, limit: int, search: str = "") -> Dict:
    """Active affiliations of the HR's company joined with the employees' profiles."""
    if not hr_email:
        raise ValidationError("HR email required")
    hr = db[USER].find_one({"email": hr_email, "role": "hr"})
    if not hr:
        raise NotFound("HR not found")

    query = {"company_key": company_key(hr.get("company_name")), "status": "active"}
    if search:
        query["employee_email"] = {"$regex": re.escape(search), "$options": "i"}
    result = paginate(db, AFFILIATION, query, page, limit, sort=[("joined_at", -1)])

    ids = [parse_object_id(a["employee_id"]) for a in result["items"]]
    profiles = {
        str(u["_id"]): u
        for u in db[USER].find({"_id": {"$in": ids}}, {"name": 1, "email": 1, "photo_url": 1})
    }
    employees = []
    for aff in result["items"]:
        user = profiles.get(aff["employee_id"], {})
        employees.append({
            "affiliation_id": aff["id"],
            "employee_id": aff["employee_id"],
            "name": user.get("name", "Unknown"),
            "email": aff["employee_email"],
            "photo_url": user.get("photo_url", ""),
            "status": aff["status"],
            "joined_at": aff["joined_at"],
        })
    return {"employees": employees, "total": result["total"], "package_limit": hr.get("package_limit")}
