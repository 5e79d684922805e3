import hmac
import logging
import os
from typing import Dict, Optional

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from affiliations import rename_company
from database import create_document, now, parse_object_id, serialize
from errors import Forbidden, NotFound, ValidationError
from schemas import USER, User

logger = logging.getLogger(__name__)

HR_SECRET_CODE = os.getenv("HR_SECRET_CODE", "")
DEFAULT_PACKAGE = os.getenv("DEFAULT_PACKAGE", "basic")
DEFAULT_PACKAGE_LIMIT = int(os.getenv("DEFAULT_PACKAGE_LIMIT", 5))


def build_user_document(payload: Dict, hr_secret: Optional[str] = None) -> Dict:
    """
    Build a new user record from registration input.

    The client may only *ask* for the `hr` role; it is granted when `hrCode`
    matches the shared secret. Any other requested role yields an employee.
    Package fields are never taken from the client.
    """
    secret = HR_SECRET_CODE if hr_secret is None else hr_secret
    role = "employee"
    if payload.get("role") == "hr":
        code = payload.get("hr_code") or ""
        if not secret or not hmac.compare_digest(str(code), secret):
            raise Forbidden("Invalid HR secret code")
        role = "hr"

    user = User(
        name=payload["name"],
        email=payload["email"],
        role=role,
        photo_url=payload.get("photo_url"),
        birthdate=payload.get("birthdate"),
    )
    if role == "hr":
        if not payload.get("company_name"):
            raise ValidationError("Company name is required for HR accounts")
        user.company_name = payload["company_name"].strip()
        user.company_logo = payload.get("company_logo")
        user.package = DEFAULT_PACKAGE
        user.package_limit = DEFAULT_PACKAGE_LIMIT

    doc = user.model_dump(exclude_none=True)
    if user.birthdate:
        # BSON has no date type
        doc["birthdate"] = user.birthdate.isoformat()
    return doc


def register_user(db: Database, payload: Dict) -> Dict:
    existing = db[USER].find_one({"email": payload.get("email")})
    if existing:
        return {"message": "User already exists"}
    doc = build_user_document(payload)
    try:
        inserted_id = create_document(db, USER, doc)
    except DuplicateKeyError:
        return {"message": "User already exists"}
    logger.info("Registered %s as %s", doc["email"], doc["role"])
    return {"acknowledged": True, "inserted_id": inserted_id, "role": doc["role"]}


def find_user(db: Database, email: Optional[str], role: Optional[str] = None, label: str = "User") -> Dict:
    query = {"email": email}
    if role:
        query["role"] = role
    user = db[USER].find_one(query) if email else None
    if not user:
        raise NotFound(f"{label} not found")
    return user


def get_user(db: Database, email: str) -> Dict:
    return serialize(find_user(db, email))


def update_profile(db: Database, user_id: str, changes: Dict) -> Dict:
    """Update name/photo, and company name for HR users. Role and package are not editable here."""
    oid = parse_object_id(user_id, "user ID")
    user = db[USER].find_one({"_id": oid})
    if not user:
        raise NotFound("User not found")

    update = {k: v for k, v in changes.items() if k in ("name", "photo_url") and v is not None}
    if user.get("role") == "hr" and changes.get("company_name"):
        update["company_name"] = changes["company_name"].strip()
    if not update:
        return {"success": False, "message": "No changes made"}

    update["updated_at"] = now()
    db[USER].update_one({"_id": oid}, {"$set": update})
    if "company_name" in update and update["company_name"] != user.get("company_name"):
        moved = rename_company(db, user.get("company_name") or "", update["company_name"])
        logger.info("Company renamed for %s, %d affiliations moved", user["email"], moved)
    return {"success": True, "message": "User updated successfully"}
