"""
Asset request lifecycle.

    pending --approve--> approved --return--> returned
    pending --reject---> rejected

Every transition is a conditional update on the current status, so two
callers racing on the same request cannot both win. Approval touches three
collections; `ApprovalSaga` undoes the steps already committed when a later
one fails.
"""

import logging
from typing import Callable, Dict, List, Optional, Tuple

from pymongo.database import Database

import inventory
from affiliations import ensure_affiliation, remove_created_affiliation
from capacity import check_capacity
from database import create_document, now, paginate, parse_object_id
from errors import Conflict, NotFound, ValidationError
from schemas import ASSET, ASSET_REQUEST, AssetRequest
from users import find_user

logger = logging.getLogger(__name__)


def create_request(db: Database, asset_id: str, quantity: int, user_name: str, email: str, reason: Optional[str]) -> str:
    asset = db[ASSET].find_one({"_id": parse_object_id(asset_id, "asset ID")})
    if not asset:
        raise ValidationError("Asset not found")

    # asset_name is a snapshot; later renames do not reach existing requests
    request = AssetRequest(
        asset_id=str(asset["_id"]),
        asset_name=asset["name"],
        quantity=quantity,
        user_name=user_name,
        email=email,
        reason=reason,
    )
    inserted_id = create_document(db, ASSET_REQUEST, request.model_dump(exclude_none=True))
    logger.info("Request %s created by %s for %d x %s", inserted_id, email, quantity, asset["name"])
    return inserted_id


def list_requests(db: Database, email: Optional[str], page: int, limit: int, status: Optional[str] = None) -> Dict:
    query: Dict = {}
    if email:
        query["email"] = email
    if status:
        query["status"] = status
    result = paginate(db, ASSET_REQUEST, query, page, limit, sort=[("created_at", -1), ("_id", -1)])
    return {
        "requests": result["items"],
        "total": result["total"],
        "page": result["page"],
        "total_pages": result["total_pages"],
    }


def _transition(db: Database, request_id, from_status: str, to_status: str, extra: Optional[Dict] = None) -> Optional[Dict]:
    update = {"status": to_status, "updated_at": now()}
    update.update(extra or {})
    return db[ASSET_REQUEST].find_one_and_update(
        {"_id": request_id, "status": from_status},
        {"$set": update},
    )


class ApprovalSaga:
    """
    Runs the approval steps in order and remembers how to undo each one.

    If a step raises, the compensations registered so far run newest first
    and the original error is re-raised.
    """

    def __init__(self, db: Database, request_id: str, hr_email: str, employee_email: str,
                 asset_id: str, quantity: int):
        if not hr_email or not employee_email:
            raise ValidationError("hrEmail and employeeEmail are required")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise ValidationError("quantityNeeded must be a positive integer")
        self.db = db
        self.request_id = parse_object_id(request_id, "request ID")
        self.hr_email = hr_email
        self.employee_email = employee_email
        self.asset_id = parse_object_id(asset_id, "asset ID")
        self.quantity = quantity
        self.compensations: List[Tuple[str, Callable[[], None]]] = []
        self.affiliation_id = None
        self.affiliation_created = False
        self.remaining_quantity = None

    def run(self) -> Dict:
        hr = find_user(self.db, self.hr_email, role="hr", label="HR")
        check_capacity(self.db, hr)
        try:
            self._approve_request()
            employee = find_user(self.db, self.employee_email, label="Employee")
            self._affiliate(employee, hr)
            self._take_stock()
        except Exception:
            self._compensate()
            raise
        logger.info("Request %s approved by %s", self.request_id, self.hr_email)
        return {
            "success": True,
            "affiliation_created": self.affiliation_created,
            "remaining_quantity": self.remaining_quantity,
        }

    def _approve_request(self):
        before = _transition(
            self.db, self.request_id, "pending", "approved",
            {"approved_at": now(), "approved_by": self.hr_email},
        )
        if before is None:
            raise Conflict("Request not found or already processed")
        self.compensations.append(("request", self._reopen_request))
        if before.get("asset_id") != str(self.asset_id):
            raise ValidationError("assetId does not match the request")

    def _reopen_request(self):
        self.db[ASSET_REQUEST].update_one(
            {"_id": self.request_id, "status": "approved"},
            {"$set": {"status": "pending", "updated_at": now()}, "$unset": {"approved_at": "", "approved_by": ""}},
        )

    def _affiliate(self, employee: Dict, hr: Dict):
        self.affiliation_id, self.affiliation_created = ensure_affiliation(
            self.db, employee, hr.get("company_name") or "", self.hr_email
        )
        if self.affiliation_created:
            affiliation_id = self.affiliation_id
            self.compensations.append(
                ("affiliation", lambda: remove_created_affiliation(self.db, affiliation_id))
            )

    def _take_stock(self):
        asset = inventory.reserve(self.db, self.asset_id, self.quantity)
        self.remaining_quantity = asset["quantity"]
        self.compensations.append(("stock", lambda: inventory.release(self.db, self.asset_id, self.quantity)))

    def _compensate(self):
        for name, undo in reversed(self.compensations):
            logger.warning("Approval of %s failed, undoing %s", self.request_id, name)
            try:
                undo()
            except Exception:
                logger.exception("Could not undo %s for request %s", name, self.request_id)
        self.compensations = []


def approve_request(db: Database, request_id: str, hr_email: str, employee_email: str,
                    asset_id: str, quantity_needed: int) -> Dict:
    return ApprovalSaga(db, request_id, hr_email, employee_email, asset_id, quantity_needed).run()


def reject_request(db: Database, request_id: str) -> Dict:
    oid = parse_object_id(request_id, "request ID")
    if _transition(db, oid, "pending", "rejected", {"rejected_at": now()}) is None:
        raise NotFound("Request not found or no longer pending")
    logger.info("Request %s rejected", oid)
    return {"success": True, "message": "Request rejected"}


def return_request(db: Database, request_id: str) -> Dict:
    oid = parse_object_id(request_id, "request ID")
    request = db[ASSET_REQUEST].find_one({"_id": oid})
    if not request:
        raise NotFound("Request not found")
    if request["status"] == "returned":
        return {"success": False, "already_returned": True, "message": "Asset already returned"}
    if request["status"] != "approved":
        raise Conflict(f"Only approved requests can be returned, this one is {request['status']}")

    if _transition(db, oid, "approved", "returned", {"returned_at": now()}) is None:
        # someone returned it between the read and the update
        return {"success": False, "already_returned": True, "message": "Asset already returned"}

    asset = inventory.release(db, request["asset_id"], int(request["quantity"]))
    quantity = asset["quantity"] if asset else None
    logger.info("Request %s returned, asset %s now at %s", oid, request["asset_id"], quantity)
    return {"success": True, "already_returned": False, "quantity": quantity}


def delete_request(db: Database, request_id: str) -> Dict:
    """Administrative removal in any status. Stock is left as it is."""
    result = db[ASSET_REQUEST].delete_one({"_id": parse_object_id(request_id, "request ID")})
    return {"deleted_count": result.deleted_count}
