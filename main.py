import os
import re
import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import Optional, Dict

from fastapi import FastAPI, Depends, Header, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, EmailStr
from pymongo.database import Database

import affiliations
import payments
import users
import workflow
from database import get_db, ensure_indexes, create_document, paginate, parse_object_id, serialize, now
from errors import NotFound, ValidationError, WorkflowError
from schemas import ASSET, ASSET_REQUEST, USER, Asset

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# ----------------------------
# Pydantic models (requests)
# ----------------------------
class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class RegisterRequest(CamelModel):
    name: str
    email: EmailStr
    role: str = Field("employee", pattern="^(employee|hr)$")
    hr_code: Optional[str] = Field(None, alias="hrCode")
    photo_url: Optional[str] = Field(None, alias="photoURL")
    birthdate: Optional[date] = None
    company_name: Optional[str] = Field(None, alias="companyName")
    company_logo: Optional[str] = Field(None, alias="companyLogo")


class ProfileUpdateRequest(CamelModel):
    name: Optional[str] = None
    photo_url: Optional[str] = Field(None, alias="photoURL")
    company_name: Optional[str] = Field(None, alias="companyName")


class AssetUpdateRequest(BaseModel):
    name: Optional[str] = None
    type: Optional[str] = Field(None, pattern="^(returnable|non-returnable)$")
    quantity: Optional[int] = Field(None, ge=0)
    image: Optional[str] = None


class AssetRequestCreate(CamelModel):
    asset_id: str = Field(..., alias="assetId")
    quantity: int = Field(..., ge=1)
    user_name: str = Field(..., alias="userName")
    email: EmailStr
    reason: Optional[str] = None


class ApproveRequest(CamelModel):
    hr_email: EmailStr = Field(..., alias="hrEmail")
    employee_email: EmailStr = Field(..., alias="employeeEmail")
    asset_id: str = Field(..., alias="assetId")
    quantity_needed: int = Field(..., ge=1, alias="quantityNeeded")


class CheckoutRequest(CamelModel):
    hr_email: EmailStr = Field(..., alias="hrEmail")
    package_id: str = Field(..., alias="packageId")


# ----------------------------
# FastAPI App
# ----------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    ensure_indexes(app.dependency_overrides.get(get_db, get_db)())
    yield


app = FastAPI(title="AssetVerse API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"success": False, "message": exc.message})


# ----------------------------
# Health/Test Endpoints
# ----------------------------
@app.get("/")
def root():
    return {"message": "AssetVerse Backend Running"}


@app.get("/test")
def test_database(db: Database = Depends(get_db)):
    try:
        collections = db.list_collection_names()
        return {
            "backend": "ok",
            "database": "ok",
            "collections": collections,
        }
    except Exception as e:
        return {"backend": "ok", "database": f"error: {str(e)}"}


# ----------------------------
# Users
# ----------------------------
@app.post("/users")
def register(payload: RegisterRequest, db: Database = Depends(get_db)):
    return users.register_user(db, payload.model_dump())


@app.get("/users")
def list_users(page: int = 1, limit: int = 10, search: str = "", db: Database = Depends(get_db)):
    query: Dict = {}
    if search:
        query["name"] = {"$regex": re.escape(search), "$options": "i"}
    result = paginate(db, USER, query, page, limit)
    return {"users": result["items"], "total": result["total"], "page": result["page"],
            "total_pages": result["total_pages"]}


@app.get("/users/{email}/role")
def get_role(email: str, db: Database = Depends(get_db)):
    return {"role": users.find_user(db, email)["role"]}


@app.get("/users/{email}")
def get_user(email: str, db: Database = Depends(get_db)):
    return users.get_user(db, email)


@app.put("/users/{user_id}")
def update_user(user_id: str, payload: ProfileUpdateRequest, db: Database = Depends(get_db)):
    return users.update_profile(db, user_id, payload.model_dump())


# ----------------------------
# HR employees and affiliations
# ----------------------------
@app.get("/hr/employees")
def hr_employees(
    page: int = 1,
    limit: int = 10,
    search: str = "",
    hremail: Optional[str] = Header(None),
    db: Database = Depends(get_db),
):
    return affiliations.list_company_employees(db, hremail, page, limit, search)


@app.delete("/affiliations/{affiliation_id}")
def remove_affiliation(affiliation_id: str, hremail: Optional[str] = Header(None), db: Database = Depends(get_db)):
    return affiliations.remove_affiliation(db, affiliation_id, hremail)


# ----------------------------
# Assets
# ----------------------------
@app.post("/assets", status_code=201)
def create_asset(payload: Asset, db: Database = Depends(get_db)):
    inserted_id = create_document(db, ASSET, payload.model_dump(exclude_none=True))
    return {"acknowledged": True, "inserted_id": inserted_id}


@app.get("/assets")
def list_assets(page: int = 1, limit: int = 10, search: str = "", type: Optional[str] = None,
                db: Database = Depends(get_db)):
    query: Dict = {}
    if search:
        query["name"] = {"$regex": re.escape(search), "$options": "i"}
    if type:
        query["type"] = type
    result = paginate(db, ASSET, query, page, limit)
    return {"assets": result["items"], "total": result["total"], "page": result["page"],
            "total_pages": result["total_pages"]}


@app.get("/assets/{asset_id}")
def get_asset(asset_id: str, db: Database = Depends(get_db)):
    asset = db[ASSET].find_one({"_id": parse_object_id(asset_id, "asset ID")})
    if not asset:
        raise NotFound("Asset not found")
    return serialize(asset)


@app.put("/assets/{asset_id}")
def update_asset(asset_id: str, payload: AssetUpdateRequest, db: Database = Depends(get_db)):
    changes = payload.model_dump(exclude_none=True)
    if not changes:
        raise ValidationError("Nothing to update")
    if "name" in changes:
        changes["name"] = changes["name"].strip().lower()
    changes["updated_at"] = now()
    result = db[ASSET].update_one({"_id": parse_object_id(asset_id, "asset ID")}, {"$set": changes})
    if result.matched_count == 0:
        raise NotFound("Asset not found")
    return {"success": True, "matched_count": result.matched_count, "modified_count": result.modified_count}


@app.delete("/assets/{asset_id}")
def delete_asset(asset_id: str, db: Database = Depends(get_db)):
    result = db[ASSET].delete_one({"_id": parse_object_id(asset_id, "asset ID")})
    return {"deleted_count": result.deleted_count}


# ----------------------------
# Dashboard
# ----------------------------
@app.get("/api/dashboard/pie")
def dashboard_pie(db: Database = Depends(get_db)):
    """Asset count per type (returnable / non-returnable)."""
    return list(db[ASSET].aggregate([{"$group": {"_id": "$type", "count": {"$sum": 1}}}]))


@app.get("/api/dashboard/bar")
def dashboard_bar(db: Database = Depends(get_db)):
    """Top 5 most requested assets."""
    return list(db[ASSET_REQUEST].aggregate([
        {"$group": {"_id": "$asset_name", "count": {"$sum": 1}}},
        {"$sort": {"count": -1}},
        {"$limit": 5},
    ]))


# ----------------------------
# Asset requests
# ----------------------------
@app.get("/asset_requests")
def list_asset_requests(email: Optional[str] = None, status: Optional[str] = None, page: int = 1,
                        limit: int = 10, db: Database = Depends(get_db)):
    return workflow.list_requests(db, email, page, limit, status)


@app.post("/asset_requests", status_code=201)
def create_asset_request(payload: AssetRequestCreate, db: Database = Depends(get_db)):
    inserted_id = workflow.create_request(
        db, payload.asset_id, payload.quantity, payload.user_name, payload.email, payload.reason
    )
    return {"acknowledged": True, "inserted_id": inserted_id}


@app.put("/asset_requests/{request_id}/approve")
def approve_asset_request(request_id: str, payload: ApproveRequest, db: Database = Depends(get_db)):
    return workflow.approve_request(
        db, request_id, payload.hr_email, payload.employee_email, payload.asset_id, payload.quantity_needed
    )


@app.put("/asset_requests/{request_id}/reject")
def reject_asset_request(request_id: str, db: Database = Depends(get_db)):
    return workflow.reject_request(db, request_id)


@app.put("/asset_requests/{request_id}/return")
def return_asset_request(request_id: str, db: Database = Depends(get_db)):
    return workflow.return_request(db, request_id)


@app.delete("/asset_requests/{request_id}")
def delete_asset_request(request_id: str, db: Database = Depends(get_db)):
    return workflow.delete_request(db, request_id)


# ----------------------------
# Packages and payments
# ----------------------------
@app.get("/api/packages")
def list_packages(db: Database = Depends(get_db)):
    return payments.list_packages(db)


@app.get("/api/packages/{package_id}")
def get_package(package_id: str, db: Database = Depends(get_db)):
    return payments.get_package_public(db, package_id)


@app.post("/api/stripe/create-checkout-session")
def create_checkout_session(payload: CheckoutRequest, db: Database = Depends(get_db)):
    return payments.create_checkout_session(db, payload.hr_email, payload.package_id)


@app.get("/api/stripe/success")
def stripe_success(
    response: Response,
    session_id: Optional[str] = None,
    package_id: Optional[str] = Query(None, alias="packageId"),
    hr_email: Optional[str] = Query(None, alias="hrEmail"),
    db: Database = Depends(get_db),
):
    response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, private"
    return payments.confirm_payment(db, session_id, package_id, hr_email)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
