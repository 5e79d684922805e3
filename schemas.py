"""
Database Schemas for the Asset Request System

Each Pydantic model below represents a MongoDB collection. The collection
name is the lowercase of the class name.

- User -> "user"
- Asset -> "asset"
- AssetRequest -> "assetrequest"
- Affiliation -> "affiliation"
- Package -> "package"
- Payment -> "payment"
"""

from pydantic import BaseModel, Field, EmailStr, field_validator
from typing import Optional, Literal
from datetime import date, datetime

USER = "user"
ASSET = "asset"
ASSET_REQUEST = "assetrequest"
AFFILIATION = "affiliation"
PACKAGE = "package"
PAYMENT = "payment"

RequestStatus = Literal["pending", "approved", "rejected", "returned"]


class User(BaseModel):
    name: str = Field(..., description="Display name")
    email: EmailStr = Field(..., description="Unique email")
    role: Literal["employee", "hr"] = Field(
        "employee", description="Decided server-side at registration"
    )
    photo_url: Optional[str] = None
    birthdate: Optional[date] = None
    # HR only
    company_name: Optional[str] = None
    company_logo: Optional[str] = None
    package: Optional[str] = None
    package_limit: Optional[int] = Field(
        None, ge=0, description="Max concurrently-affiliated employees"
    )


class Asset(BaseModel):
    name: str
    type: Literal["returnable", "non-returnable"]
    quantity: int = Field(..., ge=0, description="Available stock")
    image: Optional[str] = None

    @field_validator("name")
    @classmethod
    def normalize_name(cls, value: str) -> str:
        return value.strip().lower()


class AssetRequest(BaseModel):
    asset_id: str
    asset_name: str = Field(..., description="Asset name as it was when the request was made")
    quantity: int = Field(..., ge=1)
    user_name: str
    email: EmailStr
    reason: Optional[str] = None
    status: RequestStatus = "pending"
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    returned_at: Optional[datetime] = None
    approved_by: Optional[EmailStr] = None


class Affiliation(BaseModel):
    employee_id: str
    employee_email: EmailStr
    company_name: str
    company_key: str = Field(..., description="Case-folded company name")
    hr_email: Optional[EmailStr] = None
    status: Literal["active"] = "active"
    joined_at: datetime


class Package(BaseModel):
    name: str
    employee_limit: int = Field(..., ge=0)
    price: float = Field(0, ge=0, description="USD")
    features: list = []


class Payment(BaseModel):
    session_id: str
    hr_email: EmailStr
    package_id: str
    package_name: str
    amount: Optional[float] = None
    status: Literal["paid"] = "paid"
