"""
Database Schemas for the Shoppii marketplace

MongoDB collections are defined below using Pydantic models. Each class name is
converted to lowercase for the collection name (User -> "user").

We will use these collections:
- user: marketplace accounts (buyer, seller, admin)
- product: listings owned by a seller, the anchor reviews point at
- review: product reviews and seller/admin replies (parent_id set on replies)
"""

from datetime import datetime, timezone
from typing import Optional, Literal

from pydantic import BaseModel, Field

Role = Literal["buyer", "seller", "admin"]

# Roles a user may pick for themselves; admin is provisioned out of band.
SELF_SERVICE_ROLES = ("buyer", "seller")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(BaseModel):
    username: str = Field(..., min_length=1)
    fullname: Optional[str] = None
    email: str = Field(..., min_length=3, description="Checked by credentials.validate_email")
    password_hash: str = Field(..., description="BCrypt hash of password")
    role: Role = Field("buyer")
    created_at: datetime = Field(default_factory=utcnow)

class Product(BaseModel):
    seller_id: str = Field(..., description="Reference to user _id (seller)")
    title: str = Field(..., min_length=1, max_length=200)
    price: float = Field(0, ge=0)

class Review(BaseModel):
    product_id: str = Field(...)
    reviewer_id: str = Field(...)
    rating: Optional[int] = Field(None, ge=1, le=5, description="Absent on replies")
    comment: str = Field(..., min_length=1)
    parent_id: Optional[str] = Field(None, description="Reference to review _id for replies")
    created_at: datetime = Field(default_factory=utcnow)
