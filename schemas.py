"""
Database Schemas for DairyDrop

Each Pydantic model represents a MongoDB collection.
Collection name is the lowercase of the class name.
CartEntry and CustomerInfo are embedded in cart snapshots and orders.
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field

PRODUCT_CATEGORIES = [
    "Milk",
    "Yogurt",
    "Butter",
    "Cheese",
    "Cream",
    "Ghee",
    "Ice Cream",
    "Other",
]


class OrderStatus(str, Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"


class Address(BaseModel):
    id: Optional[str] = None
    full_name: str
    phone: str
    street: str
    city: str
    postal_code: str


class User(BaseModel):
    name: str
    email: EmailStr
    phone: Optional[str] = None
    is_admin: bool = False
    addresses: List[Address] = []


class Product(BaseModel):
    id: Optional[str] = None
    name: str
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    quantity: int = Field(0, ge=0, description="Units available for purchase")
    category: str = "Other"
    image_url: Optional[str] = None
    rating_avg: Optional[float] = Field(None, ge=0, le=5)
    rating_count: int = Field(0, ge=0, description="Approved reviews folded into rating_avg")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CartEntry(BaseModel):
    id: str = Field(..., description="Product id")
    name: str
    price: float = Field(..., ge=0)
    image_url: Optional[str] = None
    quantity: int
    stock: Optional[int] = Field(None, description="Product stock when the entry was last changed")


class CustomerInfo(BaseModel):
    full_name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    city: str = ""
    postal_code: str = ""


class Order(BaseModel):
    id: Optional[str] = None
    user_id: str
    items: List[CartEntry]
    customer_info: CustomerInfo
    subtotal: float
    tax: float
    total: float
    payment_method: str = "COD"
    status: OrderStatus = OrderStatus.PENDING
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Review(BaseModel):
    id: Optional[str] = None
    product_id: str
    user_id: str
    user_name: str
    rating: int = Field(..., ge=1, le=5)
    comment: str = ""
    approved: bool = False
    created_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
