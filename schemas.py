"""
Database Schemas for the Fan & AC store

Each Pydantic model validates one MongoDB collection document (or a request
body that becomes one). Collection name is the snake_case of the entity:
user, approved_email, product, order, order_item.

Attributes are snake_case in Python and camelCase on the wire and in the
database, e.g. ``base_price`` <-> ``basePrice``.
"""
from typing import List, Optional, Literal
from pydantic import BaseModel, ConfigDict, Field, EmailStr
from pydantic.alias_generators import to_camel

UserRole = Literal["customer", "admin", "rider"]
OrderStatus = Literal["pending", "paid", "shipped", "delivered", "undelivered", "cancelled"]
ProductCategory = Literal["fan", "ac"]

# Statuses each role may set through the status endpoints
AdminOrderStatus = Literal["paid", "shipped", "delivered", "undelivered", "cancelled"]
RiderOrderStatus = Literal["delivered", "undelivered"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UserCreate(CamelModel):
    name: str
    email: EmailStr
    picture: Optional[str] = None
    role: UserRole = "customer"
    google_id: str
    phone_number: Optional[str] = None
    address: Optional[str] = None


class UserUpdate(CamelModel):
    name: Optional[str] = None
    picture: Optional[str] = None
    phone_number: Optional[str] = None
    address: Optional[str] = None


class ApprovedEmailCreate(CamelModel):
    email: EmailStr
    role: UserRole = "customer"


class ProductCreate(CamelModel):
    name: str
    description: str
    category: ProductCategory
    base_price: int = Field(..., gt=0, strict=True, description="Price in cents")
    image: str
    average_rating: Optional[float] = None
    review_count: Optional[int] = None
    colors: List[str]
    sizes: List[str]


class OrderCreate(CamelModel):
    """Order fields a customer may submit at checkout.

    Owner, status and rider are not accepted here: the route sets the owner
    and status, and only the admin status endpoint assigns a rider.
    """
    total: int = Field(..., gt=0, strict=True, description="Total in cents")
    shipping_address: Optional[str] = None
    contact_phone: Optional[str] = None


class Order(OrderCreate):
    user_id: str
    status: OrderStatus = "pending"
    rider_id: Optional[str] = None


class OrderItemCreate(CamelModel):
    product_id: str
    quantity: int = Field(..., gt=0, strict=True)
    price: int = Field(..., gt=0, strict=True, description="Price at the time of purchase in cents")
    color: str
    size: str


class OrderPlacement(BaseModel):
    order: OrderCreate
    items: List[OrderItemCreate]


class AdminStatusUpdate(CamelModel):
    status: AdminOrderStatus
    rider_id: Optional[str] = None


class RiderStatusUpdate(CamelModel):
    status: RiderOrderStatus


def to_document(data) -> dict:
    """Dump a model (or copy a dict) into its camelCase document form."""
    if isinstance(data, BaseModel):
        return data.model_dump(by_alias=True, exclude_none=True)
    return {k: v for k, v in data.items() if v is not None}
