"""
Database Schemas

MongoDB collection schemas for the fabric store, defined with Pydantic models.
Each model represents a collection in the database.
Model name in snake_case is the collection name:
- Product -> "product"
- CartItem -> "cart_item"
- UploadedFile -> "uploaded_file"

Prices are integers in minor currency units (paise).
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProductCategory(str, Enum):
    frock = "frock"
    lehenga = "lehenga"
    kurta = "kurta"
    net = "net"
    cutpiece = "cutpiece"


class MediaType(str, Enum):
    image = "image"
    video = "video"


class Role(str, Enum):
    customer = "customer"
    admin = "admin"


class OrderStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    shipped = "shipped"
    delivered = "delivered"
    cancelled = "cancelled"


class PaymentMethod(str, Enum):
    card = "card"
    cash = "cash"
    upi = "upi"


class Document(BaseModel):
    model_config = ConfigDict(use_enum_values=True)


class User(Document):
    username: str = Field(..., min_length=3, description="Login name")
    email: EmailStr = Field(..., description="Email address")
    password_hash: str = Field(..., description="BCrypt hashed password")
    role: Role = Field(Role.customer, description="Role: customer | admin")
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: str = "India"
    session_revision: int = Field(0, ge=0, description="Bumped on logout to revoke issued tokens")
    created_at: datetime = Field(default_factory=utcnow)


class Product(Document):
    name: str = Field(..., min_length=1)
    description: str
    price: int = Field(..., ge=0, description="Price in paise")
    image_url: str
    category: ProductCategory
    stock: int = Field(0, ge=0)
    is_featured: bool = False
    is_active: bool = True
    sku: str = Field(..., min_length=1)
    media_files: List[str] = Field(default_factory=list, description="Uploaded media URLs")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Category(Document):
    """product_count is never stored; it is counted from products on read."""
    name: ProductCategory
    description: Optional[str] = None


class CartItem(Document):
    cart_id: str
    product_id: str
    quantity: int = Field(1, ge=1)


class OrderItem(Document):
    product_id: str
    name: str
    quantity: int = Field(..., ge=1)
    price: int = Field(..., ge=0, description="Unit price frozen at order time")


class Order(Document):
    user_id: str
    items: List[OrderItem]
    total_amount: int = Field(..., ge=0)
    status: OrderStatus = OrderStatus.pending
    payment_method: PaymentMethod = PaymentMethod.cash
    payment_status: str = "pending"
    shipping_address: str
    shipping_city: str
    shipping_state: str
    shipping_zip_code: str
    shipping_country: str = "India"
    tracking_number: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class UploadedFile(Document):
    filename: str
    original_name: str
    mime_type: str
    size: int
    path: str
    url: str
    product_id: str
    type: MediaType = MediaType.image
    created_at: datetime = Field(default_factory=utcnow)
