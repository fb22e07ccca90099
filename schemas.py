"""
Database Schemas for the LayerLabs store

Each Pydantic model represents a document stored in MongoDB. Field names are
snake_case in Python and camelCase in the database (the stored names are part
of the public contract), so documents are always dumped with `by_alias=True`.
"""
from datetime import datetime
from typing import List, Literal, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

PaymentMethod = Literal["COD", "ONLINE"]


class Document(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, arbitrary_types_allowed=True)


class Category(Document):
    name: str = Field(..., min_length=1)
    slug: str = Field(..., min_length=1, description="Globally unique, URL-friendly")
    description: Optional[str] = None
    parent: Optional[ObjectId] = Field(None, description="Main category for subcategories, null for main categories")
    is_main: bool = False
    order: int = Field(0, description="Sort key among main categories")
    subcategory_order: int = Field(0, description="Sort key among siblings")


class Product(Document):
    name: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    rating: float = 0
    reviews: int = 0
    tag: Optional[str] = None
    description: Optional[str] = None
    features: List[str] = []
    images: List[str] = []
    category: Optional[ObjectId] = None
    subcategory: Optional[ObjectId] = None


class CartItem(Document):
    product_id: str
    name: str
    price: float
    image: Optional[str] = None
    qty: int = Field(1, ge=1)


class User(Document):
    uid: str
    name: str = "User"
    email: Optional[str] = ""
    photo_url: Optional[str] = Field("", alias="photoURL")
    address: str = ""
    state: str = ""
    city: str = ""
    pincode: str = ""
    phone: str = ""
    cart: List[CartItem] = []


class OrderItem(Document):
    product_id: Optional[str] = None
    name: Optional[str] = None
    price: float = 0
    qty: int = 1
    image: Optional[str] = None


class ProductOrderDetails(Document):
    items: List[OrderItem] = []
    total: float = 0


class GatewayRef(Document):
    order_id: Optional[str] = None
    payment_id: Optional[str] = None
    signature: Optional[str] = None


class Buyer(Document):
    """Contact snapshot copied onto an order when it is placed."""
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    state: Optional[str] = None
    city: Optional[str] = None
    pincode: Optional[str] = None


class Order(Buyer):
    user_id: str
    type: Literal["product"] = "product"
    product: ProductOrderDetails
    payment: PaymentMethod = "COD"
    payment_status: Literal["pending", "completed", "failed"] = "pending"
    status: str = "pending"
    razorpay: Optional[GatewayRef] = None


class CustomizedOrder(Buyer):
    uid: str
    images: List[str] = []
    height: Optional[float] = None
    length: Optional[float] = None
    material: Optional[str] = None
    notes: Optional[str] = None
    price: Optional[float] = Field(None, description="Null until a quote is issued")
    payment: str = "COD"
    payment_status: str = "pending"
    status: str = "pending"
    expected_delivery: Optional[datetime] = None


class OrderUpdate(Document):
    """Payload attached to notifications raised by order status changes."""
    order_id: str
    order_type: Literal["product", "customized"]
    status: Optional[str] = None
    price: Optional[float] = None
    expected_delivery: Optional[datetime] = None
    changes: List[str] = []


class Notification(Document):
    uid: str
    title: str
    message: str
    data: Optional[OrderUpdate] = None
    read: bool = False


class ContactMessage(Document):
    name: str
    email: EmailStr
    subject: str
    message: str
