"""
Database Schemas for the Jewellery Storefront

Each Pydantic model corresponds to a MongoDB collection (lowercased class name).
- Product -> "product"
- GoldRate / SilverRate / DiamondType / DiamondPrice -> commodity rate collections
- PromoCode -> "promocode"
- Order -> "order"
- Payment -> "payment"
- User -> "user"
- CartItem -> "cartitem"
- Review -> embedded in product.reviews

Request payloads used by the API endpoints live at the bottom of this module.
They accept camelCase keys (``promocodeId``) as well as snake_case ones.
"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

MATERIALS = ("gold", "silver", "diamond")
GOLD_CARATS = (24, 22, 20, 18, 14)
SILVER_PURITY_MARKS = (999, 925, 900, 800)
DELIVERY_STATUSES = (
    "pending", "packed", "shipped", "in_transit", "out_for_delivery", "delivered", "returned", "cancelled",
)

OrderStatus = Literal["pending", "processing", "confirmed", "shipped", "delivered", "cancelled"]
PaymentStatus = Literal["created", "authorized", "captured", "failed", "refunded", "succeeded"]


class Price(BaseModel):
    currency: str = Field("INR", description="ISO currency code")
    amount: float = Field(..., ge=0)


class Product(BaseModel):
    name: str = Field(..., description="Product name")
    slug: str = Field(..., description="Unique, derived from name")
    description: str = Field("", description="Product description")
    sku: Optional[str] = Field(None, description="Stock keeping unit")
    images: Optional[List[str]] = None
    image: Optional[str] = None
    making_cost: Optional[Price] = Field(None, description="Fixed making charges")
    other_charges: Optional[Price] = Field(None, description="Fixed other charges")
    stock: int = Field(0, ge=0, description="Units in stock")
    material: Optional[Literal["gold", "silver", "diamond"]] = None
    material_type: Optional[Union[int, float, str]] = Field(
        None, description="Carat for gold, purity mark for silver, diamond type id for diamond"
    )
    is_active: bool = True
    attributes: Optional[Dict[str, Any]] = Field(None, description="Free-form attributes (weightGrams, diamondCarat, ...)")


class GoldRate(BaseModel):
    carat: Literal[24, 22, 20, 18, 14]
    purity: float = Field(..., gt=0)
    rate_per_10_gram: float = Field(..., gt=0)
    date: datetime


class SilverRate(BaseModel):
    purity_mark: Literal[999, 925, 900, 800]
    purity_percent: float = Field(..., gt=0)
    rate_per_kg: float = Field(..., gt=0)
    date: datetime


class DiamondType(BaseModel):
    origin: Literal["Natural", "Lab-Grown"]
    shape: str
    cut: Literal["Excellent", "Very Good", "Good"]
    color: str
    clarity: str


class DiamondPrice(BaseModel):
    diamond_type: str = Field(..., description="Reference to diamondtype _id")
    price_per_carat: float = Field(..., gt=0)
    date: datetime


class PromoCode(BaseModel):
    code: str = Field(..., description="Upper-case promo code")
    description: Optional[str] = None
    discount_type: Literal["percent", "fixed"]
    amount: float = Field(..., ge=0)
    max_discount: Optional[float] = Field(None, ge=0)
    min_order_value: Optional[float] = Field(None, ge=0)
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    usage_limit: Optional[int] = Field(None, ge=0)
    used_count: int = Field(0, ge=0)
    is_active: bool = True


class OrderItem(BaseModel):
    product: str = Field(..., description="Reference to product _id")
    name: str = Field(..., description="Product name at time of order")
    price: float = Field(..., ge=0, description="Unit price captured at checkout")
    quantity: int = Field(..., ge=1)
    image: Optional[str] = None


class Address(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: Optional[str] = None
    phone: Optional[str] = None
    line1: Optional[str] = None
    line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: str = "IN"


class Delivery(BaseModel):
    provider: Optional[str] = None
    tracking_id: Optional[str] = None
    tracking_url: Optional[str] = None
    status: str = "pending"
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None


class Order(BaseModel):
    user_id: str
    items: List[OrderItem]
    subtotal: float = Field(..., ge=0)
    discount: float = Field(0, ge=0)
    tax: float = Field(0, ge=0, description="GST on the discounted subtotal")
    total: float = Field(..., ge=0)
    status: OrderStatus = "pending"
    promocode_id: Optional[str] = None
    payment_id: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    shipping_address: Optional[Address] = None
    delivery: Optional[Delivery] = None
    notes: Optional[str] = None


class Payment(BaseModel):
    user_id: str
    order_id: str
    provider: str
    method: str
    amount: float = Field(..., ge=0)
    currency: str = "INR"
    status: PaymentStatus = "created"
    transaction_id: str = ""
    meta: Dict[str, Any] = Field(default_factory=dict)


class User(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=10, description="Password hash")
    full_name: str = Field(..., min_length=1)
    is_blocked: bool = False


class CartItem(BaseModel):
    user_id: str
    product_id: str


class Review(BaseModel):
    """Embedded in ``product.reviews``; one per user and product."""

    user_id: str
    name: str = "User"
    rating: float = Field(..., ge=1, le=5)
    comment: str = ""


# Request payloads

class Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ProductPayload(Payload):
    name: Optional[str] = None
    description: Optional[str] = None
    sku: Optional[str] = None
    images: Optional[List[str]] = None
    image: Optional[str] = None
    making_cost: Optional[Any] = None
    other_charges: Optional[Any] = None
    stock: Optional[Any] = None
    material: Optional[str] = None
    material_type: Optional[Any] = None
    is_active: Optional[bool] = None
    attributes: Optional[Dict[str, Any]] = None


class GoldRatePayload(Payload):
    carat: Union[float, str]
    purity: Union[float, str]
    rate_per_10_gram: Union[float, str]
    date: Optional[datetime] = None


class SilverRatePayload(Payload):
    purity_mark: Union[float, str]
    purity_percent: Union[float, str]
    rate_per_kg: Union[float, str]
    date: Optional[datetime] = None


class DiamondTypePayload(Payload):
    origin: Literal["Natural", "Lab-Grown"]
    shape: str = Field(..., min_length=1)
    cut: Literal["Excellent", "Very Good", "Good"]
    color: str = Field(..., min_length=1)
    clarity: str = Field(..., min_length=1)


class DiamondPricePayload(Payload):
    diamond_type_id: str
    price_per_carat: Union[float, str]
    date: Optional[datetime] = None


class PromoCodePayload(Payload):
    code: Optional[str] = None
    description: Optional[str] = None
    discount_type: Optional[Literal["percent", "fixed"]] = None
    amount: Optional[float] = Field(None, ge=0)
    max_discount: Optional[float] = Field(None, ge=0)
    min_order_value: Optional[float] = Field(None, ge=0)
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    usage_limit: Optional[int] = Field(None, ge=0)
    used_count: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None


class PromoValidatePayload(Payload):
    code: Optional[str] = None
    order_total: Optional[Any] = None


class CreateOrderItem(Payload):
    product: str
    quantity: int
    price: float
    name: Optional[str] = None
    image: Optional[str] = None


class CreateOrderPayload(Payload):
    items: List[CreateOrderItem] = Field(default_factory=list)
    promocode_id: Optional[str] = None
    customer_email: Optional[EmailStr] = None
    customer_phone: Optional[str] = None
    shipping_address: Optional[Address] = None
    notes: Optional[str] = None


class OrderStatusPayload(Payload):
    status: OrderStatus


class DeliveryPayload(Payload):
    provider: Optional[str] = None
    tracking_id: Optional[str] = None
    tracking_url: Optional[str] = None
    status: Optional[str] = None
    shipped_at: Optional[Any] = None
    delivered_at: Optional[Any] = None


class RazorpayOrderPayload(Payload):
    order_id: str
    method: Optional[str] = None


class RazorpayVerifyPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: str = Field(..., alias="orderId")
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None


class CartAddPayload(Payload):
    product_id: str


class CredentialsPayload(Payload):
    email: str
    password: str


class SignupPayload(Payload):
    email: str
    password: str
    full_name: str


class OtpVerifyPayload(Payload):
    email: str
    otp: Union[str, int]


class PasswordChangePayload(Payload):
    old_password: str
    new_password: str


class UserBlockPayload(Payload):
    is_blocked: bool


class ReviewPayload(Payload):
    rating: Any = None
    comment: Optional[str] = None
