from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, Field

from .lifecycle import PaymentMethod


# ----- Envelope -----

class Envelope(BaseModel):
    status: str = "success"
    message: Optional[str] = None
    count: Optional[int] = None
    total: Optional[int] = None
    stats: Optional[Any] = None
    data: Optional[Any] = None
    error: Optional[Any] = None


# ----- Orders -----

class OrderItemRequest(BaseModel):
    menu_item_id: int
    quantity: int = Field(..., gt=0)


class CreateOrderRequest(BaseModel):
    restaurant_id: Optional[int] = None
    items: List[OrderItemRequest] = []
    delivery_address_id: Optional[int] = None
    special_instructions: Optional[str] = None
    payment_method: PaymentMethod = PaymentMethod.ONLINE


class StatusUpdateRequest(BaseModel):
    status: str


class DeliveryStatusRequest(BaseModel):
    status: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class OrderItemRead(BaseModel):
    menu_item_id: int
    item_name: str
    price: Decimal
    quantity: int

    class Config:
        from_attributes = True


class PriceBreakdownRead(BaseModel):
    subtotal: Decimal
    delivery_fee: Decimal
    tax: Decimal
    total: Decimal


class OrderCreated(BaseModel):
    order_id: int
    total_amount: Decimal
    status: str
    items: List[OrderItemRead]
    breakdown: PriceBreakdownRead


class OrderRead(BaseModel):
    id: int
    customer_id: int
    restaurant_id: int
    delivery_partner_id: Optional[int]
    delivery_address_id: Optional[int]
    status: str
    payment_status: str
    payment_method: str
    subtotal: Decimal
    delivery_fee: Decimal
    tax: Decimal
    total_amount: Decimal
    special_instructions: Optional[str]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    actual_delivery_time: Optional[datetime]

    class Config:
        from_attributes = True


class OrderSummary(BaseModel):
    id: int
    restaurant_id: int
    restaurant_name: Optional[str] = None
    customer_name: Optional[str] = None
    status: str
    payment_status: str
    total_amount: Decimal
    items_count: int
    created_at: Optional[datetime]


class OrderDetail(BaseModel):
    order: OrderRead
    items: List[OrderItemRead]
    restaurant_name: Optional[str] = None
    customer_name: Optional[str] = None
    delivery_address: Optional[str] = None


# ----- Payments -----

class PaymentCreateRequest(BaseModel):
    order_id: int


class PaymentIntentRead(BaseModel):
    razorpay_order_id: str
    amount: int
    currency: str
    key_id: str


class PaymentVerifyRequest(BaseModel):
    order_id: int
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str


class PaymentConfirmation(BaseModel):
    order_id: int
    payment_status: str
    order_status: str
    already_verified: bool = False


# ----- Delivery -----

class AvailabilityRead(BaseModel):
    id: int
    name: str
    is_available: bool


class DeliveryOrderRead(BaseModel):
    id: int
    status: str
    total_amount: Decimal
    delivery_fee: Decimal
    created_at: Optional[datetime]
    actual_delivery_time: Optional[datetime] = None
    restaurant_name: Optional[str] = None
    restaurant_address: Optional[str] = None
    delivery_address: Optional[str] = None
    customer_name: Optional[str] = None


class PartnerStats(BaseModel):
    total_deliveries: int
    completed_deliveries: int
    total_earnings: Decimal
    today_deliveries: int
    today_earnings: Decimal


# ----- Reviews -----

class ReviewCreateRequest(BaseModel):
    order_id: int
    restaurant_rating: int = Field(..., ge=1, le=5)
    restaurant_review: Optional[str] = None
    delivery_rating: Optional[int] = Field(None, ge=1, le=5)
    delivery_review: Optional[str] = None


class ReviewUpdateRequest(BaseModel):
    restaurant_rating: Optional[int] = Field(None, ge=1, le=5)
    restaurant_review: Optional[str] = None
    delivery_rating: Optional[int] = Field(None, ge=1, le=5)
    delivery_review: Optional[str] = None


class ReviewRead(BaseModel):
    id: int
    order_id: int
    user_id: int
    restaurant_id: int
    delivery_partner_id: Optional[int]
    restaurant_rating: Optional[int]
    restaurant_review: Optional[str]
    delivery_rating: Optional[int]
    delivery_review: Optional[str]
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class RatingStats(BaseModel):
    avg_rating: Optional[Decimal]
    total_reviews: int


class CanReview(BaseModel):
    can_review: bool
    reason: Optional[str] = None


class PublicReview(BaseModel):
    id: int
    order_id: int
    rating: int
    review: Optional[str]
    customer_name: Optional[str]
    created_at: Optional[datetime]


class MyReview(ReviewRead):
    restaurant_name: Optional[str] = None


# ----- Menu -----

class MenuItemCreate(BaseModel):
    name: str = Field(..., min_length=1)
    price: Decimal = Field(..., gt=0)
    description: Optional[str] = None
    category: str = "Main Course"
    is_vegetarian: bool = False
    is_available: bool = True
    image_url: Optional[str] = None


class MenuItemUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    price: Optional[Decimal] = Field(None, gt=0)
    description: Optional[str] = None
    category: Optional[str] = None
    is_vegetarian: Optional[bool] = None
    is_available: Optional[bool] = None
    image_url: Optional[str] = None


class MenuItemRead(BaseModel):
    id: int
    restaurant_id: int
    name: str
    description: Optional[str]
    price: Decimal
    category: Optional[str]
    is_vegetarian: bool
    is_available: bool
    image_url: Optional[str]

    class Config:
        from_attributes = True


class MenuAvailabilityRead(BaseModel):
    id: int
    name: str
    is_available: bool


# ----- Addresses -----

class AddressCreate(BaseModel):
    address_line1: str = Field(..., min_length=1)
    address_line2: Optional[str] = None
    city: str = Field(..., min_length=1)
    state: Optional[str] = None
    pincode: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    is_default: bool = False


class AddressUpdate(BaseModel):
    address_line1: Optional[str] = Field(None, min_length=1)
    address_line2: Optional[str] = None
    city: Optional[str] = Field(None, min_length=1)
    state: Optional[str] = None
    pincode: Optional[str] = None
    is_default: Optional[bool] = None


class AddressRead(BaseModel):
    id: int
    user_id: int
    address_line1: str
    address_line2: Optional[str]
    city: str
    state: Optional[str]
    pincode: Optional[str]
    latitude: Optional[float]
    longitude: Optional[float]
    is_default: bool

    class Config:
        from_attributes = True


# ----- Restaurants -----

class RestaurantRead(BaseModel):
    id: int
    name: str
    address: Optional[str]
    city: Optional[str]
    cuisine_type: Optional[str]
    rating: Decimal
    total_ratings: int
    is_active: bool

    class Config:
        from_attributes = True


class RestaurantDetail(RestaurantRead):
    email: Optional[str]
    phone: Optional[str]
