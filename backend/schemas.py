from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, validator


class UserCreate(BaseModel):
    username: str
    password: str
    role: str = "owner"

    @validator("username")
    def validate_username(cls, v: str) -> str:
        if not v or len(v.strip()) == 0:
            raise ValueError("Username cannot be empty")
        if len(v) < 3:
            raise ValueError("Username must be at least 3 characters")
        if len(v) > 50:
            raise ValueError("Username cannot exceed 50 characters")
        return v.strip()

    @validator("password")
    def validate_password(cls, v: str) -> str:
        if not v or len(v) < 8:
            raise ValueError("Password must be at least 8 characters")
        return v

    @validator("role")
    def validate_role(cls, v: str) -> str:
        if v not in ["owner", "admin"]:
            raise ValueError("Role must be either 'owner' or 'admin'")
        return v


class UserLogin(BaseModel):
    username: str
    password: str


class UserResponse(BaseModel):
    id: int
    username: str
    role: str


class RestaurantCreate(BaseModel):
    name: str

    @validator("name")
    def validate_name(cls, v: str) -> str:
        if not v or len(v.strip()) == 0:
            raise ValueError("Restaurant name cannot be empty")
        if len(v) > 120:
            raise ValueError("Restaurant name cannot exceed 120 characters")
        return v.strip()


class RestaurantResponse(BaseModel):
    id: int
    name: str
    owner_id: int


class PaymentSettingsUpdate(BaseModel):
    environment: str = "sandbox"
    pesapal_consumer_key: Optional[str] = None
    pesapal_consumer_secret: Optional[str] = None
    mpesa_business_short_code: Optional[str] = None
    mpesa_consumer_key: Optional[str] = None
    mpesa_consumer_secret: Optional[str] = None
    mpesa_passkey: Optional[str] = None

    @validator("environment")
    def validate_environment(cls, v: str) -> str:
        if v not in ["sandbox", "production"]:
            raise ValueError("Environment must be either 'sandbox' or 'production'")
        return v


class PaymentSettingsResponse(BaseModel):
    restaurant_id: int
    environment: str
    pesapal_configured: bool
    mpesa_configured: bool
    available_methods: List[str]


class OrderItemCreate(BaseModel):
    menu_item_id: str
    name: str
    quantity: int
    unit_price: float
    customizations: Optional[str] = None
    special_instructions: Optional[str] = None

    @validator("quantity")
    def validate_quantity(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Quantity must be greater than 0")
        if v > 100:
            raise ValueError("Quantity cannot exceed 100")
        return v

    @validator("unit_price")
    def validate_unit_price(cls, v: float) -> float:
        if v < 0:
            raise ValueError("Price cannot be negative")
        return round(v, 2)


class OrderCreate(BaseModel):
    restaurant_id: int
    items: List[OrderItemCreate]
    order_type: str = "now"
    payment_method: Optional[str] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    scheduled_time: Optional[str] = None
    table_number: Optional[str] = None
    notes: Optional[str] = None

    @validator("items")
    def validate_items(cls, v: List[OrderItemCreate]) -> List[OrderItemCreate]:
        if not v:
            raise ValueError("Order must contain at least one item")
        return v

    @validator("order_type")
    def validate_order_type(cls, v: str) -> str:
        if v not in ["now", "later"]:
            raise ValueError("Order type must be either 'now' or 'later'")
        return v


class OrderItemResponse(BaseModel):
    id: int
    menu_item_id: str
    name: str
    quantity: int
    unit_price: float
    customizations: Optional[str] = None
    special_instructions: Optional[str] = None


class OrderResponse(BaseModel):
    id: int
    restaurant_id: int
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    order_type: str
    scheduled_time: Optional[str] = None
    payment_method: Optional[str] = None
    payment_status: str
    order_status: str
    total_amount: float
    table_number: Optional[str] = None
    gateway_reference: Optional[str] = None
    created_at: datetime
    items: List[OrderItemResponse] = []


class OrderCreatedResponse(OrderResponse):
    customer_token: str


class OrderStatusUpdate(BaseModel):
    status: str


class TableNumberUpdate(BaseModel):
    table_number: Optional[str] = None


class WaiterCallCreate(BaseModel):
    restaurant_id: int
    table_number: str
    customer_name: Optional[str] = None
    notes: Optional[str] = None


class WaiterCallStatusUpdate(BaseModel):
    status: str


class WaiterCallResponse(BaseModel):
    id: int
    restaurant_id: int
    table_number: str
    customer_name: Optional[str] = None
    notes: Optional[str] = None
    status: str
    created_at: datetime
    acknowledged_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


# ---------- Server function payloads ----------

class MpesaInitializeRequest(BaseModel):
    orderId: str
    amount: float
    phone_number: str
    description: Optional[str] = None
    credentials: Optional[Dict[str, Optional[str]]] = None


class MpesaVerifyRequest(BaseModel):
    checkout_request_id: str
    credentials: Optional[Dict[str, Optional[str]]] = None


class PesapalInitializeRequest(BaseModel):
    orderId: str
    amount: float
    currency: str = "KES"
    description: Optional[str] = None
    customerInfo: Dict[str, Optional[str]] = {}
    callbackUrl: Optional[str] = None
    notificationId: Optional[str] = None
    credentials: Optional[Dict[str, Optional[str]]] = None


class PesapalVerifyRequest(BaseModel):
    transactionId: str
    credentials: Optional[Dict[str, Optional[str]]] = None


class UpdateOrderStatusRequest(BaseModel):
    customerToken: str
    paymentStatus: str
    orderStatus: Optional[str] = None


class OrderLookupRequest(BaseModel):
    customerToken: str


class OrderStatusPushRequest(BaseModel):
    orderId: int
    orderStatus: str
    customerName: Optional[str] = None


class PushSubscriptionCreate(BaseModel):
    customerToken: str
    endpoint: str
    p256dh: str
    auth: str
