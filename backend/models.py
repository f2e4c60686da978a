# models.py
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, Float, DateTime, Text
from sqlalchemy.orm import relationship
from database import Base


def utcnow():
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, index=True, nullable=False)
    password = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default="owner")

    restaurants = relationship("Restaurant", back_populates="owner")


class Restaurant(Base):
    __tablename__ = "restaurants"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(120), nullable=False)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    owner = relationship("User", back_populates="restaurants")
    payment_settings = relationship(
        "RestaurantPaymentSettings", back_populates="restaurant", uselist=False, cascade="all, delete-orphan"
    )


class RestaurantPaymentSettings(Base):
    __tablename__ = "restaurant_payment_settings"

    id = Column(Integer, primary_key=True, index=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), unique=True, nullable=False)
    environment = Column(String(20), default="sandbox")
    pesapal_consumer_key = Column(String(255), nullable=True)
    pesapal_consumer_secret = Column(String(255), nullable=True)
    mpesa_business_short_code = Column(String(20), nullable=True)
    mpesa_consumer_key = Column(String(255), nullable=True)
    mpesa_consumer_secret = Column(String(255), nullable=True)
    mpesa_passkey = Column(String(255), nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    restaurant = relationship("Restaurant", back_populates="payment_settings")


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    customer_token = Column(String(64), unique=True, index=True, nullable=False)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False, index=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    customer_name = Column(String(120), nullable=True)
    customer_phone = Column(String(30), nullable=True)
    order_type = Column(String(10), nullable=False, default="now")
    scheduled_time = Column(String(40), nullable=True)
    payment_method = Column(String(30), nullable=True)
    payment_status = Column(String(20), nullable=False, default="pending")
    order_status = Column(String(20), nullable=False, default="pending")
    total_amount = Column(Float, nullable=False)
    table_number = Column(String(20), nullable=True)
    gateway_reference = Column(String(128), nullable=True, index=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")
    push_subscriptions = relationship("PushSubscription", back_populates="order", cascade="all, delete-orphan")


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False)
    menu_item_id = Column(String(64), nullable=False)
    name = Column(String(140), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Float, nullable=False)
    customizations = Column(Text, nullable=True)
    special_instructions = Column(Text, nullable=True)

    order = relationship("Order", back_populates="items")


class WaiterCall(Base):
    __tablename__ = "waiter_calls"

    id = Column(Integer, primary_key=True, index=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False, index=True)
    table_number = Column(String(20), nullable=False)
    customer_name = Column(String(120), nullable=True)
    notes = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default="pending")
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    acknowledged_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)


class MpesaCallback(Base):
    __tablename__ = "mpesa_callbacks"

    id = Column(Integer, primary_key=True, index=True)
    checkout_request_id = Column(String(128), index=True, nullable=False)
    merchant_request_id = Column(String(128), nullable=True)
    result_code = Column(Integer, nullable=True)
    result_desc = Column(Text, nullable=True)
    success = Column(Boolean, default=False)
    amount = Column(Float, nullable=True)
    mpesa_receipt_number = Column(String(64), nullable=True)
    transaction_date = Column(String(32), nullable=True)
    phone_number = Column(String(30), nullable=True)
    callback_data = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class PushSubscription(Base):
    __tablename__ = "push_subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    endpoint = Column(Text, nullable=False)
    p256dh = Column(String(255), nullable=False)
    auth = Column(String(255), nullable=False)

    order = relationship("Order", back_populates="push_subscriptions")
