from fastapi import FastAPI, Depends, HTTPException, status, Header, Request, BackgroundTasks
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session
from typing import List, Optional
import json
import logging
import os

import requests
import uvicorn

import models
import auth
import daraja
import pesapal
from database import SessionLocal, get_db, init_db, wait_for_db
from errors import (
    GatewayError,
    MenuhubError,
    NotFoundError,
    OwnershipError,
    ValidationError,
)
from gateways import available_gateways, map_pesapal_status, normalize_phone
from notifications import PushNotifier, send_order_status_push
from order_management import ORDERS_TABLE, OrderManagementStore, create_order, order_record
from order_status import PAID_ORDER_STATUSES, apply_payment_outcome
from realtime import RealtimeHub
from redis_client import redis_client
from schemas import (
    UserCreate,
    UserLogin,
    UserResponse,
    RestaurantCreate,
    RestaurantResponse,
    PaymentSettingsUpdate,
    PaymentSettingsResponse,
    OrderCreate,
    OrderCreatedResponse,
    OrderItemResponse,
    OrderResponse,
    OrderStatusUpdate,
    TableNumberUpdate,
    WaiterCallCreate,
    WaiterCallResponse,
    WaiterCallStatusUpdate,
    MpesaInitializeRequest,
    MpesaVerifyRequest,
    PesapalInitializeRequest,
    PesapalVerifyRequest,
    UpdateOrderStatusRequest,
    OrderLookupRequest,
    OrderStatusPushRequest,
    PushSubscriptionCreate,
)
from waiter_calls import WaiterCallChannel

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)

PUBLIC_URL = os.getenv("PUBLIC_URL", "http://localhost:8000")

app = FastAPI(title="MenuHub Orders API")

origins = os.getenv(
    "CORS_ORIGINS",
    "http://localhost,http://localhost:3000,http://127.0.0.1:3000,http://localhost:8080,http://127.0.0.1:5173",
).split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

hub = RealtimeHub()
push_notifier = PushNotifier(SessionLocal)


@app.on_event("startup")
def startup_event():
    if wait_for_db():
        init_db()
        logger.info("Database tables are ready")
    else:
        logger.error("Database is not reachable at startup")

    if redis_client.is_available():
        hub.attach_redis(redis_client)
        logger.info("Redis available, realtime events are shared between workers")
    else:
        logger.warning("Redis unavailable, rate limiting and cross-worker realtime are disabled")


@app.on_event("shutdown")
def shutdown_event():
    hub.close()


@app.get("/")
def read_root():
    return {"message": "MenuHub Orders API is working!"}


@app.get("/health")
def health_check():
    return {"status": "ok", "redis_available": redis_client.is_available()}


# ========== Helpers ==========

def http_error(e: MenuhubError) -> HTTPException:
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, OwnershipError):
        return HTTPException(status_code=403, detail=str(e))
    if isinstance(e, ValidationError):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, GatewayError):
        return HTTPException(status_code=502, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


def function_error(message: str, status_code: int = 400, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message, **extra})


def get_current_owner(authorization: Optional[str] = Header(None), db: Session = Depends(get_db)):
    if not authorization:
        raise HTTPException(status_code=401, detail="Not authenticated")

    owner_id = auth.owner_id_from_header(authorization)
    if owner_id is None:
        raise HTTPException(status_code=401, detail="Invalid token")

    user = db.query(models.User).filter(models.User.id == owner_id).first()
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return user


def get_owned_restaurant(db: Session, restaurant_id: int, owner: models.User) -> models.Restaurant:
    restaurant = db.query(models.Restaurant).filter(models.Restaurant.id == restaurant_id).first()
    if not restaurant:
        raise HTTPException(status_code=404, detail="Restaurant not found")
    if restaurant.owner_id != owner.id:
        raise HTTPException(status_code=403, detail="You can only manage your own restaurants")
    return restaurant


def check_rate_limit(key: str, max_requests: int, window: int = 60):
    allowed, _ = redis_client.check_rate_limit(key, max_requests, window)
    if not allowed:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Rate limit exceeded. Try again in {window} seconds."
        )


def order_response(order: models.Order, with_token: bool = False):
    items = [
        OrderItemResponse(
            id=item.id,
            menu_item_id=item.menu_item_id,
            name=item.name,
            quantity=item.quantity,
            unit_price=item.unit_price,
            customizations=item.customizations,
            special_instructions=item.special_instructions,
        )
        for item in order.items
    ]
    fields = {**order_record(order), "items": items}
    if with_token:
        return OrderCreatedResponse(**fields)
    fields.pop("customer_token", None)
    return OrderResponse(**fields)


def order_store(owner: models.User, background_tasks: Optional[BackgroundTasks] = None) -> OrderManagementStore:
    notifier = None
    if background_tasks is not None:
        def notifier(order_id, order_status, customer_name=None):
            background_tasks.add_task(push_notifier, order_id, order_status, customer_name)
    return OrderManagementStore(owner.id, SessionLocal, hub=hub, notifier=notifier)


def find_order(db: Session, order_id) -> Optional[models.Order]:
    try:
        return db.query(models.Order).filter(models.Order.id == int(order_id)).first()
    except (TypeError, ValueError):
        return None


def announce(order: models.Order):
    hub.publish(ORDERS_TABLE, "UPDATE", order_record(order))


def restaurant_credentials(db: Session, order: Optional[models.Order], provider: str) -> dict:
    if order is None:
        return {}
    settings = db.query(models.RestaurantPaymentSettings).filter(
        models.RestaurantPaymentSettings.restaurant_id == order.restaurant_id
    ).first()
    if not settings:
        return {}
    if provider == "mpesa":
        return {
            "business_short_code": settings.mpesa_business_short_code,
            "consumer_key": settings.mpesa_consumer_key,
            "consumer_secret": settings.mpesa_consumer_secret,
            "passkey": settings.mpesa_passkey,
            "environment": settings.environment,
        }
    return {
        "consumer_key": settings.pesapal_consumer_key,
        "consumer_secret": settings.pesapal_consumer_secret,
        "environment": settings.environment,
    }


def resolve_credentials(db: Session, order, provided: Optional[dict], provider: str, required: tuple) -> Optional[dict]:
    """Credentials sent with the request win; otherwise the restaurant's saved settings."""
    for candidate in (provided or {}, restaurant_credentials(db, order, provider)):
        if all(candidate.get(k) for k in required):
            return candidate
    return None


# ========== Owners ==========

@app.post("/register", response_model=UserResponse)
def register(user: UserCreate, db: Session = Depends(get_db)):
    db_user = db.query(models.User).filter(models.User.username == user.username).first()
    if db_user:
        raise HTTPException(status_code=400, detail="Username already registered")

    db_user = models.User(
        username=user.username,
        password=auth.get_password_hash(user.password),
        role=user.role,
    )
    db.add(db_user)
    db.commit()
    db.refresh(db_user)
    logger.info(f"Registered owner {db_user.id}")
    return UserResponse(id=db_user.id, username=db_user.username, role=db_user.role)


@app.post("/login")
def login(user: UserLogin, db: Session = Depends(get_db)):
    db_user = auth.authenticate_owner(db, user.username, user.password)
    if not db_user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Incorrect username or password")

    return {
        "access_token": auth.create_access_token(db_user.id, db_user.role),
        "token_type": "bearer",
        "user": {"id": db_user.id, "username": db_user.username, "role": db_user.role},
    }


@app.get("/me", response_model=UserResponse)
def get_current_owner_info(current_owner: models.User = Depends(get_current_owner)):
    return UserResponse(id=current_owner.id, username=current_owner.username, role=current_owner.role)


# ========== Restaurants ==========

@app.post("/restaurants", response_model=RestaurantResponse)
def create_restaurant(restaurant: RestaurantCreate, db: Session = Depends(get_db),
                      current_owner: models.User = Depends(get_current_owner)):
    db_restaurant = models.Restaurant(name=restaurant.name, owner_id=current_owner.id)
    db.add(db_restaurant)
    db.commit()
    db.refresh(db_restaurant)
    return RestaurantResponse(id=db_restaurant.id, name=db_restaurant.name, owner_id=db_restaurant.owner_id)


@app.get("/restaurants", response_model=List[RestaurantResponse])
def list_restaurants(db: Session = Depends(get_db), current_owner: models.User = Depends(get_current_owner)):
    rows = db.query(models.Restaurant).filter(models.Restaurant.owner_id == current_owner.id).all()
    return [RestaurantResponse(id=r.id, name=r.name, owner_id=r.owner_id) for r in rows]


def payment_settings_response(restaurant_id: int, settings: Optional[models.RestaurantPaymentSettings]):
    pesapal_ok = bool(settings and settings.pesapal_consumer_key and settings.pesapal_consumer_secret)
    mpesa_ok = bool(settings and all([
        settings.mpesa_business_short_code, settings.mpesa_consumer_key,
        settings.mpesa_consumer_secret, settings.mpesa_passkey,
    ]))
    methods = [
        m for m in available_gateways()
        if (m != "pesapal" or pesapal_ok) and (m != "mpesa" or mpesa_ok)
    ]
    return PaymentSettingsResponse(
        restaurant_id=restaurant_id,
        environment=settings.environment if settings else "sandbox",
        pesapal_configured=pesapal_ok,
        mpesa_configured=mpesa_ok,
        available_methods=methods,
    )


@app.get("/restaurants/{restaurant_id}/payment-settings", response_model=PaymentSettingsResponse)
def get_payment_settings(restaurant_id: int, db: Session = Depends(get_db),
                         current_owner: models.User = Depends(get_current_owner)):
    restaurant = get_owned_restaurant(db, restaurant_id, current_owner)
    return payment_settings_response(restaurant.id, restaurant.payment_settings)


@app.put("/restaurants/{restaurant_id}/payment-settings", response_model=PaymentSettingsResponse)
def update_payment_settings(restaurant_id: int, update: PaymentSettingsUpdate, db: Session = Depends(get_db),
                            current_owner: models.User = Depends(get_current_owner)):
    restaurant = get_owned_restaurant(db, restaurant_id, current_owner)
    settings = restaurant.payment_settings
    if settings is None:
        settings = models.RestaurantPaymentSettings(restaurant_id=restaurant.id)
        db.add(settings)

    for field, value in update.dict(exclude_unset=True).items():
        setattr(settings, field, value)
    db.commit()
    db.refresh(settings)
    return payment_settings_response(restaurant.id, settings)


# ========== Orders ==========

@app.post("/orders", response_model=OrderCreatedResponse)
def checkout(order: OrderCreate, request: Request, db: Session = Depends(get_db)):
    client_host = request.client.host if request.client else "unknown"
    check_rate_limit(f"rate_limit:checkout:{client_host}", max_requests=20)

    restaurant = db.query(models.Restaurant).filter(models.Restaurant.id == order.restaurant_id).first()
    if not restaurant:
        raise HTTPException(status_code=404, detail="Restaurant not found")
    if order.payment_method and order.payment_method not in available_gateways():
        raise HTTPException(status_code=400, detail=f"Unsupported payment method: {order.payment_method}")

    try:
        db_order = create_order(
            db,
            restaurant,
            [item.dict() for item in order.items],
            order_type=order.order_type,
            payment_method=order.payment_method,
            customer_name=order.customer_name,
            customer_phone=order.customer_phone,
            scheduled_time=order.scheduled_time,
            table_number=order.table_number,
            notes=order.notes,
            hub=hub,
        )
    except ValidationError as e:
        raise http_error(e)
    return order_response(db_order, with_token=True)


@app.get("/orders", response_model=List[OrderResponse])
def get_orders(current_owner: models.User = Depends(get_current_owner)):
    orders = order_store(current_owner).fetch_orders()
    return [
        OrderResponse(**{k: v for k, v in o.items() if k != "customer_token"})
        for o in orders
    ]


@app.put("/orders/{order_id}/status", response_model=OrderResponse)
def update_order_status(order_id: int, update: OrderStatusUpdate, background_tasks: BackgroundTasks,
                        db: Session = Depends(get_db), current_owner: models.User = Depends(get_current_owner)):
    try:
        order_store(current_owner, background_tasks).update_order_status(order_id, update.status)
    except MenuhubError as e:
        raise http_error(e)
    return order_response(find_order(db, order_id))


@app.put("/orders/{order_id}/mark-paid", response_model=OrderResponse)
def mark_order_paid(order_id: int, background_tasks: BackgroundTasks, db: Session = Depends(get_db),
                    current_owner: models.User = Depends(get_current_owner)):
    try:
        order_store(current_owner, background_tasks).mark_order_paid(order_id)
    except MenuhubError as e:
        raise http_error(e)
    return order_response(find_order(db, order_id))


@app.put("/orders/{order_id}/table", response_model=OrderResponse)
def update_table_number(order_id: int, update: TableNumberUpdate, db: Session = Depends(get_db),
                        current_owner: models.User = Depends(get_current_owner)):
    try:
        order_store(current_owner).update_table_number(order_id, update.table_number)
    except MenuhubError as e:
        raise http_error(e)
    return order_response(find_order(db, order_id))


# ========== Waiter calls ==========

@app.post("/waiter-calls", response_model=WaiterCallResponse)
def call_waiter(call: WaiterCallCreate, request: Request, db: Session = Depends(get_db)):
    restaurant = db.query(models.Restaurant).filter(models.Restaurant.id == call.restaurant_id).first()
    if not restaurant:
        raise HTTPException(status_code=404, detail="Restaurant not found")

    client_host = request.client.host if request.client else "unknown"
    check_rate_limit(f"rate_limit:waiter_call:{restaurant.id}:{client_host}", max_requests=5)

    channel = WaiterCallChannel(restaurant.id, SessionLocal, hub=hub)
    try:
        record = channel.create_call(call.table_number, notes=call.notes, customer_name=call.customer_name)
    except ValidationError as e:
        raise http_error(e)
    return WaiterCallResponse(**record)


@app.get("/waiter-calls", response_model=List[WaiterCallResponse])
def list_waiter_calls(restaurant_id: int, db: Session = Depends(get_db),
                      current_owner: models.User = Depends(get_current_owner)):
    restaurant = get_owned_restaurant(db, restaurant_id, current_owner)
    calls = WaiterCallChannel(restaurant.id, SessionLocal).fetch_calls()
    return [WaiterCallResponse(**c) for c in calls]


@app.put("/waiter-calls/{call_id}/status", response_model=WaiterCallResponse)
def update_waiter_call_status(call_id: int, update: WaiterCallStatusUpdate, db: Session = Depends(get_db),
                              current_owner: models.User = Depends(get_current_owner)):
    call = db.query(models.WaiterCall).filter(models.WaiterCall.id == call_id).first()
    if not call:
        raise HTTPException(status_code=404, detail="Waiter call not found")
    restaurant = get_owned_restaurant(db, call.restaurant_id, current_owner)

    try:
        record = WaiterCallChannel(restaurant.id, SessionLocal, hub=hub).update_status(call_id, update.status)
    except MenuhubError as e:
        raise http_error(e)
    return WaiterCallResponse(**record)


# ========== Server functions ==========

@app.post("/functions/v1/mpesa-initialize")
def mpesa_initialize(body: MpesaInitializeRequest, db: Session = Depends(get_db)):
    order = find_order(db, body.orderId)
    credentials = resolve_credentials(db, order, body.credentials, "mpesa", daraja.REQUIRED_CREDENTIALS)
    if credentials is None:
        return function_error("M-Pesa payment method not properly configured.", 422)

    try:
        phone = normalize_phone(body.phone_number)
        logger.info(f"Initializing M-Pesa STK push for order {body.orderId}, amount {body.amount}")
        result = daraja.stk_push(credentials, phone, body.amount, body.orderId, body.description)
    except ValidationError as e:
        return function_error(str(e), 422)
    except daraja.DarajaAuthError:
        return function_error("Invalid M-Pesa credentials. Please check your M-Pesa settings.", 401)
    except GatewayError as e:
        return function_error(str(e))
    except requests.RequestException as e:
        logger.error(f"M-Pesa unreachable: {e}")
        return function_error("M-Pesa payment initialization failed", 502)

    if order is not None:
        order.gateway_reference = result["CheckoutRequestID"]
        db.commit()

    return {
        "success": True,
        "checkout_request_id": result["CheckoutRequestID"],
        "merchant_request_id": result.get("MerchantRequestID"),
        "response_description": result.get("ResponseDescription"),
        "customer_message": result.get("CustomerMessage"),
    }


@app.post("/functions/v1/mpesa-verify")
def mpesa_verify(body: MpesaVerifyRequest, db: Session = Depends(get_db)):
    callback = (
        db.query(models.MpesaCallback)
        .filter(models.MpesaCallback.checkout_request_id == body.checkout_request_id)
        .order_by(models.MpesaCallback.created_at.desc(), models.MpesaCallback.id.desc())
        .first()
    )
    if callback:
        return {
            "success": True,
            "status": "completed" if callback.success else "failed",
            "result_code": callback.result_code,
            "result_desc": callback.result_desc,
            "amount": callback.amount,
            "mpesa_receipt_number": callback.mpesa_receipt_number,
            "transaction_date": callback.transaction_date,
            "phone_number": callback.phone_number,
        }

    order = db.query(models.Order).filter(models.Order.gateway_reference == body.checkout_request_id).first()
    credentials = resolve_credentials(
        db, order, body.credentials, "mpesa", ("business_short_code", "consumer_key", "consumer_secret")
    )
    if credentials is None:
        return function_error(
            "No transaction data found and no credentials provided for verification", status="pending"
        )

    try:
        result = daraja.stk_query(credentials, body.checkout_request_id)
    except GatewayError as e:
        return function_error(str(e))
    except requests.RequestException as e:
        logger.error(f"M-Pesa unreachable: {e}")
        return function_error("M-Pesa verification failed", 502)

    return {
        "success": True,
        "status": daraja.status_from_result_code(result.get("ResultCode")),
        "result_code": result.get("ResultCode"),
        "result_desc": result.get("ResultDesc"),
        "response_description": result.get("ResponseDescription"),
    }


@app.post("/functions/v1/mpesa-callback")
async def mpesa_callback(request: Request):
    try:
        payload = await request.json()
    except ValueError:
        return {"ResultCode": 1, "ResultDesc": "Invalid callback"}

    data = daraja.parse_stk_callback(payload)
    if data is None or not data["checkout_request_id"]:
        logger.warning("M-Pesa callback without stkCallback body")
        return {"ResultCode": 1, "ResultDesc": "Invalid callback"}

    return await run_in_threadpool(record_mpesa_callback, payload, data)


def record_mpesa_callback(payload: dict, data: dict) -> dict:
    db = SessionLocal()
    try:
        db.add(models.MpesaCallback(callback_data=json.dumps(payload), **data))
        order = db.query(models.Order).filter(
            models.Order.gateway_reference == data["checkout_request_id"]
        ).first()
        changed = False
        if order is not None:
            changed = apply_payment_outcome(order, "completed" if data["success"] else "failed")
        db.commit()
        if changed:
            db.refresh(order)
            announce(order)
    except Exception:
        # M-Pesa retries on anything but a 200
        db.rollback()
        logger.exception(f"Failed to record M-Pesa callback {data['checkout_request_id']}")
        return {"ResultCode": 1, "ResultDesc": "Callback processing failed"}
    finally:
        db.close()

    logger.info(f"M-Pesa callback {data['checkout_request_id']} recorded, success={data['success']}")
    return {"ResultCode": 0, "ResultDesc": "Callback received successfully"}


@app.post("/functions/v1/pesapal-initialize")
def pesapal_initialize(body: PesapalInitializeRequest, db: Session = Depends(get_db)):
    order = find_order(db, body.orderId)
    credentials = resolve_credentials(db, order, body.credentials, "pesapal", ("consumer_key", "consumer_secret"))
    if credentials is None:
        return function_error("Restaurant Pesapal credentials are required for customer payments", 422)

    try:
        result = pesapal.submit_order(
            credentials,
            merchant_reference=body.orderId,
            amount=body.amount,
            currency=body.currency,
            description=body.description or f"Payment for order {body.orderId}",
            callback_url=body.callbackUrl or f"{PUBLIC_URL}/order-success",
            customer_info={k: v for k, v in body.customerInfo.items() if v},
            notification_id=body.notificationId or credentials.get("ipn_id"),
        )
    except GatewayError as e:
        return function_error(str(e))
    except requests.RequestException as e:
        logger.error(f"Pesapal unreachable: {e}")
        return function_error("Pesapal payment initialization failed", 502)

    tracking_id = result.get("order_tracking_id") or result.get("tracking_id")
    if order is not None and tracking_id:
        order.gateway_reference = tracking_id
        db.commit()

    return {
        "success": True,
        "redirect_url": result.get("redirect_url"),
        "tracking_id": tracking_id,
        "merchant_reference": result.get("merchant_reference"),
    }


@app.post("/functions/v1/pesapal-verify")
def pesapal_verify(body: PesapalVerifyRequest, db: Session = Depends(get_db)):
    order = db.query(models.Order).filter(models.Order.gateway_reference == body.transactionId).first()
    credentials = resolve_credentials(db, order, body.credentials, "pesapal", ("consumer_key", "consumer_secret"))
    if credentials is None:
        return function_error("Restaurant Pesapal credentials are required")

    try:
        result = pesapal.transaction_status(credentials, body.transactionId)
    except GatewayError as e:
        return function_error(str(e))
    except requests.RequestException as e:
        logger.error(f"Pesapal unreachable: {e}")
        return function_error("Pesapal verification failed", 502)

    return {
        "success": True,
        "transaction_id": body.transactionId,
        "status": map_pesapal_status(result.get("payment_status_description")),
        "payment_status_description": result.get("payment_status_description"),
        "amount": result.get("amount"),
        "currency": result.get("currency"),
        "merchant_reference": result.get("merchant_reference"),
        "payment_account": result.get("payment_account"),
        "created_date": result.get("created_date"),
    }


@app.post("/functions/v1/pesapal-webhook")
async def pesapal_webhook(request: Request):
    if "application/json" not in request.headers.get("content-type", ""):
        return JSONResponse(status_code=415, content={"error": "Unsupported Media Type"})
    try:
        payload = await request.json()
    except ValueError:
        return JSONResponse(status_code=400, content={"error": "Invalid JSON"})

    tracking_id = (payload or {}).get("OrderTrackingId")
    reference = (payload or {}).get("OrderMerchantReference")
    notification_type = (payload or {}).get("OrderNotificationType")
    if not all(isinstance(v, str) for v in (tracking_id, reference, notification_type)):
        logger.warning("Pesapal webhook missing required fields")
        return JSONResponse(status_code=400, content={"error": "Bad Request"})

    logger.info(f"Pesapal webhook: type={notification_type} tracking={tracking_id} ref={reference}")
    ack = {
        "orderNotificationType": notification_type,
        "orderTrackingId": tracking_id,
        "orderMerchantReference": reference,
        "status": 200,
    }

    outcome = {"COMPLETED": "completed", "FAILED": "failed"}.get(notification_type)
    if outcome is None:
        logger.warning(f"Unhandled Pesapal notification type: {notification_type}")
        return ack
    if reference.startswith("subscription_"):
        logger.info(f"Ignoring subscription payment notification {reference}")
        return ack

    await run_in_threadpool(apply_pesapal_notification, reference, tracking_id, outcome)
    return ack


def apply_pesapal_notification(reference: str, tracking_id: str, outcome: str):
    db = SessionLocal()
    try:
        order = find_order(db, reference)
        if order is None:
            logger.warning(f"Pesapal webhook for unknown order {reference}")
            return
        if not order.gateway_reference:
            order.gateway_reference = tracking_id
        changed = apply_payment_outcome(order, outcome)
        db.commit()
        if changed:
            db.refresh(order)
            announce(order)
    finally:
        db.close()


@app.post("/functions/v1/update-order-status")
def update_order_status_function(body: UpdateOrderStatusRequest, db: Session = Depends(get_db)):
    order = db.query(models.Order).filter(models.Order.customer_token == body.customerToken).first()
    if not order:
        return function_error("Order not found", 404)

    try:
        changed = apply_payment_outcome(order, body.paymentStatus)
    except ValidationError as e:
        return function_error(str(e))
    if body.orderStatus and body.orderStatus != order.order_status:
        logger.info(f"Order {order.id} kept at {order.order_status} (requested {body.orderStatus})")

    db.commit()
    db.refresh(order)
    if changed:
        announce(order)

    summary = {
        "id": order.id,
        "payment_status": order.payment_status,
        "order_status": order.order_status,
    }
    if order.payment_status == "completed" and order.order_status not in PAID_ORDER_STATUSES:
        # payment is kept on record, but the customer must not be told the order is on
        logger.warning(f"Payment recorded for order {order.id} which is {order.order_status}")
        return function_error(
            "Order was cancelled by the restaurant. Please contact the restaurant about your payment.",
            409,
            order=summary,
        )
    return {"success": True, "order": summary}


@app.post("/functions/v1/order-lookup")
def order_lookup(body: OrderLookupRequest, db: Session = Depends(get_db)):
    if not body.customerToken:
        return function_error("Missing customer token")
    order = db.query(models.Order).filter(models.Order.customer_token == body.customerToken).first()
    if not order:
        return function_error("Order not found", 404)

    # no phone numbers or restaurant ids in the customer view
    safe = {
        k: v for k, v in order_record(order).items()
        if k in ("id", "customer_name", "order_type", "payment_method", "payment_status",
                 "order_status", "total_amount", "created_at", "scheduled_time", "table_number")
    }
    safe["created_at"] = order.created_at.isoformat() if order.created_at else None
    return {"success": True, "order": safe}


@app.post("/functions/v1/send-order-status-push")
def send_order_status_push_function(body: OrderStatusPushRequest, db: Session = Depends(get_db)):
    result = send_order_status_push(db, body.orderId, body.orderStatus, body.customerName)
    if not result.get("success"):
        return function_error(result.get("error", "Push notification failed"), 500)
    return result


@app.post("/functions/v1/save-push-subscription")
def save_push_subscription(body: PushSubscriptionCreate, db: Session = Depends(get_db)):
    order = db.query(models.Order).filter(models.Order.customer_token == body.customerToken).first()
    if not order:
        return function_error("Order not found", 404)

    existing = db.query(models.PushSubscription).filter(
        models.PushSubscription.order_id == order.id,
        models.PushSubscription.endpoint == body.endpoint,
    ).first()
    if existing:
        existing.p256dh = body.p256dh
        existing.auth = body.auth
    else:
        db.add(models.PushSubscription(
            order_id=order.id, endpoint=body.endpoint, p256dh=body.p256dh, auth=body.auth
        ))
    db.commit()
    return {"success": True}


if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
