"""
Customer-facing payment gateway adapters.

Each adapter turns a payment request into a provider transaction through the
server functions and can later ask for that transaction's outcome. Adapters
never write to orders; the reconciler and the provider webhooks do.
"""
import logging
import random
import re
import string
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from errors import GatewayError, ValidationError

logger = logging.getLogger(__name__)

COUNTRY_CODE = "254"
VERIFY_STATUSES = ("completed", "failed", "pending", "cancelled", "timeout")

# Pesapal payment_status_description values
PESAPAL_STATUS_MAP = {
    "completed": "completed",
    "failed": "failed",
    "invalid": "failed",
    "reversed": "cancelled",
}


def normalize_phone(raw: str) -> str:
    """Bring a Kenyan phone number to the 254XXXXXXXXX form M-Pesa expects."""
    digits = re.sub(r"\D", "", raw or "")
    if not digits:
        raise ValidationError("Phone number is required")
    if digits.startswith("0"):
        return COUNTRY_CODE + digits[1:]
    if digits.startswith(COUNTRY_CODE):
        return digits
    return COUNTRY_CODE + digits


def mask_phone(phone: str) -> str:
    return (phone or "")[:3] + "***"


def map_pesapal_status(description: Optional[str]) -> str:
    return PESAPAL_STATUS_MAP.get((description or "").strip().lower(), "pending")


@dataclass
class PaymentRequest:
    order_id: str
    amount: float
    description: str = ""
    phone: Optional[str] = None
    customer_info: Dict[str, str] = field(default_factory=dict)
    currency: str = "KES"
    callback_url: Optional[str] = None


@dataclass
class PaymentInitResult:
    reference: str
    status: str = "pending"
    redirect_url: Optional[str] = None
    message: Optional[str] = None


@dataclass
class PaymentVerification:
    reference: str
    status: str
    amount: Optional[float] = None
    currency: Optional[str] = None
    receipt: Optional[str] = None


class PaymentGateway:
    type = ""
    name = ""
    required_credentials: tuple = ()

    def __init__(self, credentials: Optional[dict] = None, functions=None):
        self.credentials = dict(credentials or {})
        self.functions = functions

    def check_credentials(self):
        missing = [k for k in self.required_credentials if not self.credentials.get(k)]
        if missing:
            raise GatewayError(f"{self.name} credentials are incomplete: missing {', '.join(missing)}")

    def _call(self, function: str, body: dict, fallback: str) -> dict:
        data = self.functions.invoke(function, body)
        if not data.get("success"):
            raise GatewayError(data.get("error") or fallback)
        return data

    def initialize(self, request: PaymentRequest) -> PaymentInitResult:
        raise NotImplementedError

    def verify(self, reference: str) -> PaymentVerification:
        raise NotImplementedError


class MpesaDarajaGateway(PaymentGateway):
    type = "mpesa"
    name = "M-Pesa"
    required_credentials = ("business_short_code", "consumer_key", "consumer_secret", "passkey")

    def initialize(self, request: PaymentRequest) -> PaymentInitResult:
        self.check_credentials()
        phone = normalize_phone(request.phone or request.customer_info.get("phone", ""))
        logger.info(f"Starting M-Pesa STK push for order {request.order_id} ({mask_phone(phone)})")

        data = self._call("mpesa-initialize", {
            "orderId": request.order_id,
            "amount": request.amount,
            "phone_number": phone,
            "description": request.description,
            "credentials": self.credentials,
        }, "Payment initialization failed")

        if not data.get("checkout_request_id"):
            raise GatewayError("Invalid response from M-Pesa: missing checkout_request_id")
        return PaymentInitResult(
            reference=data["checkout_request_id"],
            message=data.get("customer_message"),
        )

    def verify(self, reference: str) -> PaymentVerification:
        body = {"checkout_request_id": reference}
        if self.credentials:
            body["credentials"] = {
                k: self.credentials.get(k)
                for k in ("business_short_code", "consumer_key", "consumer_secret", "passkey", "environment")
            }
        data = self._call("mpesa-verify", body, "Payment verification failed")
        return PaymentVerification(
            reference=reference,
            status=data.get("status") or "pending",
            amount=data.get("amount"),
            receipt=data.get("mpesa_receipt_number"),
        )


class PesapalGateway(PaymentGateway):
    type = "pesapal"
    name = "Pesapal"
    required_credentials = ("consumer_key", "consumer_secret")

    def initialize(self, request: PaymentRequest) -> PaymentInitResult:
        self.check_credentials()
        info = dict(request.customer_info)
        if request.phone:
            info.setdefault("phone", request.phone)

        data = self._call("pesapal-initialize", {
            "orderId": request.order_id,
            "amount": request.amount,
            "currency": request.currency,
            "description": request.description,
            "customerInfo": info,
            "callbackUrl": request.callback_url,
            "credentials": self.credentials,
        }, "Payment initialization failed")

        if not data.get("tracking_id"):
            raise GatewayError("Invalid response from Pesapal: missing tracking id")
        return PaymentInitResult(reference=data["tracking_id"], redirect_url=data.get("redirect_url"))

    def verify(self, reference: str) -> PaymentVerification:
        self.check_credentials()
        data = self._call("pesapal-verify", {
            "transactionId": reference,
            "credentials": self.credentials,
        }, "Payment verification failed")
        status = data.get("status") or map_pesapal_status(data.get("payment_status_description"))
        return PaymentVerification(
            reference=reference,
            status=status,
            amount=data.get("amount"),
            currency=data.get("currency"),
        )


class ManualGateway(PaymentGateway):
    """Offline methods: the customer pays outside the app and staff confirm it."""

    message = ""

    def initialize(self, request: PaymentRequest) -> PaymentInitResult:
        suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
        return PaymentInitResult(
            reference=f"{self.type}_{int(time.time() * 1000)}_{suffix}",
            message=self.message,
        )

    def verify(self, reference: str) -> PaymentVerification:
        return PaymentVerification(reference=reference, status="pending")


class MpesaManualGateway(ManualGateway):
    type = "mpesa_manual"
    name = "M-Pesa Manual"
    message = "Manual payment instructions will be shown to customer"


class BankTransferGateway(ManualGateway):
    type = "bank_transfer"
    name = "Bank Transfer"
    message = "Bank transfer instructions will be shown to customer"


class CashGateway(ManualGateway):
    type = "cash"
    name = "Cash Payment"
    message = "Cash payment on delivery/pickup"


GATEWAYS = {
    gateway.type: gateway
    for gateway in (PesapalGateway, MpesaDarajaGateway, MpesaManualGateway, BankTransferGateway, CashGateway)
}


def available_gateways() -> List[str]:
    return list(GATEWAYS)


def get_gateway(gateway_type: str, credentials: Optional[dict] = None, functions=None) -> PaymentGateway:
    try:
        gateway_cls = GATEWAYS[gateway_type]
    except KeyError:
        raise ValidationError(f"Unsupported payment method: {gateway_type}")
    return gateway_cls(credentials, functions)
