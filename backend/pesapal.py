"""
Pesapal v3 API: token, order submission and transaction status.
"""
import logging
import os
from typing import Optional

import requests

from errors import GatewayError

logger = logging.getLogger(__name__)

PESAPAL_BASE_URL = os.getenv("PESAPAL_BASE_URL", "https://pay.pesapal.com/v3")
PESAPAL_IPN_ID = os.getenv("PESAPAL_IPN_ID", "")
REQUEST_TIMEOUT = 30

_JSON_HEADERS = {"Content-Type": "application/json", "Accept": "application/json"}


def _json(resp, what: str) -> dict:
    try:
        data = resp.json()
    except ValueError:
        raise GatewayError(f"{what}: unreadable response from Pesapal")
    if not isinstance(data, dict):
        raise GatewayError(f"{what}: unexpected response from Pesapal")
    return data


def request_token(credentials: dict) -> str:
    resp = requests.post(
        f"{PESAPAL_BASE_URL}/api/Auth/RequestToken",
        json={
            "consumer_key": credentials["consumer_key"],
            "consumer_secret": credentials["consumer_secret"],
        },
        headers=_JSON_HEADERS,
        timeout=REQUEST_TIMEOUT,
    )
    if not resp.ok:
        raise GatewayError(f"Authentication failed: {resp.reason}")
    data = _json(resp, "Authentication failed")
    if not data.get("token"):
        error = data.get("error") or {}
        raise GatewayError(error.get("message") if isinstance(error, dict) else str(error) or "Authentication failed")
    return data["token"]


def billing_address(customer_info: dict) -> dict:
    name_parts = (customer_info.get("name") or "").split()
    return {
        "email_address": customer_info.get("email") or "",
        "phone_number": customer_info.get("phone") or "",
        "country_code": "KE",
        "first_name": name_parts[0] if name_parts else "",
        "last_name": " ".join(name_parts[1:]),
    }


def submit_order(credentials: dict, merchant_reference: str, amount: float, currency: str,
                 description: str, callback_url: str, customer_info: dict,
                 notification_id: Optional[str] = None) -> dict:
    token = request_token(credentials)
    resp = requests.post(
        f"{PESAPAL_BASE_URL}/api/Transactions/SubmitOrderRequest",
        json={
            "id": merchant_reference,
            "currency": currency,
            "amount": amount,
            "description": description,
            "callback_url": callback_url,
            "notification_id": notification_id or PESAPAL_IPN_ID,
            "billing_address": billing_address(customer_info),
        },
        headers={**_JSON_HEADERS, "Authorization": f"Bearer {token}"},
        timeout=REQUEST_TIMEOUT,
    )
    if not resp.ok:
        logger.error(f"Pesapal order submission failed: {resp.text}")
        raise GatewayError(f"Order submission failed: {resp.reason}")

    result = _json(resp, "Order submission failed")
    if result.get("error"):
        error = result["error"]
        raise GatewayError(error.get("message") if isinstance(error, dict) else str(error))
    logger.info(f"Pesapal order {merchant_reference} submitted, tracking id {result.get('order_tracking_id')}")
    return result


def transaction_status(credentials: dict, order_tracking_id: str) -> dict:
    token = request_token(credentials)
    resp = requests.get(
        f"{PESAPAL_BASE_URL}/api/Transactions/GetTransactionStatus",
        params={"orderTrackingId": order_tracking_id},
        headers={"Accept": "application/json", "Authorization": f"Bearer {token}"},
        timeout=REQUEST_TIMEOUT,
    )
    if not resp.ok:
        raise GatewayError(f"Status check failed: {resp.reason}")
    return _json(resp, "Status check failed")
