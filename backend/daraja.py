"""
Safaricom Daraja (M-Pesa) API: OAuth, STK push, STK push query and the
shape of the asynchronous STK callback.
"""
import base64
import logging
import os
from datetime import datetime
from typing import Optional

import requests

from errors import GatewayError

logger = logging.getLogger(__name__)

SANDBOX_URL = "https://sandbox.safaricom.co.ke"
PRODUCTION_URL = "https://api.safaricom.co.ke"
PUBLIC_URL = os.getenv("PUBLIC_URL", "http://localhost:8000")
MPESA_CALLBACK_URL = os.getenv("MPESA_CALLBACK_URL", f"{PUBLIC_URL}/functions/v1/mpesa-callback")
REQUEST_TIMEOUT = 30

REQUIRED_CREDENTIALS = ("business_short_code", "consumer_key", "consumer_secret", "passkey")

# STK query result codes that are not plain failures
RESULT_CANCELLED = "1032"
RESULT_TIMEOUT = "1037"


class DarajaAuthError(GatewayError):
    pass


def base_url(environment: Optional[str]) -> str:
    return PRODUCTION_URL if environment == "production" else SANDBOX_URL


def timestamp(now: Optional[datetime] = None) -> str:
    return (now or datetime.now()).strftime("%Y%m%d%H%M%S")


def stk_password(short_code: str, passkey: str, ts: str) -> str:
    return base64.b64encode(f"{short_code}{passkey}{ts}".encode()).decode()


def get_access_token(credentials: dict) -> str:
    resp = requests.get(
        f"{base_url(credentials.get('environment'))}/oauth/v1/generate",
        params={"grant_type": "client_credentials"},
        auth=(credentials["consumer_key"], credentials["consumer_secret"]),
        timeout=REQUEST_TIMEOUT,
    )
    if not resp.ok:
        raise DarajaAuthError(f"M-Pesa authentication failed: {resp.reason}")
    try:
        token = resp.json().get("access_token")
    except (ValueError, AttributeError):
        token = None
    if not token:
        raise DarajaAuthError("M-Pesa authentication failed: no access token in response")
    return token


def _json(resp, what: str) -> dict:
    try:
        data = resp.json()
    except ValueError:
        raise GatewayError(f"{what}: unreadable response from M-Pesa")
    if not isinstance(data, dict):
        raise GatewayError(f"{what}: unexpected response from M-Pesa")
    return data


def stk_push(credentials: dict, phone: str, amount: float, account_reference: str,
             description: str, callback_url: Optional[str] = None) -> dict:
    token = get_access_token(credentials)
    ts = timestamp()
    short_code = credentials["business_short_code"]
    payload = {
        "BusinessShortCode": short_code,
        "Password": stk_password(short_code, credentials["passkey"], ts),
        "Timestamp": ts,
        "TransactionType": "CustomerPayBillOnline",
        "Amount": round(amount),
        "PartyA": phone,
        "PartyB": short_code,
        "PhoneNumber": phone,
        "CallBackURL": callback_url or MPESA_CALLBACK_URL,
        "AccountReference": account_reference,
        "TransactionDesc": description or f"Payment for order {account_reference}",
    }
    logger.info(f"STK push for {account_reference} to {phone[:6]}***")

    resp = requests.post(
        f"{base_url(credentials.get('environment'))}/mpesa/stkpush/v1/processrequest",
        json=payload,
        headers={"Authorization": f"Bearer {token}"},
        timeout=REQUEST_TIMEOUT,
    )
    if not resp.ok:
        logger.error(f"STK push failed: {resp.text}")
        raise GatewayError(f"STK Push failed: {resp.reason}")

    result = _json(resp, "STK Push failed")
    if str(result.get("ResponseCode")) != "0":
        raise GatewayError(result.get("ResponseDescription") or "STK Push was not accepted")
    return result


def stk_query(credentials: dict, checkout_request_id: str) -> dict:
    token = get_access_token(credentials)
    ts = timestamp()
    short_code = credentials["business_short_code"]
    resp = requests.post(
        f"{base_url(credentials.get('environment'))}/mpesa/stkpushquery/v1/query",
        json={
            "BusinessShortCode": short_code,
            "Password": stk_password(short_code, credentials.get("passkey", ""), ts),
            "Timestamp": ts,
            "CheckoutRequestID": checkout_request_id,
        },
        headers={"Authorization": f"Bearer {token}"},
        timeout=REQUEST_TIMEOUT,
    )
    if not resp.ok:
        raise GatewayError(f"M-Pesa query failed: {resp.reason}")
    return _json(resp, "M-Pesa query failed")


def status_from_result_code(result_code) -> str:
    if result_code is None or result_code == "":
        return "pending"
    code = str(result_code)
    if code == "0":
        return "completed"
    if code == RESULT_CANCELLED:
        return "cancelled"
    if code == RESULT_TIMEOUT:
        return "timeout"
    return "failed"


def parse_stk_callback(payload: dict) -> Optional[dict]:
    """Flatten an STK callback body; None if it isn't one."""
    callback = (payload or {}).get("Body", {}).get("stkCallback")
    if not callback:
        return None

    result_code = callback.get("ResultCode")
    data = {
        "checkout_request_id": callback.get("CheckoutRequestID"),
        "merchant_request_id": callback.get("MerchantRequestID"),
        "result_code": result_code,
        "result_desc": callback.get("ResultDesc"),
        "success": str(result_code) == "0",
    }
    if data["success"]:
        fields = {
            "Amount": "amount",
            "MpesaReceiptNumber": "mpesa_receipt_number",
            "TransactionDate": "transaction_date",
            "PhoneNumber": "phone_number",
        }
        for item in (callback.get("CallbackMetadata") or {}).get("Item", []):
            if item.get("Name") in fields:
                data[fields[item["Name"]]] = item.get("Value")
        # Daraja sends these two as numbers
        for key in ("transaction_date", "phone_number"):
            if data.get(key) is not None:
                data[key] = str(data[key])
    return data
