"""
Order status push notifications.

Delivery is best effort: callers get a summary back, nothing here raises for
an unreachable push endpoint.
"""
import json
import logging
import os
from typing import Optional

import requests
from pywebpush import WebPushException, webpush
from sqlalchemy.orm import Session

import models

logger = logging.getLogger(__name__)

VAPID_SUBJECT = os.getenv("VAPID_SUBJECT", "mailto:support@menuhub.africa")
PUSH_TTL = 86400


def notification_content(status: str, customer_name: Optional[str] = None) -> dict:
    who = f"for {customer_name} " if customer_name else ""
    contents = {
        "confirmed": ("Order Confirmed!", f"Your order {who}has been confirmed and is being prepared."),
        "preparing": ("Now Preparing", f"Your order {who}is now being prepared by our kitchen."),
        "ready": ("Order Ready!", f"Your order {who}is ready for pickup!"),
        "completed": ("Order Complete", f"Your order {who}has been completed. Thank you!"),
        "cancelled": ("Order Cancelled", f"Your order {who}has been cancelled."),
    }
    title, body = contents.get(status, ("Order Update", f"Your order status has been updated to: {status}"))
    return {"title": title, "body": body}


def subscription_info(sub: models.PushSubscription) -> dict:
    return {"endpoint": sub.endpoint, "keys": {"p256dh": sub.p256dh, "auth": sub.auth}}


def send_order_status_push(db: Session, order_id: int, order_status: str,
                           customer_name: Optional[str] = None, timeout: float = 10.0) -> dict:
    subscriptions = db.query(models.PushSubscription).filter(
        models.PushSubscription.order_id == order_id
    ).all()
    if not subscriptions:
        logger.info(f"No push subscriptions for order {order_id}")
        return {"success": True, "sent": 0, "total": 0, "results": []}

    private_key = os.getenv("VAPID_PRIVATE_KEY")
    if not private_key:
        logger.error("VAPID_PRIVATE_KEY is not configured")
        return {"success": False, "error": "Push notification not configured"}

    payload = json.dumps({
        **notification_content(order_status, customer_name),
        "tag": f"order-{order_id}",
        "data": {"orderId": order_id, "orderStatus": order_status, "url": "/"},
    })

    results = []
    for sub in subscriptions:
        try:
            # webpush adds aud/exp to the claims it is given
            webpush(
                subscription_info=subscription_info(sub),
                data=payload,
                vapid_private_key=private_key,
                vapid_claims={"sub": VAPID_SUBJECT},
                ttl=PUSH_TTL,
                timeout=timeout,
            )
            results.append({"success": True, "endpoint": sub.endpoint})
        except WebPushException as e:
            status = e.response.status_code if e.response is not None else None
            logger.warning(f"Push to {sub.endpoint[:50]}... rejected ({status}): {e}")
            results.append({"success": False, "endpoint": sub.endpoint, "status": status})
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"Push to {sub.endpoint[:50]}... failed: {e}")
            results.append({"success": False, "endpoint": sub.endpoint, "error": str(e)})

    sent = sum(1 for r in results if r["success"])
    logger.info(f"Push notifications sent for order {order_id}: {sent}/{len(subscriptions)}")
    return {"success": True, "sent": sent, "total": len(subscriptions), "results": results}


class PushNotifier:
    """Notification hook for the order store; never raises."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def __call__(self, order_id: int, order_status: str, customer_name: Optional[str] = None):
        db = self.session_factory()
        try:
            return send_order_status_push(db, order_id, order_status, customer_name)
        except Exception:
            logger.exception(f"Push notification for order {order_id} failed")
            return None
        finally:
            db.close()
