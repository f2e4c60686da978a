"""
Customer-side confirmation of a payment after the provider sends the
customer back to us.

idle -> verifying -> succeeded | failed, and failed -> verifying on retry().
The order is only reported as confirmed when both the provider says the
payment completed and the privileged order update went through.
"""
import logging
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

from errors import GatewayError, NetworkError, VerificationPendingError
from order_status import PAID_ORDER_STATUSES

logger = logging.getLogger(__name__)

IDLE = "idle"
VERIFYING = "verifying"
SUCCEEDED = "succeeded"
FAILED = "failed"

SUCCESS_MESSAGE = "Payment verified successfully! Your order is now confirmed."
DECLINED_MESSAGE = "Payment was declined or failed"
CANCELLED_MESSAGE = "Payment was cancelled"
UPDATE_FAILED_MESSAGE = "Payment verified, but order update failed"

# redirect query parameters that carry a provider reference
REFERENCE_PARAMS = ("OrderTrackingId", "orderTrackingId", "tracking_id", "checkout_request_id")


@dataclass
class Outcome:
    state: str = IDLE
    message: Optional[str] = None
    # which failure the message describes: declined, pending, gateway, network, update
    error_kind: Optional[str] = None


class PaymentCallbackReconciler:

    def __init__(self, gateway, functions, customer_token: str,
                 listener: Optional[Callable[[Outcome], None]] = None):
        self.gateway = gateway
        self.functions = functions
        self.customer_token = customer_token
        self.listener = listener
        self.reference: Optional[str] = None
        self.outcome = Outcome()

    @property
    def state(self) -> str:
        return self.outcome.state

    def _set(self, state, message=None, error_kind=None):
        self.outcome = Outcome(state, message, error_kind)
        if self.listener:
            self.listener(self.outcome)

    def handle_redirect(self, params: Mapping[str, str]) -> Outcome:
        for name in REFERENCE_PARAMS:
            if params.get(name):
                return self.start(params[name])
        return self.outcome

    def start(self, reference: Optional[str]) -> Outcome:
        if not reference or self.state in (SUCCEEDED, VERIFYING):
            return self.outcome
        self.reference = reference
        return self._verify()

    def retry(self) -> Outcome:
        if self.state != FAILED or not self.reference:
            return self.outcome
        return self._verify()

    def _verify(self) -> Outcome:
        self._set(VERIFYING)
        logger.info(f"Verifying payment {self.reference}")

        try:
            result = self.gateway.verify(self.reference)
        except GatewayError as e:
            return self._fail(str(e), "gateway")
        except NetworkError as e:
            return self._fail(str(e), "network")

        if result.status == "completed":
            return self._confirm_order()
        if result.status == "failed":
            return self._fail(DECLINED_MESSAGE, "declined")
        if result.status == "cancelled":
            return self._fail(CANCELLED_MESSAGE, "declined")
        # pending and timeout are transient; the order is left alone
        return self._fail(str(VerificationPendingError()), "pending")

    def _confirm_order(self) -> Outcome:
        try:
            data = self.functions.invoke("update-order-status", {
                "customerToken": self.customer_token,
                "paymentStatus": "paid",
                "orderStatus": "confirmed",
            })
        except NetworkError as e:
            return self._fail(f"{UPDATE_FAILED_MESSAGE}: {e}", "update")

        if not data.get("success"):
            reason = data.get("error") or "Failed to update order status"
            return self._fail(f"{UPDATE_FAILED_MESSAGE}: {reason}", "update")

        order_status = (data.get("order") or {}).get("order_status")
        if order_status is not None and order_status not in PAID_ORDER_STATUSES:
            return self._fail(f"{UPDATE_FAILED_MESSAGE}: order is {order_status}", "update")

        logger.info(f"Payment {self.reference} confirmed")
        self._set(SUCCEEDED, SUCCESS_MESSAGE)
        return self.outcome

    def _fail(self, message: str, kind: str) -> Outcome:
        logger.warning(f"Payment verification for {self.reference} failed ({kind}): {message}")
        self._set(FAILED, message, kind)
        return self.outcome
