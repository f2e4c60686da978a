from errors import GatewayError, NetworkError, VerificationPendingError
from gateways import PaymentVerification
from reconciler import (
    DECLINED_MESSAGE,
    FAILED,
    SUCCEEDED,
    SUCCESS_MESSAGE,
    UPDATE_FAILED_MESSAGE,
    VERIFYING,
    PaymentCallbackReconciler,
)


class StubGateway:
    def __init__(self, *results):
        self.results = list(results)
        self.verified = []

    def verify(self, reference):
        self.verified.append(reference)
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return PaymentVerification(reference=reference, status=result)


def test_completed_payment_confirms_order(fake_functions):
    functions = fake_functions({"update-order-status": {"success": True}})
    states = []
    reconciler = PaymentCallbackReconciler(
        StubGateway("completed"), functions, "tok-1", listener=lambda o: states.append(o.state)
    )

    outcome = reconciler.start("trk-1")

    assert outcome.state == SUCCEEDED
    assert outcome.message == SUCCESS_MESSAGE
    assert states == [VERIFYING, SUCCEEDED]
    assert functions.called("update-order-status") == [
        {"customerToken": "tok-1", "paymentStatus": "paid", "orderStatus": "confirmed"}
    ]


def test_order_update_failure_is_not_success(fake_functions):
    functions = fake_functions({"update-order-status": {"success": False, "error": "Order not found"}})
    reconciler = PaymentCallbackReconciler(StubGateway("completed"), functions, "tok-1")

    outcome = reconciler.start("trk-1")

    assert outcome.state == FAILED
    assert outcome.error_kind == "update"
    assert outcome.message == f"{UPDATE_FAILED_MESSAGE}: Order not found"


def test_paid_but_cancelled_order_is_not_reported_confirmed(fake_functions):
    """The order row decides: a cancelled order never shows the confirmed message."""
    functions = fake_functions({"update-order-status": {
        "success": True, "order": {"id": 7, "payment_status": "completed", "order_status": "cancelled"},
    }})
    outcome = PaymentCallbackReconciler(StubGateway("completed"), functions, "tok-1").start("trk-1")

    assert outcome.state == FAILED
    assert outcome.error_kind == "update"
    assert "cancelled" in outcome.message
    assert outcome.message != SUCCESS_MESSAGE


def test_cancelled_order_rejected_by_update_function(fake_functions):
    functions = fake_functions({"update-order-status": {
        "success": False,
        "error": "Order was cancelled by the restaurant. Please contact the restaurant about your payment.",
        "order": {"id": 7, "payment_status": "completed", "order_status": "cancelled"},
    }})
    outcome = PaymentCallbackReconciler(StubGateway("completed"), functions, "tok-1").start("trk-1")

    assert outcome.state == FAILED
    assert outcome.message.startswith(f"{UPDATE_FAILED_MESSAGE}: Order was cancelled")


def test_update_call_unreachable(fake_functions):
    functions = fake_functions({"update-order-status": NetworkError("timed out")})
    outcome = PaymentCallbackReconciler(StubGateway("completed"), functions, "tok-1").start("trk-1")

    assert outcome.state == FAILED
    assert outcome.message.startswith(UPDATE_FAILED_MESSAGE)


def test_declined_payment_leaves_order_alone(fake_functions):
    functions = fake_functions()
    outcome = PaymentCallbackReconciler(StubGateway("failed"), functions, "tok-1").start("trk-1")

    assert outcome.state == FAILED
    assert outcome.message == DECLINED_MESSAGE
    assert functions.calls == []


def test_pending_and_timeout_ask_to_retry_later(fake_functions):
    for status in ("pending", "timeout"):
        functions = fake_functions()
        outcome = PaymentCallbackReconciler(StubGateway(status), functions, "tok-1").start("ws_CO_1")

        assert outcome.state == FAILED
        assert outcome.error_kind == "pending"
        assert outcome.message == str(VerificationPendingError())
        assert functions.calls == []


def test_gateway_and_network_errors(fake_functions):
    outcome = PaymentCallbackReconciler(
        StubGateway(GatewayError("Restaurant Pesapal credentials are required")), fake_functions(), "tok-1"
    ).start("trk-1")
    assert (outcome.state, outcome.error_kind) == (FAILED, "gateway")

    outcome = PaymentCallbackReconciler(
        StubGateway(NetworkError("connection refused")), fake_functions(), "tok-1"
    ).start("trk-1")
    assert (outcome.state, outcome.error_kind) == (FAILED, "network")


def test_retry_after_failure(fake_functions):
    functions = fake_functions({"update-order-status": {"success": True}})
    gateway = StubGateway("pending", "completed")
    reconciler = PaymentCallbackReconciler(gateway, functions, "tok-1")

    assert reconciler.start("ws_CO_1").state == FAILED
    assert reconciler.retry().state == SUCCEEDED
    assert gateway.verified == ["ws_CO_1", "ws_CO_1"]


def test_start_is_noop_once_succeeded(fake_functions):
    functions = fake_functions({"update-order-status": {"success": True}})
    gateway = StubGateway("completed")
    reconciler = PaymentCallbackReconciler(gateway, functions, "tok-1")
    reconciler.start("trk-1")

    assert reconciler.start("trk-1").state == SUCCEEDED
    assert reconciler.retry().state == SUCCEEDED
    assert len(gateway.verified) == 1


def test_redirect_params(fake_functions):
    functions = fake_functions({"update-order-status": {"success": True}})
    gateway = StubGateway("completed")
    reconciler = PaymentCallbackReconciler(gateway, functions, "tok-1")

    assert reconciler.handle_redirect({"foo": "bar"}).state == "idle"
    reconciler.handle_redirect({"OrderTrackingId": "trk-9", "OrderMerchantReference": "7"})
    assert gateway.verified == ["trk-9"]
