import pytest

from errors import GatewayError, ValidationError
from gateways import (
    CashGateway,
    MpesaDarajaGateway,
    PaymentRequest,
    PesapalGateway,
    available_gateways,
    get_gateway,
    map_pesapal_status,
    normalize_phone,
)

MPESA_CREDENTIALS = {
    "business_short_code": "174379",
    "consumer_key": "ck",
    "consumer_secret": "cs",
    "passkey": "pk",
    "environment": "sandbox",
}
PESAPAL_CREDENTIALS = {"consumer_key": "ck", "consumer_secret": "cs"}


@pytest.mark.parametrize("raw", ["0712345678", "254712345678", "+254712345678", "712345678", "0712 345 678"])
def test_normalize_phone(raw):
    assert normalize_phone(raw) == "254712345678"


def test_normalize_phone_requires_digits():
    with pytest.raises(ValidationError):
        normalize_phone("  ")


def test_map_pesapal_status():
    assert map_pesapal_status("Completed") == "completed"
    assert map_pesapal_status("INVALID") == "failed"
    assert map_pesapal_status("Reversed") == "cancelled"
    assert map_pesapal_status(None) == "pending"


def test_mpesa_initialize_sends_normalized_phone(fake_functions):
    functions = fake_functions({
        "mpesa-initialize": {"success": True, "checkout_request_id": "ws_CO_1", "customer_message": "Check phone"},
    })
    gateway = MpesaDarajaGateway(MPESA_CREDENTIALS, functions)

    result = gateway.initialize(PaymentRequest(order_id="7", amount=1400, phone="0712345678"))

    assert result.reference == "ws_CO_1"
    assert result.status == "pending"
    body = functions.called("mpesa-initialize")[0]
    assert body["phone_number"] == "254712345678"
    assert body["orderId"] == "7"


def test_mpesa_initialize_without_credentials_never_calls_backend(fake_functions):
    """Missing settings are caught client side."""
    functions = fake_functions()
    gateway = MpesaDarajaGateway({"consumer_key": "ck"}, functions)

    with pytest.raises(GatewayError):
        gateway.initialize(PaymentRequest(order_id="7", amount=100, phone="0712345678"))
    assert functions.calls == []


def test_mpesa_initialize_surfaces_backend_error(fake_functions):
    functions = fake_functions({
        "mpesa-initialize": {"success": False, "error": "Invalid M-Pesa credentials. Please check your M-Pesa settings."},
    })
    gateway = MpesaDarajaGateway(MPESA_CREDENTIALS, functions)

    with pytest.raises(GatewayError, match="Invalid M-Pesa credentials"):
        gateway.initialize(PaymentRequest(order_id="7", amount=100, phone="0712345678"))


def test_mpesa_verify_reads_status(fake_functions):
    functions = fake_functions({
        "mpesa-verify": {"success": True, "status": "completed", "amount": 1400, "mpesa_receipt_number": "QKX1"},
    })
    result = MpesaDarajaGateway(MPESA_CREDENTIALS, functions).verify("ws_CO_1")

    assert result.status == "completed"
    assert result.receipt == "QKX1"


def test_pesapal_initialize_returns_redirect(fake_functions):
    functions = fake_functions({
        "pesapal-initialize": {"success": True, "tracking_id": "trk-1", "redirect_url": "https://pay.example/x"},
    })
    gateway = PesapalGateway(PESAPAL_CREDENTIALS, functions)

    result = gateway.initialize(PaymentRequest(
        order_id="7", amount=1400, phone="0712345678", customer_info={"name": "Wanjiku Kamau"},
    ))

    assert result.reference == "trk-1"
    assert result.redirect_url == "https://pay.example/x"
    body = functions.called("pesapal-initialize")[0]
    assert body["customerInfo"] == {"name": "Wanjiku Kamau", "phone": "0712345678"}


def test_pesapal_initialize_requires_tracking_id(fake_functions):
    """No tracking id means nothing to verify later, so it is an error."""
    functions = fake_functions({"pesapal-initialize": {"success": True}})
    with pytest.raises(GatewayError):
        PesapalGateway(PESAPAL_CREDENTIALS, functions).initialize(PaymentRequest(order_id="7", amount=10))


def test_pesapal_verify_maps_description(fake_functions):
    functions = fake_functions({
        "pesapal-verify": {"success": True, "payment_status_description": "Failed"},
    })
    assert PesapalGateway(PESAPAL_CREDENTIALS, functions).verify("trk-1").status == "failed"


def test_manual_gateway_reference_and_pending_verify():
    gateway = CashGateway()
    result = gateway.initialize(PaymentRequest(order_id="7", amount=10))

    assert result.reference.startswith("cash_")
    assert gateway.verify(result.reference).status == "pending"


def test_registry():
    assert set(available_gateways()) == {"pesapal", "mpesa", "mpesa_manual", "bank_transfer", "cash"}
    assert isinstance(get_gateway("mpesa", MPESA_CREDENTIALS), MpesaDarajaGateway)
    with pytest.raises(ValidationError):
        get_gateway("bitcoin")
