import pytest
import requests

from errors import NetworkError
from functions_client import FunctionsClient


class StubResponse:
    def __init__(self, status_code, body):
        self.status_code = status_code
        self.ok = status_code < 400
        self._body = body

    def json(self):
        if isinstance(self._body, Exception):
            raise self._body
        return self._body


class StubSession:
    def __init__(self, result):
        self.result = result
        self.requests = []

    def post(self, url, json=None, timeout=None):
        self.requests.append((url, json, timeout))
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


def test_invoke_posts_json_to_function_url():
    session = StubSession(StubResponse(200, {"success": True}))
    client = FunctionsClient("https://api.menuhub.test/", timeout=5, session=session)

    assert client.invoke("order-lookup", {"customerToken": "t"}) == {"success": True}
    assert session.requests == [("https://api.menuhub.test/functions/v1/order-lookup", {"customerToken": "t"}, 5)]


def test_error_status_marks_failure():
    session = StubSession(StubResponse(404, {"error": "Order not found"}))
    data = FunctionsClient("http://x", session=session).invoke("update-order-status", {})
    assert data == {"error": "Order not found", "success": False}


def test_unreachable_and_non_json_raise_network_error():
    with pytest.raises(NetworkError):
        FunctionsClient("http://x", session=StubSession(requests.Timeout("slow"))).invoke("mpesa-verify", {})
    with pytest.raises(NetworkError):
        FunctionsClient("http://x", session=StubSession(StubResponse(502, ValueError("html")))).invoke("mpesa-verify", {})
