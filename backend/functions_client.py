import logging
import os
from typing import Optional

import requests

from errors import NetworkError

logger = logging.getLogger(__name__)

FUNCTIONS_URL = os.getenv("FUNCTIONS_URL", "http://localhost:8000")
FUNCTIONS_TIMEOUT = float(os.getenv("FUNCTIONS_TIMEOUT", "30"))


class FunctionsClient:
    """Calls the JSON server functions under /functions/v1/."""

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None,
                 session: Optional[requests.Session] = None):
        self.base_url = (base_url or FUNCTIONS_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else FUNCTIONS_TIMEOUT
        self.session = session or requests.Session()

    def url_for(self, name: str) -> str:
        return f"{self.base_url}/functions/v1/{name}"

    def invoke(self, name: str, body: dict) -> dict:
        try:
            resp = self.session.post(self.url_for(name), json=body, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error(f"Function {name} unreachable: {e}")
            raise NetworkError(f"Could not reach {name}: {e}") from e

        try:
            data = resp.json()
        except ValueError:
            raise NetworkError(f"{name} returned {resp.status_code} without a JSON body")

        if not resp.ok and isinstance(data, dict):
            data.setdefault("success", False)
        return data
