"""
HTTP transport used to execute synthesized requests.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import requests
from loguru import logger

from .errors import ExecutionError
from .models import HttpRequest


class TransportResponse:
    def __init__(self, status: int, headers: Optional[Dict[str, str]] = None, body: Any = None):
        self.status = status
        self.headers = dict(headers or {})
        self.body = body

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def __repr__(self):
        return f"TransportResponse(status={self.status})"


class Transport(ABC):
    """Sends one HTTP request and returns status, headers and body."""

    @abstractmethod
    def send(self, request: HttpRequest) -> TransportResponse:
        """
        Raises:
            ExecutionError: If the request could not be performed at all
        """


class RequestsTransport(Transport):
    """Transport on a ``requests`` session with a bounded timeout."""

    def __init__(self, timeout: float = 30.0, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.session = session or requests.Session()

    def send(self, request: HttpRequest) -> TransportResponse:
        logger.debug(f"Sending {request.method} {request.url}")
        try:
            response = self.session.request(
                method=request.method,
                url=request.url,
                headers=request.headers,
                json=request.body,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"{request.method} {request.url} failed: {e}")
            raise ExecutionError(f"Request failed: {e}") from e

        return TransportResponse(response.status_code, dict(response.headers), self._decode_body(response))

    @staticmethod
    def _decode_body(response: requests.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text
