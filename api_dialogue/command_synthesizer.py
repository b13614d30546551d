"""
Conversion of a tool and its collected parameters into an HTTP request.
"""

import json
import shlex
from typing import Any, Dict, Optional
from urllib.parse import quote, urlencode
from loguru import logger

from .errors import ExecutionError
from .models import ExecutionResult, HttpRequest, ToolDescriptor
from .parameter_extractor import sanitize_parameters
from .transport import Transport


QUERY_METHODS = ("GET", "HEAD", "DELETE")


def _query_value(value: Any) -> Any:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, dict):
        return json.dumps(value)
    if isinstance(value, list):
        return [_query_value(item) for item in value]
    return value


class CommandSynthesizer:
    """Builds requests for compiled tools and executes them through a transport."""

    def __init__(self, auth_token: Optional[str] = None):
        self.auth_token = auth_token

    def synthesize(self, tool: ToolDescriptor, parameters: Dict[str, Any]) -> HttpRequest:
        """
        Build the HTTP request for one call.

        Path placeholders are filled with URL-encoded values. Header
        parameters become headers and declared query parameters always go in
        the query string. Everything else goes in the query string for GET,
        HEAD and DELETE, or in a JSON body for the other methods.

        Args:
            tool: Tool to call
            parameters: Collected values keyed by declared field name

        Returns:
            HttpRequest with method, url, headers and optional body
        """
        schema = tool.input_schema
        working = {key: value for key, value in sanitize_parameters(parameters).items() if key in schema}

        path = tool.endpoint.path
        for name in list(working):
            placeholder = f"{{{name}}}"
            if placeholder in path:
                path = path.replace(placeholder, quote(str(working.pop(name)), safe=""))

        headers = {"Accept": "application/json"}
        query: Dict[str, Any] = {}
        remaining: Dict[str, Any] = {}
        for name, value in working.items():
            location = schema.get(name).location
            if location == "header":
                headers[name] = str(value)
            elif location == "query":
                query[name] = value
            elif location != "path":
                remaining[name] = value

        body = None
        if tool.endpoint.method in QUERY_METHODS:
            query.update(remaining)
        elif remaining:
            if list(remaining) == ["body"]:
                body = remaining["body"]
            else:
                body = remaining

        if body is not None:
            headers["Content-Type"] = "application/json"
        if tool.security and self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"

        url = f"{tool.endpoint.base_url}{path}"
        if query:
            url += "?" + urlencode({key: _query_value(value) for key, value in query.items()}, doseq=True)

        request = HttpRequest(tool.endpoint.method, url, headers, body)
        logger.debug(f"Synthesized {request!r} for {tool.name}")
        return request

    def to_curl_string(self, request: HttpRequest) -> str:
        """Human-readable curl command; the bearer token is masked."""
        parts = ["curl", "-X", request.method, shlex.quote(request.url)]
        for key, value in request.headers.items():
            if key == "Authorization":
                value = "Bearer ***"
            parts.extend(["-H", shlex.quote(f"{key}: {value}")])
        if request.body is not None:
            parts.extend(["-d", shlex.quote(json.dumps(request.body))])
        return " ".join(parts)

    def execute(self, request: HttpRequest, transport: Transport) -> ExecutionResult:
        """
        Send a request and report the outcome.

        Transport failures and non-2xx statuses come back as unsuccessful
        results; nothing is raised.
        """
        try:
            response = transport.send(request)
        except ExecutionError as e:
            logger.error(f"Execution of {request!r} failed: {e}")
            return ExecutionResult(False, e.status_code, error=str(e))

        if not response.ok:
            logger.error(f"Execution of {request!r} returned {response.status}")
            return ExecutionResult(False, response.status, response.body, f"HTTP {response.status}")

        logger.info(f"Execution of {request!r} returned {response.status}")
        return ExecutionResult(True, response.status, response.body)
