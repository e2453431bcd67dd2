"""HTTP request node."""

import json
from typing import Any, Dict, Optional

import httpx

from ..core.logging import get_logger
from ..models.core import NodeResult
from .base import failure, success

logger = get_logger(__name__)

_BODY_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


class HttpRequestHandler:
    """Performs an HTTP request described by the node parameters.

    Parameters:
        url: Request URL (required)
        method: HTTP method, GET by default
        headers: Mapping or JSON string of request headers
        body: Request body; mappings and lists are sent as JSON. When omitted
            on a body-carrying method, the node input is sent instead.
        timeout: Per-request timeout in seconds

    The output is ``{statusCode, headers, body}``. A missing URL, a transport
    error or a response status of 400 or above produces an ERROR result.
    """

    def __init__(self, timeout: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self.transport = transport

    async def __call__(self, node_id: str, parameters: Dict[str, Any], input_data: Any) -> NodeResult:
        url = parameters.get("url")
        if not url:
            return failure(node_id, "HTTP request node requires a 'url' parameter")

        method = str(parameters.get("method") or "GET").upper()

        try:
            headers = _parse_json(parameters.get("headers"), default={})
        except ValueError as e:
            return failure(node_id, f"Invalid headers: {e}")
        if not isinstance(headers, dict):
            return failure(node_id, "Headers must be a JSON object")

        body = parameters.get("body")
        if body is None and method in _BODY_METHODS:
            body = input_data

        request_kwargs: Dict[str, Any] = {"headers": {str(k): str(v) for k, v in headers.items()}}
        if body is not None and method in _BODY_METHODS:
            if isinstance(body, (dict, list)):
                request_kwargs["json"] = body
            else:
                request_kwargs["content"] = str(body)

        timeout = parameters.get("timeout") or self.timeout

        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self.transport) as client:
                response = await client.request(method, url, **request_kwargs)
        except httpx.RequestError as e:
            logger.warning(f"HTTP node {node_id} request to {url} failed: {e}")
            return failure(node_id, f"HTTP request error: {e}")

        try:
            response_body = response.json()
        except ValueError:
            response_body = response.text

        output = {
            "statusCode": response.status_code,
            "headers": dict(response.headers),
            "body": response_body,
        }

        if response.status_code >= 400:
            return failure(node_id, f"HTTP request failed with status {response.status_code}")

        return success(node_id, output)


def _parse_json(value: Any, default: Any) -> Any:
    if value is None or value == "":
        return default
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError as e:
            raise ValueError(str(e)) from e
    return value
