"""
HTTP operation invoker.

Speaks two request/response styles:

- GraphQL: every operation is a POST of ``{"query", "variables"}`` to one
  endpoint. A top-level ``errors`` array, or a non-empty ``error_path`` value,
  marks the call as failed.
- REST: ``method`` + ``target`` path relative to the base endpoint, with the
  rendered payload as JSON body (query parameters for GET). Non-2xx
  statuses, or a non-empty ``error_path`` value, mark the call as failed.

Timeouts and transport errors surface as retriable OperationErrors so a
RetryingInvoker can back off and try again.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from ..orchestration.workflow_engine.errors import OperationError
from ..orchestration.workflow_engine.steps import OperationDescriptor
from ..utils.retry import RETRIABLE_STATUS_CODES
from .base import (
    OperationInvoker,
    PayloadTemplateError,
    build_payload,
    check_rejection,
    describe_descriptor,
    render_payload,
)

logger = logging.getLogger(__name__)

SUPPORTED_PROTOCOLS = ("graphql", "rest")


class HttpOperationInvoker(OperationInvoker):
    """Invoke workflow operations over HTTP with httpx."""

    def __init__(
        self,
        endpoint: str,
        protocol: str = "graphql",
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 30.0,
        connect_timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """Initialize the invoker.

        Args:
            endpoint: GraphQL endpoint URL, or REST base URL
            protocol: Default protocol for descriptors that do not declare one
            headers: Static headers sent with every request
            timeout: Per-request timeout in seconds
            connect_timeout: Connection timeout in seconds
            client: Pre-built httpx client (caller keeps ownership)
            transport: Custom httpx transport, used when no client is given
        """
        if protocol not in SUPPORTED_PROTOCOLS:
            raise ValueError(f"Unsupported protocol '{protocol}'")
        if not endpoint:
            raise ValueError("An endpoint URL is required")

        self.endpoint = endpoint
        self.protocol = protocol
        self._owns_client = client is None
        self._client = client or httpx.Client(
            headers=headers or {},
            timeout=httpx.Timeout(timeout, connect=connect_timeout),
            transport=transport,
        )

    def invoke(self, descriptor: OperationDescriptor, inputs: Dict[str, Any]) -> Any:
        protocol = descriptor.protocol or self.protocol
        payload = build_payload(descriptor, inputs)
        logger.debug(f"HTTP invoke {describe_descriptor(descriptor, self.protocol)}")

        if protocol == "graphql":
            body = self._invoke_graphql(descriptor, payload)
        else:
            body = self._invoke_rest(descriptor, payload, inputs)

        check_rejection(descriptor, body)
        return body

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def _invoke_graphql(self, descriptor: OperationDescriptor, variables: Any) -> Any:
        if not descriptor.query:
            raise OperationError(descriptor.target, "GraphQL operation has no query document")

        request_body = {"query": descriptor.query, "variables": variables}
        response = self._send(descriptor, "POST", self.endpoint, json=request_body)
        body = self._decode(descriptor, response)
        self._raise_for_status(descriptor, response, body)

        if isinstance(body, dict) and body.get("errors"):
            errors = body["errors"]
            messages = "; ".join(
                e.get("message", str(e)) if isinstance(e, dict) else str(e) for e in errors
            )
            raise OperationError(
                descriptor.target, f"GraphQL errors: {messages}", response.status_code, details=errors
            )
        return body

    def _invoke_rest(
        self, descriptor: OperationDescriptor, payload: Any, inputs: Dict[str, Any]
    ) -> Any:
        url = self._rest_url(descriptor, inputs)
        method = descriptor.method
        if method in ("GET", "DELETE", "HEAD"):
            params = payload if isinstance(payload, dict) and payload else None
            response = self._send(descriptor, method, url, params=params)
        else:
            response = self._send(descriptor, method, url, json=payload)

        body = self._decode(descriptor, response)
        self._raise_for_status(descriptor, response, body)
        return body

    def _rest_url(self, descriptor: OperationDescriptor, inputs: Dict[str, Any]) -> str:
        try:
            target = str(render_payload(descriptor.target, inputs))
        except PayloadTemplateError as e:
            raise OperationError(descriptor.target, str(e)) from e
        if target.startswith(("http://", "https://")):
            return target
        return f"{self.endpoint.rstrip('/')}/{target.lstrip('/')}"

    def _send(self, descriptor: OperationDescriptor, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise OperationError(
                descriptor.target, f"request timed out: {e}", retriable=True
            ) from e
        except httpx.TransportError as e:
            raise OperationError(
                descriptor.target, f"transport error: {e}", retriable=True
            ) from e
        except httpx.HTTPError as e:
            raise OperationError(descriptor.target, f"HTTP error: {e}") from e

    @staticmethod
    def _decode(descriptor: OperationDescriptor, response: httpx.Response) -> Any:
        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            if response.is_success:
                return {"text": response.text}
            return None

    @staticmethod
    def _raise_for_status(
        descriptor: OperationDescriptor, response: httpx.Response, body: Any
    ) -> None:
        if response.is_success:
            return
        raise OperationError(
            descriptor.target,
            f"HTTP {response.status_code} {response.reason_phrase}".strip(),
            status_code=response.status_code,
            retriable=response.status_code in RETRIABLE_STATUS_CODES,
            details=body if body is not None else response.text,
        )
