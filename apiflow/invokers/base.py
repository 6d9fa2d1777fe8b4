"""Operation invoker boundary shared by every transport."""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Optional

from ..orchestration.workflow_engine.errors import OperationError
from ..orchestration.workflow_engine.paths import PathNotFound, evaluate_path
from ..orchestration.workflow_engine.steps import OperationDescriptor

logger = logging.getLogger(__name__)

_WHOLE_PLACEHOLDER = re.compile(r"^\$([A-Za-z_]\w*)$")
_EMBEDDED_PLACEHOLDER = re.compile(r"\$\{([A-Za-z_]\w*)\}")

_MISSING = object()


class PayloadTemplateError(ValueError):
    """A payload template names an input that was not provided."""

    def __init__(self, placeholder: str):
        self.placeholder = placeholder
        super().__init__(f"Payload template placeholder '{placeholder}' has no resolved input")


class OperationInvoker(ABC):
    """Performs one remote call for a resolved step.

    Implementations return the decoded response payload on success and raise
    OperationError on any remote failure, timeouts included. Transport,
    authentication and retry policy all live behind this boundary.
    """

    @abstractmethod
    def invoke(self, descriptor: OperationDescriptor, inputs: Dict[str, Any]) -> Any:
        """Invoke an operation.

        Args:
            descriptor: Operation template
            inputs: Resolved input mapping

        Returns:
            Response payload

        Raises:
            OperationError: If the remote side reports a failure
        """
        pass

    def close(self) -> None:
        """Release transport resources."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


def render_payload(template: Any, inputs: Mapping[str, Any]) -> Any:
    """Map resolved inputs into a payload template.

    - No template: the inputs themselves are the payload.
    - ``"$name"``: replaced by ``inputs[name]`` with its type preserved. As a
      mapping value, a missing input removes the key instead.
    - ``"${name}"`` inside a longer string: interpolated as text.
    - ``"$$..."``: escapes a leading ``$``.

    Raises:
        PayloadTemplateError: If a placeholder outside a mapping value has no input
    """
    if template is None:
        return dict(inputs)
    return _render(template, inputs, in_mapping=False)


def _render(template: Any, inputs: Mapping[str, Any], in_mapping: bool) -> Any:
    if isinstance(template, str):
        if template.startswith("$$"):
            return template[1:]
        whole = _WHOLE_PLACEHOLDER.match(template)
        if whole:
            name = whole.group(1)
            if name in inputs:
                return inputs[name]
            if in_mapping:
                return _MISSING
            raise PayloadTemplateError(name)
        return _EMBEDDED_PLACEHOLDER.sub(lambda m: _interpolate(m.group(1), inputs), template)
    if isinstance(template, dict):
        rendered = {}
        for key, value in template.items():
            value = _render(value, inputs, in_mapping=True)
            if value is not _MISSING:
                rendered[key] = value
        return rendered
    if isinstance(template, (list, tuple)):
        return [_render(item, inputs, in_mapping=False) for item in template]
    return template


def _interpolate(name: str, inputs: Mapping[str, Any]) -> str:
    if name not in inputs:
        raise PayloadTemplateError(name)
    value = inputs[name]
    return value if isinstance(value, str) else json.dumps(value, default=str)


def build_payload(descriptor: OperationDescriptor, inputs: Mapping[str, Any]) -> Any:
    """Render the descriptor's template, reporting problems as OperationError."""
    try:
        return render_payload(descriptor.payload_template, inputs)
    except PayloadTemplateError as e:
        raise OperationError(descriptor.target, str(e)) from e


def check_rejection(descriptor: OperationDescriptor, payload: Any) -> None:
    """Raise when the descriptor's error path holds a non-empty value.

    This is how validation rejections that arrive inside a successful
    transport response (for example GraphQL ``userErrors``) become failures.
    """
    if not descriptor.error_path:
        return
    try:
        errors = evaluate_path(payload, descriptor.error_path)
    except PathNotFound:
        return
    if errors not in (None, "", [], {}):
        raise OperationError(
            descriptor.target,
            f"operation rejected: {_summarize(errors)}",
            details=errors,
        )


def _summarize(errors: Any) -> str:
    if isinstance(errors, list):
        messages = [e.get("message", str(e)) if isinstance(e, dict) else str(e) for e in errors]
        return "; ".join(messages)
    if isinstance(errors, dict):
        return str(errors.get("message", errors))
    return str(errors)


def describe_descriptor(descriptor: OperationDescriptor, protocol: Optional[str] = None) -> str:
    protocol = descriptor.protocol or protocol or "?"
    if protocol == "rest":
        return f"{descriptor.method} {descriptor.target}"
    return f"{protocol}:{descriptor.target}"
