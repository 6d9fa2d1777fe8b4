"""Operation invokers: the transport boundary of the workflow executor."""

from .base import (
    OperationInvoker,
    PayloadTemplateError,
    build_payload,
    check_rejection,
    render_payload,
)
from .http import HttpOperationInvoker
from .memory import InMemoryInvoker, InvocationRecord
from .retrying import RetryingInvoker

__all__ = [
    "HttpOperationInvoker",
    "InMemoryInvoker",
    "InvocationRecord",
    "OperationInvoker",
    "PayloadTemplateError",
    "RetryingInvoker",
    "build_payload",
    "check_rejection",
    "render_payload",
]
