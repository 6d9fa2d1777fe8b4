"""In-process invoker that routes operation targets to Python handlers."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Callable, Dict, List, Optional

from ..orchestration.workflow_engine.errors import OperationError
from ..orchestration.workflow_engine.steps import OperationDescriptor
from .base import OperationInvoker, build_payload, check_rejection

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Any]


@dataclass
class InvocationRecord:
    """One call seen by the in-memory invoker."""

    target: str
    inputs: Dict[str, Any]
    payload: Any
    error: Optional[Exception] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class InMemoryInvoker(OperationInvoker):
    """Invoker backed by registered handlers.

    A handler receives the rendered payload and returns the response, or
    raises to signal failure. A non-callable registration is returned as a
    static response. Every call is recorded in ``calls``.
    """

    def __init__(self, handlers: Optional[Dict[str, Any]] = None):
        self._handlers: Dict[str, Any] = dict(handlers or {})
        self._lock = Lock()
        self.calls: List[InvocationRecord] = []

    def register(self, target: str, handler: Any) -> None:
        self._handlers[target] = handler

    def on(self, target: str) -> Callable[[Handler], Handler]:
        """Decorator form of ``register``."""

        def decorator(func: Handler) -> Handler:
            self.register(target, func)
            return func

        return decorator

    @property
    def targets_called(self) -> List[str]:
        with self._lock:
            return [call.target for call in self.calls]

    def reset(self) -> None:
        with self._lock:
            self.calls.clear()

    def invoke(self, descriptor: OperationDescriptor, inputs: Dict[str, Any]) -> Any:
        payload = build_payload(descriptor, inputs)
        record = InvocationRecord(target=descriptor.target, inputs=dict(inputs), payload=payload)
        with self._lock:
            self.calls.append(record)

        if descriptor.target not in self._handlers:
            record.error = OperationError(descriptor.target, "no handler registered")
            raise record.error

        handler = self._handlers[descriptor.target]
        logger.debug(f"In-memory invoke {descriptor.target}")
        try:
            response = handler(payload) if callable(handler) else copy.deepcopy(handler)
        except OperationError as e:
            record.error = e
            raise
        except Exception as e:
            record.error = OperationError(descriptor.target, f"{type(e).__name__}: {e}")
            raise record.error from e

        try:
            check_rejection(descriptor, response)
        except OperationError as e:
            record.error = e
            raise
        return response
