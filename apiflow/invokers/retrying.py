"""Retry policy applied at the invoker boundary."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional

from ..orchestration.workflow_engine.errors import OperationError
from ..orchestration.workflow_engine.steps import OperationDescriptor
from ..utils.retry import RetryConfig, RetryExhaustedError, retry_sync
from .base import OperationInvoker

logger = logging.getLogger(__name__)


class RetryingInvoker(OperationInvoker):
    """Wraps another invoker with bounded exponential backoff.

    Only OperationErrors flagged ``retriable`` (timeouts, transport errors,
    408/429/5xx responses) are retried. The executor still sees one atomic
    call: a payload, or a single OperationError once the budget is spent.
    """

    def __init__(
        self,
        inner: OperationInvoker,
        retry_config: Optional[RetryConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.inner = inner
        self.retry_config = retry_config or RetryConfig()
        self._call = retry_sync(self.retry_config, sleep=sleep)(self.inner.invoke)

    def invoke(self, descriptor: OperationDescriptor, inputs: Dict[str, Any]) -> Any:
        try:
            return self._call(descriptor, inputs)
        except RetryExhaustedError as e:
            last = e.last_exception
            if isinstance(last, OperationError):
                raise OperationError(
                    last.target,
                    f"{last.message} (gave up after {e.attempts} attempts)",
                    status_code=last.status_code,
                    retriable=False,
                    details=last.details,
                ) from e
            raise OperationError(descriptor.target, str(e)) from e

    def close(self) -> None:
        self.inner.close()
