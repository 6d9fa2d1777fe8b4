"""
Core workflow execution engine.

This module contains the WorkflowExecutor that validates a document, runs its
steps in dependency order, compensates completed steps on failure, and keeps
listeners, metrics and the run audit store up to date.
"""

from __future__ import annotations

import logging
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from threading import Event, Lock
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple

from .context import ExecutionContext
from .errors import WorkflowCancelledError, WorkflowExecutionError
from .executors import RollbackExecutor, StepExecutor
from .scheduler import describe_plan, execution_levels, execution_order
from .steps import (
    ExecutionMode,
    ExecutionResult,
    RollbackOutcome,
    RollbackStatus,
    StepResult,
    StepStatus,
    WorkflowDocument,
    WorkflowStatus,
)
from .validator import validate_document

if TYPE_CHECKING:
    from ...invokers.base import OperationInvoker
    from ..state_manager import RunStateManager

logger = logging.getLogger(__name__)

EVENTS = ("run_started", "step_completed", "step_failed", "rollback_action", "run_finished")

Failure = Tuple[Optional[str], Exception]


class CancellationToken:
    """Cooperative cancellation flag checked between steps."""

    def __init__(self):
        self._event = Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class WorkflowExecutor:
    """Main workflow execution engine."""

    def __init__(
        self,
        invoker: "OperationInvoker",
        state_manager: Optional["RunStateManager"] = None,
        mode: ExecutionMode = ExecutionMode.SEQUENTIAL,
        max_workers: int = 4,
        enable_metrics: bool = True,
    ):
        """Initialize workflow executor.

        Args:
            invoker: Operation invoker used for steps and rollback actions
            state_manager: Run audit store
            mode: Sequential or parallel-by-generation execution
            max_workers: Thread pool size in parallel mode
            enable_metrics: Enable metrics collection
        """
        from ..state_manager import InMemoryRunStore

        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")

        self.invoker = invoker
        self.state_manager = state_manager or InMemoryRunStore()
        self.mode = mode
        self.max_workers = max_workers
        self.enable_metrics = enable_metrics
        self.step_executor = StepExecutor(invoker, enable_metrics=enable_metrics)

        self._tokens: Dict[str, CancellationToken] = {}
        self._listeners: Dict[str, List[Callable]] = {}
        self._lock = Lock()

        self._metrics = {
            "runs_started": 0,
            "runs_completed": 0,
            "runs_failed": 0,
            "runs_cancelled": 0,
            "rollback_actions": 0,
            "rollback_failed": 0,
            "rollback_skipped": 0,
            "total_duration": 0.0,
        }

    def plan(self, document: WorkflowDocument) -> Dict[str, Any]:
        """Validate a document and describe how it would run, without invoking anything."""
        validate_document(document)
        return describe_plan(document)

    def execute(
        self,
        document: WorkflowDocument,
        run_id: Optional[str] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> ExecutionResult:
        """Execute a workflow document.

        Args:
            document: Workflow document to run
            run_id: Identifier for this run (generated when omitted)
            cancellation: Token that stops the run between steps

        Returns:
            ExecutionResult with the final context and per-step results

        Raises:
            ValidationError: If the document is malformed (nothing is invoked)
            CyclicDependencyError: If the steps do not form a DAG
            WorkflowExecutionError: If a step failed or the run was cancelled,
                after rollback has run
            KeyboardInterrupt: Re-raised once completed steps are rolled back
        """
        validate_document(document)
        order = execution_order(document)

        run_id = run_id or uuid.uuid4().hex
        token = cancellation or CancellationToken()
        context = ExecutionContext(run_id)
        result = ExecutionResult(
            run_id=run_id,
            workflow_name=document.name,
            status=WorkflowStatus.RUNNING,
            mode=self.mode,
            order=order,
            start_time=datetime.now(),
            metadata={"version": document.metadata.version, "target_system": document.metadata.target_system},
        )

        with self._lock:
            self._tokens[run_id] = token
            if self.enable_metrics:
                self._metrics["runs_started"] += 1

        logger.info(
            f"Starting run {run_id} of workflow '{document.name}' "
            f"({len(order)} steps, {self.mode.value})"
        )
        self._notify("run_started", run_id, result)

        try:
            try:
                if self.mode == ExecutionMode.PARALLEL:
                    failure = self._run_parallel(document, context, result, token)
                else:
                    failure = self._run_sequential(document, order, context, result, token)
            except KeyboardInterrupt:
                logger.warning(f"Run {run_id} interrupted, rolling back completed steps")
                cancelled = WorkflowCancelledError(run_id, _next_pending(order, result))
                self._stop(document, order, context, result, None, cancelled)
                raise
            except Exception as e:
                failed_step_id = _next_pending(order, result)
                logger.error(f"Run {run_id} crashed near step {failed_step_id}: {type(e).__name__}: {e}")
                failure = failed_step_id, e
        finally:
            with self._lock:
                self._tokens.pop(run_id, None)

        if failure is None:
            result.status = WorkflowStatus.COMPLETED
            self._finalize(result, context)
            return result

        failed_step_id, error = failure
        outcomes = self._stop(document, order, context, result, failed_step_id, error)
        raise WorkflowExecutionError(failed_step_id, error, outcomes, result) from error

    def _stop(
        self,
        document: WorkflowDocument,
        order: List[str],
        context: ExecutionContext,
        result: ExecutionResult,
        failed_step_id: Optional[str],
        error: Exception,
    ) -> List[RollbackOutcome]:
        """Roll back a failed or cancelled run and finalize its result."""
        outcomes = self._rollback(document, context, result)

        result.rollback_outcomes = outcomes
        result.failed_step_id = failed_step_id
        result.error = error
        if isinstance(error, WorkflowCancelledError):
            result.status = WorkflowStatus.CANCELLED
        else:
            result.status = WorkflowStatus.FAILED
        for step_id in order:
            if step_id not in result.step_results:
                result.step_results[step_id] = StepResult(step_id=step_id, status=StepStatus.SKIPPED)

        self._finalize(result, context)
        return outcomes

    def _run_step(self, step_id: str, document: WorkflowDocument, context: ExecutionContext) -> StepResult:
        try:
            return self.step_executor.execute_step(document.get_step(step_id), context)
        except Exception as e:
            return self._crashed(step_id, context, e)

    def _crashed(self, step_id: str, context: ExecutionContext, error: Exception) -> StepResult:
        logger.error(f"Step {step_id} crashed with {type(error).__name__}: {error}")
        context.mark_failed(step_id)
        step_result = StepResult(step_id=step_id)
        step_result.complete(error=error)
        return step_result

    def _run_sequential(
        self,
        document: WorkflowDocument,
        order: List[str],
        context: ExecutionContext,
        result: ExecutionResult,
        token: CancellationToken,
    ) -> Optional[Failure]:
        for step_id in order:
            if token.cancelled:
                return None, WorkflowCancelledError(result.run_id, step_id)

            step_result = self._run_step(step_id, document, context)
            result.step_results[step_id] = step_result

            if step_result.status == StepStatus.FAILED:
                self._notify("step_failed", result.run_id, step_result)
                return step_id, step_result.error
            self._notify("step_completed", result.run_id, step_result)

        return None

    def _run_parallel(
        self,
        document: WorkflowDocument,
        context: ExecutionContext,
        result: ExecutionResult,
        token: CancellationToken,
    ) -> Optional[Failure]:
        levels = execution_levels(document)
        logger.debug(f"Run {result.run_id} has {len(levels)} generations")

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            for level in levels:
                if token.cancelled:
                    return None, WorkflowCancelledError(result.run_id, level[0])

                futures = {
                    pool.submit(self.step_executor.execute_step, document.get_step(step_id), context): step_id
                    for step_id in level
                }

                failed: List[str] = []
                for future in as_completed(futures):
                    step_id = futures[future]
                    try:
                        step_result = future.result()
                    except Exception as e:
                        step_result = self._crashed(step_id, context, e)
                    with self._lock:
                        result.step_results[step_id] = step_result
                    if step_result.status == StepStatus.FAILED:
                        failed.append(step_id)
                        self._notify("step_failed", result.run_id, step_result)
                    else:
                        self._notify("step_completed", result.run_id, step_result)

                if failed:
                    # Report the first failing step in declaration order
                    first = min(failed, key=document.declaration_index)
                    return first, result.step_results[first].error

        return None

    def _rollback(
        self, document: WorkflowDocument, context: ExecutionContext, result: ExecutionResult
    ) -> List[RollbackOutcome]:
        completed = context.completion_order
        if not completed:
            logger.info(f"Run {result.run_id}: nothing to roll back")
            return []

        def on_outcome(outcome: RollbackOutcome) -> None:
            if self.enable_metrics:
                with self._lock:
                    self._metrics["rollback_actions"] += 1
                    if outcome.status == RollbackStatus.FAILED:
                        self._metrics["rollback_failed"] += 1
                    elif outcome.status == RollbackStatus.SKIPPED:
                        self._metrics["rollback_skipped"] += 1
            self._notify("rollback_action", result.run_id, outcome)

        rollback = RollbackExecutor(self.invoker, on_outcome=on_outcome)
        outcomes = rollback.rollback(document, completed, context, result.step_results)

        failures = [o for o in outcomes if o.failed]
        if failures:
            logger.warning(
                f"Run {result.run_id}: {len(failures)} of {len(outcomes)} rollback actions failed"
            )
        return outcomes

    def _finalize(self, result: ExecutionResult, context: ExecutionContext) -> None:
        """Finalize a run.

        Args:
            result: Run result, status already set
            context: Execution context of the run
        """
        result.end_time = datetime.now()
        result.context = context.snapshot()

        if self.enable_metrics:
            with self._lock:
                if result.status == WorkflowStatus.COMPLETED:
                    self._metrics["runs_completed"] += 1
                elif result.status == WorkflowStatus.CANCELLED:
                    self._metrics["runs_cancelled"] += 1
                else:
                    self._metrics["runs_failed"] += 1
                self._metrics["total_duration"] += result.duration or 0.0

        self.state_manager.save_run(result.run_id, result)
        self._notify("run_finished", result.run_id, result)

        logger.info(
            f"Run {result.run_id} finished with status {result.status.value} "
            f"in {result.duration or 0.0:.2f}s"
        )

    def cancel(self, run_id: str) -> bool:
        """Cancel an active run.

        The run stops before its next step (or generation) and rolls back.

        Args:
            run_id: Run to cancel

        Returns:
            True if the run was active
        """
        with self._lock:
            token = self._tokens.get(run_id)
        if token is None:
            return False
        token.cancel()
        logger.info(f"Cancellation requested for run {run_id}")
        return True

    def active_runs(self) -> List[str]:
        with self._lock:
            return list(self._tokens)

    def get_run(self, run_id: str) -> Optional[Dict[str, Any]]:
        """Get the audit record of a finished run."""
        return self.state_manager.load_run(run_id)

    def add_listener(self, event: str, callback: Callable):
        """Add an event listener.

        Args:
            event: One of run_started, step_completed, step_failed,
                rollback_action, run_finished
            callback: Called as ``callback(run_id, event, payload)``
        """
        if event not in EVENTS:
            raise ValueError(f"Unknown event '{event}'; expected one of {', '.join(EVENTS)}")
        self._listeners.setdefault(event, []).append(callback)

    def _notify(self, event: str, run_id: str, payload: Any):
        for callback in self._listeners.get(event, []):
            try:
                callback(run_id, event, payload)
            except Exception as e:
                logger.error(f"Listener error on {event}: {e}")

    def get_metrics(self) -> Dict[str, Any]:
        """Get executor metrics.

        Returns:
            Metrics dictionary
        """
        with self._lock:
            metrics = self._metrics.copy()
        metrics.update(self.step_executor.get_metrics())
        return metrics


def _next_pending(order: List[str], result: ExecutionResult) -> Optional[str]:
    """First step in the order that has no result yet."""
    for step_id in order:
        if step_id not in result.step_results:
            return step_id
    return None
