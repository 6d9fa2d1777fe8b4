"""
Step execution and compensating rollback.

StepExecutor runs one step: resolve inputs from the context, invoke the
operation, extract outputs back into the context. RollbackExecutor undoes
completed steps in reverse completion order, best-effort.
"""

from __future__ import annotations

import logging
from threading import Lock
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple

from .context import ExecutionContext
from .errors import MissingOutputError, OperationError, ResolutionError, RollbackActionError
from .paths import PathNotFound, evaluate_path
from .references import resolve_inputs, resolve_value
from .steps import (
    RollbackAction,
    RollbackOutcome,
    RollbackStatus,
    Step,
    StepResult,
    StepStatus,
    WorkflowDocument,
)

if TYPE_CHECKING:
    from ...invokers.base import OperationInvoker

logger = logging.getLogger(__name__)

OutcomeCallback = Callable[[RollbackOutcome], None]


def extract_outputs(step: Step, response: Any) -> Tuple[Dict[str, Any], List[MissingOutputError]]:
    """Apply each declared output path to an operation response.

    Paths are evaluated relative to the descriptor's ``response_root`` when
    one is declared. Absent fields never become None: they are reported as
    MissingOutputError and left out of the outputs.

    Returns:
        Tuple of (extracted outputs, missing output errors)
    """
    outputs: Dict[str, Any] = {}
    missing: List[MissingOutputError] = []

    root_path = step.operation.response_root
    base = response
    if root_path:
        try:
            base = evaluate_path(response, root_path)
        except PathNotFound as e:
            for name, path in step.outputs.items():
                missing.append(
                    MissingOutputError(step.id, name, f"{root_path}.{path}" if path else root_path, e.reason)
                )
            return outputs, missing

    for name, path in step.outputs.items():
        try:
            outputs[name] = evaluate_path(base, path)
        except PathNotFound as e:
            full_path = f"{root_path}.{path}" if root_path and path else (path or root_path or "")
            missing.append(MissingOutputError(step.id, name, full_path, e.reason))

    return outputs, missing


def _wrap_unexpected(step: Step, error: Exception, stage: Optional[str] = None) -> OperationError:
    """Turn an arbitrary exception raised while running a step into an OperationError."""
    where = f"{stage} raised " if stage else ""
    wrapped = OperationError(step.operation.target, f"{where}{type(error).__name__}: {error}")
    wrapped.__cause__ = error
    return wrapped


class StepExecutor:
    """Executes single steps against an operation invoker."""

    def __init__(self, invoker: "OperationInvoker", enable_metrics: bool = True):
        """Initialize step executor.

        Args:
            invoker: Operation invoker boundary
            enable_metrics: Enable metrics collection
        """
        self.invoker = invoker
        self.enable_metrics = enable_metrics
        self._metrics = {
            "steps_executed": 0,
            "steps_failed": 0,
            "missing_outputs": 0,
        }
        self._lock = Lock()

    def execute_step(self, step: Step, context: ExecutionContext) -> StepResult:
        """Execute a workflow step.

        A step whose inputs cannot be resolved is never invoked. On success
        the extracted outputs are written to the context before returning.

        Args:
            step: Step to execute
            context: Execution context of the current run

        Returns:
            StepResult, failed with ResolutionError or OperationError on error
        """
        result = StepResult(step_id=step.id)
        result.start()
        logger.info(f"Executing step: {step.display_name}")

        try:
            inputs = resolve_inputs(step, context)
        except ResolutionError as e:
            logger.error(f"Step {step.id} not invoked: {e}")
            return self._fail(result, context, e)

        result.inputs = inputs
        try:
            response = self.invoker.invoke(step.operation, inputs)
        except OperationError as e:
            logger.error(f"Step {step.id} failed: {e}")
            return self._fail(result, context, e)
        except Exception as e:
            logger.error(f"Step {step.id} raised unexpected {type(e).__name__}: {e}")
            return self._fail(result, context, _wrap_unexpected(step, e))

        try:
            outputs, missing = extract_outputs(step, response)
        except Exception as e:
            logger.error(f"Step {step.id}: output extraction raised {type(e).__name__}: {e}")
            result.response = response
            return self._fail(result, context, _wrap_unexpected(step, e, "output extraction"))

        for error in missing:
            logger.warning(str(error))

        result.response = response
        result.outputs = outputs
        result.missing_outputs = missing
        result.sequence = context.record_outputs(step.id, outputs, missing)
        result.complete()

        if self.enable_metrics:
            with self._lock:
                self._metrics["steps_executed"] += 1
                self._metrics["missing_outputs"] += len(missing)
        logger.debug(f"Step {step.id} produced outputs: {sorted(outputs)}")
        return result

    def _fail(self, result: StepResult, context: ExecutionContext, error: Exception) -> StepResult:
        result.complete(error=error)
        context.mark_failed(result.step_id)
        if self.enable_metrics:
            with self._lock:
                self._metrics["steps_executed"] += 1
                self._metrics["steps_failed"] += 1
        return result

    def get_metrics(self) -> Dict[str, Any]:
        with self._lock:
            return self._metrics.copy()


class RollbackExecutor:
    """Runs compensating actions for completed steps.

    Rollback is a fold over completed steps, newest first, that accumulates
    one outcome per action. A failing action is recorded and the remaining
    actions still run; nothing is retried.
    """

    def __init__(self, invoker: "OperationInvoker", on_outcome: Optional[OutcomeCallback] = None):
        self.invoker = invoker
        self.on_outcome = on_outcome

    def rollback(
        self,
        document: WorkflowDocument,
        completed: List[str],
        context: ExecutionContext,
        step_results: Optional[Dict[str, StepResult]] = None,
    ) -> List[RollbackOutcome]:
        """Compensate completed steps in strict reverse completion order.

        Args:
            document: Workflow document holding the rollback plan
            completed: Step ids in forward completion order
            context: Execution context of the failed run
            step_results: Step results to mark ROLLED_BACK when fully undone

        Returns:
            Every rollback outcome, in execution order
        """
        outcomes: List[RollbackOutcome] = []
        logger.info(f"Rolling back {len(completed)} completed steps")

        for step_id in reversed(completed):
            actions = document.compensations_for(step_id)
            if not actions:
                logger.info(f"Step {step_id} has no compensation; leaving it as-is")
                continue

            step_outcomes = [
                self._run_action(step_id, index, action, context)
                for index, action in enumerate(actions)
            ]
            outcomes.extend(step_outcomes)

            if all(o.status == RollbackStatus.COMPLETED for o in step_outcomes):
                context.remove_step(step_id)
                if step_results and step_id in step_results:
                    step_results[step_id].status = StepStatus.ROLLED_BACK
                logger.info(f"Rolled back step {step_id}")

        return outcomes

    def _run_action(
        self, step_id: str, index: int, action: RollbackAction, context: ExecutionContext
    ) -> RollbackOutcome:
        target = action.target_operation.target

        if action.condition is not None and not action.condition.evaluate(context):
            logger.info(
                f"Skipping rollback action #{index} ({target}) for {step_id}: "
                f"condition {action.condition.op} {action.condition.ref} is false"
            )
            return self._emit(
                RollbackOutcome(
                    step_id=step_id,
                    action_index=index,
                    target=target,
                    status=RollbackStatus.SKIPPED,
                    reason=f"condition {action.condition.op} {action.condition.ref} is false",
                )
            )

        try:
            inputs = resolve_value(action.inputs, context, f"rollback:{step_id}")
            response = self.invoker.invoke(action.target_operation, inputs)
        except Exception as e:
            error = RollbackActionError(step_id, index, e)
            logger.error(str(error))
            return self._emit(
                RollbackOutcome(
                    step_id=step_id,
                    action_index=index,
                    target=target,
                    status=RollbackStatus.FAILED,
                    error=error,
                )
            )

        logger.info(f"Rollback action #{index} ({target}) for {step_id} completed")
        return self._emit(
            RollbackOutcome(
                step_id=step_id,
                action_index=index,
                target=target,
                status=RollbackStatus.COMPLETED,
                response=response,
            )
        )

    def _emit(self, outcome: RollbackOutcome) -> RollbackOutcome:
        if self.on_outcome:
            try:
                self.on_outcome(outcome)
            except Exception as e:
                logger.error(f"Rollback callback error: {e}")
        return outcome
