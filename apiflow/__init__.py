"""apiflow: dependency-aware execution of API workflow documents with compensating rollback."""

__version__ = "1.0.0"

from .orchestration.loader import dump_workflow, load_workflow, load_workflow_from_string, parse_workflow
from .orchestration.workflow_engine import (
    CancellationToken,
    ExecutionMode,
    ExecutionResult,
    WorkflowDocument,
    WorkflowError,
    WorkflowExecutionError,
    WorkflowExecutor,
)

__all__ = [
    "CancellationToken",
    "ExecutionMode",
    "ExecutionResult",
    "WorkflowDocument",
    "WorkflowError",
    "WorkflowExecutionError",
    "WorkflowExecutor",
    "__version__",
    "dump_workflow",
    "load_workflow",
    "load_workflow_from_string",
    "parse_workflow",
]
