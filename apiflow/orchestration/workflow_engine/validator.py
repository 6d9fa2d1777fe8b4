"""
Structural validation of workflow documents.

Validation runs before any network activity and reports every problem it
finds in one pass.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional

from .errors import CyclicDependencyError, ValidationError, Violation
from .references import Reference
from .scheduler import build_dependency_graph, find_cycles
from .steps import WorkflowDocument

logger = logging.getLogger(__name__)

_STEP_ID = re.compile(r"^[A-Za-z_][\w\-]*$")


def collect_violations(document: WorkflowDocument) -> List[Violation]:
    """Return every violation in the document, cycles included."""
    violations: List[Violation] = []

    if not document.steps:
        violations.append(Violation("Workflow must have at least one step"))

    seen = set()
    for step in document.steps:
        if step.id in seen:
            violations.append(Violation(f"Duplicate step ID: {step.id}", step.id))
        seen.add(step.id)
        if not _STEP_ID.match(step.id):
            violations.append(
                Violation(
                    f"Step ID '{step.id}' must start with a letter or underscore and "
                    "contain only letters, digits, '_' or '-'",
                    step.id,
                )
            )

    declared_outputs: Dict[str, set] = {}
    for step in document.steps:
        declared_outputs.setdefault(step.id, set()).update(step.outputs)

    for step in document.steps:
        for name in step.required_inputs:
            if name not in step.inputs:
                violations.append(
                    Violation(f"Required input '{name}' has no literal or reference", step.id)
                )
        overlap = set(step.required_inputs) & set(step.optional_inputs)
        for name in sorted(overlap):
            violations.append(
                Violation(f"Input '{name}' is listed as both required and optional", step.id)
            )
        for ref in step.references():
            problem = _check_reference(ref, declared_outputs)
            if problem:
                violations.append(Violation(problem, step.id))
        for dep in step.depends_on:
            if dep not in declared_outputs:
                violations.append(Violation(f"Dependency on unknown step '{dep}'", step.id))

    for key, actions in document.rollback_plan.items():
        if key not in declared_outputs:
            violations.append(Violation(f"Rollback plan refers to unknown step '{key}'", key))
        for index, action in enumerate(actions):
            undone = action.depends_on_step_id or key
            if action.depends_on_step_id and undone not in declared_outputs:
                violations.append(
                    Violation(
                        f"Rollback action #{index} under '{key}' undoes unknown step '{undone}'",
                        key,
                    )
                )
            for ref in action.references():
                problem = _check_reference(ref, declared_outputs)
                if problem:
                    violations.append(
                        Violation(f"Rollback action #{index} under '{key}': {problem}", key)
                    )

    dag = build_dependency_graph(document)
    for cycle in find_cycles(dag):
        violations.append(
            Violation(f"Dependency cycle between steps: {', '.join(cycle)}", cycle[0])
        )

    return violations


def validate_document(document: WorkflowDocument) -> None:
    """Verify a workflow document is well formed.

    Raises:
        CyclicDependencyError: If the only problems are dependency cycles
        ValidationError: Listing every violation otherwise. Cycles found
            alongside other violations are still listed in its ``cycles``.
    """
    violations = collect_violations(document)
    if not violations:
        logger.debug(f"Workflow {document.name} passed validation")
        return

    cycles = find_cycles(build_dependency_graph(document))
    cycle_violations = len(cycles)
    if cycles and cycle_violations == len(violations):
        raise CyclicDependencyError(cycles)
    raise ValidationError(violations, cycles)


def is_valid(document: WorkflowDocument) -> bool:
    return not collect_violations(document)


def _check_reference(ref: Reference, declared_outputs: Dict[str, set]) -> Optional[str]:
    if ref.step_id not in declared_outputs:
        return f"Reference {ref.text} names unknown step '{ref.step_id}'"
    if ref.output not in declared_outputs[ref.step_id]:
        return f"Reference {ref.text} names undeclared output '{ref.output}' of step '{ref.step_id}'"
    return None
