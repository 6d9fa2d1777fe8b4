"""
Dependency graph construction and deterministic scheduling.

An edge ``A -> B`` exists whenever one of B's inputs references an output of
A, or B lists A in ``depends_on``. Orders are deterministic: when several
steps are ready at once, the one declared first in the document goes first.
"""

from __future__ import annotations

import logging
from typing import Dict, List

import networkx as nx

from .errors import CyclicDependencyError
from .steps import WorkflowDocument

logger = logging.getLogger(__name__)


def build_dependency_graph(document: WorkflowDocument) -> nx.DiGraph:
    """Convert a workflow document into a directed dependency graph.

    Node attributes: ``step`` (the Step) and ``index`` (declaration order).
    Edge attributes: ``outputs`` (the referenced output names).
    References to unknown steps are ignored here; the validator reports them.
    """
    dag = nx.DiGraph()
    for index, step in enumerate(document.steps):
        if step.id not in dag:
            dag.add_node(step.id, step=step, index=index)

    for step in document.steps:
        for ref in step.references():
            if ref.step_id not in dag:
                continue
            if dag.has_edge(ref.step_id, step.id):
                dag.edges[ref.step_id, step.id]["outputs"].add(ref.output)
            else:
                dag.add_edge(ref.step_id, step.id, outputs={ref.output})
        for dep in step.depends_on:
            if dep in dag and not dag.has_edge(dep, step.id):
                dag.add_edge(dep, step.id, outputs=set())

    return dag


def find_cycles(dag: nx.DiGraph) -> List[List[str]]:
    """Find every dependency cycle.

    Each strongly connected component with more than one node, and every
    self-referencing node, is reported once with its members in declaration
    order.
    """
    cycles = []
    for component in nx.strongly_connected_components(dag):
        if len(component) > 1 or any(dag.has_edge(n, n) for n in component):
            cycles.append(sorted(component, key=lambda n: dag.nodes[n]["index"]))
    cycles.sort(key=lambda members: dag.nodes[members[0]]["index"])
    return cycles


def _ensure_acyclic(dag: nx.DiGraph) -> None:
    if not nx.is_directed_acyclic_graph(dag):
        raise CyclicDependencyError(find_cycles(dag))


def execution_order(document: WorkflowDocument) -> List[str]:
    """Deterministic topological order of step ids.

    Raises:
        CyclicDependencyError: If the document contains a dependency cycle
    """
    dag = build_dependency_graph(document)
    _ensure_acyclic(dag)
    order = list(
        nx.lexicographical_topological_sort(dag, key=lambda n: dag.nodes[n]["index"])
    )
    logger.debug(f"Execution order for {document.name}: {order}")
    return order


def execution_levels(document: WorkflowDocument) -> List[List[str]]:
    """Group steps into generations of mutually independent steps.

    Every step in a generation depends only on steps from earlier
    generations, so a generation may run concurrently once the previous one
    has finished.

    Raises:
        CyclicDependencyError: If the document contains a dependency cycle
    """
    dag = build_dependency_graph(document)
    _ensure_acyclic(dag)
    return [
        sorted(generation, key=lambda n: dag.nodes[n]["index"])
        for generation in nx.topological_generations(dag)
    ]


def dependencies_of(document: WorkflowDocument, step_id: str) -> List[str]:
    """Direct predecessors of a step, in declaration order."""
    dag = build_dependency_graph(document)
    if step_id not in dag:
        raise KeyError(step_id)
    return sorted(dag.predecessors(step_id), key=lambda n: dag.nodes[n]["index"])


def describe_plan(document: WorkflowDocument) -> Dict[str, object]:
    """Summary of the schedule for display and audit."""
    dag = build_dependency_graph(document)
    _ensure_acyclic(dag)
    return {
        "workflow": document.name,
        "order": execution_order(document),
        "levels": execution_levels(document),
        "dependencies": {
            step_id: sorted(dag.predecessors(step_id), key=lambda n: dag.nodes[n]["index"])
            for step_id in document.step_ids
            if step_id in dag
        },
    }
