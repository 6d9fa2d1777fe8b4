"""Global pytest fixtures and configuration.

This module provides shared fixtures for all tests including:
- A document factory that builds validated WorkflowDocuments from plain dicts
- The four-step country/zone/countries/method scenario and its invoker
- Logging isolation for the ``apiflow`` logger
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

import pytest

from apiflow.invokers import InMemoryInvoker
from apiflow.orchestration.loader import parse_workflow
from apiflow.orchestration.workflow_engine import WorkflowDocument


def step(step_id: str, target: Optional[str] = None, inputs=None, outputs=None, **extra) -> Dict[str, Any]:
    """Plain-dict step with an operation named after the step."""
    data = {
        "id": step_id,
        "operation": {"target": target or step_id},
        "inputs": inputs or {},
        "outputs": outputs or {},
    }
    data.update(extra)
    return data


def action(target: str, inputs=None, **extra) -> Dict[str, Any]:
    data = {"target_operation": {"target": target}, "inputs": inputs or {}}
    data.update(extra)
    return data


@pytest.fixture
def make_document() -> Callable[..., WorkflowDocument]:
    """Factory building a WorkflowDocument from step and rollback dicts."""

    def _make(steps: List[Dict[str, Any]], rollback: Optional[Dict[str, Any]] = None, name: str = "test-workflow"):
        return parse_workflow(
            {
                "workflow_metadata": {"name": name, "version": "1.0"},
                "workflow_steps": steps,
                "rollback_strategy": rollback or {},
            }
        )

    return _make


@pytest.fixture
def step_factory():
    return step


@pytest.fixture
def action_factory():
    return action


@pytest.fixture
def four_step_document(make_document) -> WorkflowDocument:
    """Countries -> zone -> attach countries / create method, with compensations for each step."""
    return make_document(
        [
            step("step1", "lookupCountries", {"codes": ["AU", "NZ"]}, {"countryIds": "countryIds"}),
            step("step2", "createZone", {"name": "ANZ"}, {"zoneId": "zoneId"}),
            step(
                "step3",
                "addCountries",
                {"zoneId": "{step2.zoneId}", "countryIds": "{step1.countryIds}"},
                {"added": "added"},
                required_inputs=["zoneId", "countryIds"],
            ),
            step("step4", "createMethod", {"zoneId": "{step2.zoneId}"}, {"methodId": "methodId"}),
        ],
        rollback={
            "step1": [action("forgetCountries")],
            "step2": [action("deleteZone", {"id": "{step2.zoneId}"})],
            "step3": [
                action(
                    "removeCountries",
                    {"zoneId": "{step2.zoneId}", "countryIds": "{step1.countryIds}"},
                    condition={"op": "equals", "ref": "{step3.added}", "value": True},
                )
            ],
            "step4": [action("deleteMethod", {"id": "{step4.methodId}"})],
        },
        name="four-step",
    )


@pytest.fixture
def scenario_invoker() -> InMemoryInvoker:
    """Deterministic responses for every forward and compensating operation of the scenario."""
    return InMemoryInvoker(
        {
            "lookupCountries": {"countryIds": ["AU-1", "NZ-1"]},
            "createZone": {"zoneId": "Z-1"},
            "addCountries": {"added": True},
            "createMethod": {"methodId": "M-1"},
            "forgetCountries": {"ok": True},
            "deleteZone": {"ok": True},
            "removeCountries": {"ok": True},
            "deleteMethod": {"ok": True},
        }
    )


@pytest.fixture(autouse=True)
def isolate_apiflow_logger():
    """Drop handlers the CLI attaches to the ``apiflow`` logger between tests."""
    apiflow_logger = logging.getLogger("apiflow")
    before = list(apiflow_logger.handlers)
    level = apiflow_logger.level
    yield
    for handler in apiflow_logger.handlers[:]:
        if handler not in before:
            apiflow_logger.removeHandler(handler)
    apiflow_logger.setLevel(level)
