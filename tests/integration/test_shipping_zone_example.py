"""Run the bundled shipping-zone workflow against the example's fake commerce API."""

import importlib.util
from pathlib import Path

import pytest

from apiflow import ExecutionMode, WorkflowExecutionError, WorkflowExecutor, load_workflow
from apiflow.invokers import InMemoryInvoker
from apiflow.orchestration.workflow_engine import RollbackStatus, StepStatus, WorkflowStatus, is_valid

EXAMPLES_DIR = Path(__file__).resolve().parents[2] / "examples"


def _load_example_module():
    spec = importlib.util.spec_from_file_location("run_shipping_zone", EXAMPLES_DIR / "run_shipping_zone.py")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture(scope="module")
def example():
    return _load_example_module()


@pytest.fixture
def document():
    return load_workflow(EXAMPLES_DIR / "shipping_zone_workflow.json")


def _executor(store, mode=ExecutionMode.SEQUENTIAL):
    invoker = InMemoryInvoker()
    store.register(invoker)
    return WorkflowExecutor(invoker, mode=mode), invoker


def test_example_document_is_valid(document):
    assert is_valid(document)
    assert document.metadata.target_system == "commerce-graphql"
    assert document.semantic_mappings["zone"] == "ShippingZone"


@pytest.mark.parametrize("mode", [ExecutionMode.SEQUENTIAL, ExecutionMode.PARALLEL])
def test_happy_path(example, document, mode):
    store = example.FakeStore()
    executor, invoker = _executor(store, mode)

    result = executor.execute(document)

    assert result.status == WorkflowStatus.COMPLETED
    assert result.context["lookup_countries.countryIds"] == ["AU-1", "NZ-1"]
    assert result.context["add_countries.attachedCountries"] == ["AU", "NZ"]
    zone_id = result.context["create_zone.zoneId"]
    assert store.zones[zone_id]["countries"] == ["AU-1", "NZ-1"]
    method = store.methods[result.context["create_method.methodId"]]
    assert method == {"shippingZone": zone_id, "name": "Standard", "type": "PRICE", "priceCents": 995}


def test_method_failure_leaves_no_zone_behind(example, document):
    store = example.FakeStore(fail_method=True)
    executor, invoker = _executor(store)

    with pytest.raises(WorkflowExecutionError) as exc_info:
        executor.execute(document)

    error = exc_info.value
    assert error.failed_step_id == "create_method"
    assert error.error.status_code == 400
    assert [(o.step_id, o.target) for o in error.rollback_outcomes] == [
        ("add_countries", "shippingZoneUpdate"),
        ("create_zone", "shippingZoneDelete"),
    ]
    assert all(o.status == RollbackStatus.COMPLETED for o in error.rollback_outcomes)
    assert store.zones == {}
    assert error.result.step_results["lookup_countries"].status == StepStatus.COMPLETED
    assert error.result.step_results["create_zone"].status == StepStatus.ROLLED_BACK


def test_validation_rejection_from_the_api(example, document):
    store = example.FakeStore()
    executor, invoker = _executor(store)

    def reject_zone(variables):
        return {"data": {"shippingZoneCreate": {"shippingZone": None, "errors": [{"message": "Name is taken"}]}}}

    invoker.register("shippingZoneCreate", reject_zone)

    with pytest.raises(WorkflowExecutionError, match="Name is taken") as exc_info:
        executor.execute(document)

    assert exc_info.value.failed_step_id == "create_zone"
    assert exc_info.value.rollback_outcomes == []
