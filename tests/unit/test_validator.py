"""Tests for structural validation of workflow documents."""

import pytest

from apiflow.orchestration.workflow_engine import (
    CyclicDependencyError,
    ValidationError,
    collect_violations,
    is_valid,
    validate_document,
)


class TestValidDocuments:
    def test_four_step_document_is_valid(self, four_step_document):
        assert collect_violations(four_step_document) == []
        assert is_valid(four_step_document)
        validate_document(four_step_document)


class TestStepChecks:
    """Test per-step structural rules."""

    def test_empty_workflow(self, make_document):
        document = make_document([])
        with pytest.raises(ValidationError, match="at least one step") as exc_info:
            validate_document(document)
        assert exc_info.value.cycles == []

    def test_duplicate_step_ids(self, make_document, step_factory):
        document = make_document([step_factory("a"), step_factory("a")])
        violations = collect_violations(document)
        assert any("Duplicate step ID: a" in v.reason for v in violations)

    def test_invalid_step_id(self, make_document, step_factory):
        document = make_document([step_factory("bad id")])
        assert collect_violations(document)[0].step_id == "bad id"

    def test_required_input_without_source(self, make_document, step_factory):
        document = make_document(
            [step_factory("createMethod", inputs={"name": "Standard"}, required_inputs=["zoneId"])]
        )
        with pytest.raises(ValidationError) as exc_info:
            validate_document(document)
        assert exc_info.value.step_ids == ["createMethod"]
        assert "zoneId" in exc_info.value.reasons[0]

    def test_required_and_optional_overlap(self, make_document, step_factory):
        document = make_document(
            [step_factory("a", inputs={"x": 1}, required_inputs=["x"], optional_inputs=["x"])]
        )
        assert any("both required and optional" in v.reason for v in collect_violations(document))

    def test_reference_to_unknown_step(self, make_document, step_factory):
        document = make_document([step_factory("a", inputs={"x": "{ghost.id}"})])
        assert any("unknown step 'ghost'" in v.reason for v in collect_violations(document))

    def test_reference_to_undeclared_output(self, make_document, step_factory):
        document = make_document(
            [step_factory("a", outputs={"id": "id"}), step_factory("b", inputs={"x": "{a.name}"})]
        )
        assert any("undeclared output 'name'" in v.reason for v in collect_violations(document))

    def test_embedded_references_are_checked(self, make_document, step_factory):
        document = make_document([step_factory("a", inputs={"x": {"label": "zone {ghost.id}"}})])
        assert not is_valid(document)

    def test_unknown_depends_on(self, make_document, step_factory):
        document = make_document([step_factory("a", depends_on=["ghost"])])
        assert any("unknown step 'ghost'" in v.reason for v in collect_violations(document))

    def test_every_violation_is_reported(self, make_document, step_factory):
        document = make_document(
            [
                step_factory("a", inputs={"x": "{ghost.id}"}, required_inputs=["y"]),
                step_factory("a"),
            ]
        )
        with pytest.raises(ValidationError) as exc_info:
            validate_document(document)
        assert len(exc_info.value.violations) == 3


class TestRollbackPlanChecks:
    def test_rollback_key_must_name_a_step(self, make_document, step_factory, action_factory):
        document = make_document([step_factory("a")], rollback={"ghost": [action_factory("undo")]})
        assert any("unknown step 'ghost'" in v.reason for v in collect_violations(document))

    def test_depends_on_step_id_must_exist(self, make_document, step_factory, action_factory):
        document = make_document(
            [step_factory("a")],
            rollback={"a": [action_factory("undo", depends_on_step_id="ghost")]},
        )
        assert any("undoes unknown step 'ghost'" in v.reason for v in collect_violations(document))

    def test_action_references_are_checked(self, make_document, step_factory, action_factory):
        document = make_document(
            [step_factory("a", outputs={"id": "id"})],
            rollback={
                "a": [
                    action_factory(
                        "undo",
                        {"id": "{a.nope}"},
                        condition={"op": "exists", "ref": "{b.flag}"},
                    )
                ]
            },
        )
        reasons = [v.reason for v in collect_violations(document)]
        assert len(reasons) == 2
        assert all(r.startswith("Rollback action #0 under 'a'") for r in reasons)


class TestCycles:
    """Test cycle rejection."""

    def test_two_step_cycle(self, make_document, step_factory):
        document = make_document(
            [
                step_factory("a", inputs={"x": "{b.out}"}, outputs={"out": "out"}),
                step_factory("b", inputs={"x": "{a.out}"}, outputs={"out": "out"}),
            ]
        )
        with pytest.raises(CyclicDependencyError) as exc_info:
            validate_document(document)
        assert exc_info.value.cycle_members == ["a", "b"]

    def test_every_cycle_member_is_named(self, make_document, step_factory):
        document = make_document(
            [
                step_factory("start", outputs={"out": "out"}),
                step_factory("a", inputs={"x": "{c.out}", "s": "{start.out}"}, outputs={"out": "out"}),
                step_factory("b", inputs={"x": "{a.out}"}, outputs={"out": "out"}),
                step_factory("c", inputs={"x": "{b.out}"}, outputs={"out": "out"}),
                step_factory("self", inputs={"x": "{self.out}"}, outputs={"out": "out"}),
            ]
        )
        with pytest.raises(CyclicDependencyError) as exc_info:
            validate_document(document)
        assert exc_info.value.cycles == [["a", "b", "c"], ["self"]]
        assert "start" not in exc_info.value.cycle_members

    def test_cycle_with_other_violations_is_plain_validation_error(self, make_document, step_factory):
        document = make_document(
            [
                step_factory("a", inputs={"x": "{b.out}"}, outputs={"out": "out"}, required_inputs=["y"]),
                step_factory("b", inputs={"x": "{a.out}"}, outputs={"out": "out"}),
            ]
        )
        with pytest.raises(ValidationError) as exc_info:
            validate_document(document)
        assert not isinstance(exc_info.value, CyclicDependencyError)
        assert any("cycle" in r for r in exc_info.value.reasons)
        assert exc_info.value.cycles == [["a", "b"]]
