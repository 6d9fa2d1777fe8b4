"""Tests for loading and writing workflow documents."""

import json

import pytest

from apiflow.orchestration.loader import (
    document_to_dict,
    dump_workflow,
    load_workflow,
    load_workflow_from_string,
    parse_workflow,
)
from apiflow.orchestration.workflow_engine import ValidationError

DOCUMENT = {
    "workflow_metadata": {"name": "shipping-zone", "version": "2.1", "targetSystem": "shop"},
    "workflow_steps": [
        {
            "id": "create_zone",
            "operation": {
                "target": "zoneCreate",
                "protocol": "GraphQL",
                "query": "mutation { zoneCreate { zone { id } } }",
                "responseRoot": "data.zoneCreate",
                "errorPath": "data.zoneCreate.userErrors",
            },
            "inputs": {"name": "ANZ"},
            "outputs": {"zoneId": "zone.id"},
            "requiredInputs": ["name"],
        },
        {
            "id": "delete_hint",
            "operation": {"target": "zones/${zoneId}", "method": "get"},
            "inputs": {"zoneId": "{create_zone.zoneId}"},
            "dependsOn": ["create_zone"],
        },
    ],
    "rollback_strategy": {
        "create_zone": [
            {
                "targetOperation": {"target": "zoneDelete"},
                "inputs": {"id": "{create_zone.zoneId}"},
                "condition": {"op": "exists", "ref": "{create_zone.zoneId}"},
            }
        ]
    },
}

YAML_DOCUMENT = """
workflow_metadata:
  name: yaml-flow
workflow_steps:
  - id: ping
    operation:
      target: ping
      protocol: rest
      method: get
"""


class TestParseWorkflow:
    """Test building documents from mappings."""

    def test_aliases_are_accepted(self):
        document = parse_workflow(DOCUMENT)
        zone = document.get_step("create_zone")

        assert document.name == "shipping-zone"
        assert document.metadata.target_system == "shop"
        assert zone.operation.protocol == "graphql"
        assert zone.operation.response_root == "data.zoneCreate"
        assert zone.required_inputs == ["name"]
        assert document.get_step("delete_hint").operation.method == "GET"
        assert document.get_step("delete_hint").depends_on == ["create_zone"]
        assert document.rollback_plan["create_zone"][0].condition.op == "exists"

    def test_documents_are_frozen(self):
        document = parse_workflow(DOCUMENT)
        with pytest.raises(Exception):
            document.steps[0].id = "changed"

    def test_not_a_mapping(self):
        with pytest.raises(ValidationError, match="must be a mapping"):
            parse_workflow(["not", "a", "document"])

    def test_schema_errors_name_the_step(self):
        data = {
            "workflow_metadata": {"name": "bad"},
            "workflow_steps": [{"id": "broken", "inputs": {}}, {"id": "ok", "operation": {"target": "x"}}],
        }
        with pytest.raises(ValidationError) as exc_info:
            parse_workflow(data)
        assert exc_info.value.step_ids == ["broken"]
        assert "operation" in exc_info.value.reasons[0]

    def test_bad_output_path(self):
        data = {
            "workflow_metadata": {"name": "bad"},
            "workflow_steps": [{"id": "s", "operation": {"target": "x"}, "outputs": {"id": "a..b"}}],
        }
        with pytest.raises(ValidationError) as exc_info:
            parse_workflow(data)
        assert exc_info.value.step_ids == ["s"]

    def test_unknown_condition_operator(self):
        data = json.loads(json.dumps(DOCUMENT))
        data["rollback_strategy"]["create_zone"][0]["condition"]["op"] = "greater_than"
        with pytest.raises(ValidationError):
            parse_workflow(data)

    def test_unsupported_protocol(self):
        data = json.loads(json.dumps(DOCUMENT))
        data["workflow_steps"][0]["operation"]["protocol"] = "soap"
        with pytest.raises(ValidationError, match="Unsupported protocol"):
            parse_workflow(data)


class TestLoadFromText:
    def test_json_text(self):
        assert load_workflow_from_string(json.dumps(DOCUMENT)).name == "shipping-zone"

    def test_yaml_text_is_detected(self):
        document = load_workflow_from_string(YAML_DOCUMENT)
        assert document.name == "yaml-flow"
        assert document.steps[0].operation.method == "GET"

    def test_invalid_json_with_explicit_format(self):
        with pytest.raises(ValidationError, match="Invalid JSON"):
            load_workflow_from_string("{not json", fmt="json")

    def test_invalid_yaml(self):
        with pytest.raises(ValidationError, match="Invalid YAML"):
            load_workflow_from_string("key: [unclosed", fmt="yaml")

    def test_unknown_format(self):
        with pytest.raises(ValueError):
            load_workflow_from_string("{}", fmt="toml")


class TestFiles:
    def test_load_json_file(self, tmp_path):
        path = tmp_path / "flow.json"
        path.write_text(json.dumps(DOCUMENT), encoding="utf-8")
        assert len(load_workflow(path).steps) == 2

    def test_load_yml_file(self, tmp_path):
        path = tmp_path / "flow.yml"
        path.write_text(YAML_DOCUMENT, encoding="utf-8")
        assert load_workflow(str(path)).name == "yaml-flow"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_workflow(tmp_path / "absent.json")


class TestDump:
    def test_document_to_dict_uses_file_keys(self):
        data = document_to_dict(parse_workflow(DOCUMENT))

        assert set(data) == {"workflow_metadata", "workflow_steps", "rollback_strategy"}
        assert data["workflow_metadata"]["version"] == "2.1"
        assert data["workflow_steps"][0]["outputs"] == {"zoneId": "zone.id"}

    @pytest.mark.parametrize("fmt", ["json", "yaml"])
    def test_dump_reloads_to_equal_document(self, fmt):
        document = parse_workflow(DOCUMENT)
        assert load_workflow_from_string(dump_workflow(document, fmt), fmt) == document

    def test_dump_unknown_format(self):
        with pytest.raises(ValueError):
            dump_workflow(parse_workflow(DOCUMENT), "xml")
