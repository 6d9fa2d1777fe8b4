"""
Workflow document loading.

Documents are JSON or YAML mappings. Structural problems (missing keys,
wrong types, bad paths) are reported as a single ValidationError carrying
every violation pydantic found; semantic checks (references, cycles) are
left to the validator so they run for programmatically built documents too.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import pydantic
import yaml

from .workflow_engine.errors import ValidationError, Violation
from .workflow_engine.steps import WorkflowDocument

logger = logging.getLogger(__name__)

YAML_SUFFIXES = (".yaml", ".yml")

# Top-level keys used when writing a document back out
DOCUMENT_KEYS = {
    "metadata": "workflow_metadata",
    "steps": "workflow_steps",
    "rollback_plan": "rollback_strategy",
}


def parse_workflow(data: Mapping[str, Any]) -> WorkflowDocument:
    """Build a WorkflowDocument from an already-decoded mapping.

    Raises:
        ValidationError: If the mapping does not describe a workflow document
    """
    if not isinstance(data, Mapping):
        raise ValidationError(
            [Violation(f"Workflow document must be a mapping, got {type(data).__name__}")]
        )
    try:
        return WorkflowDocument.model_validate(dict(data))
    except pydantic.ValidationError as e:
        raise ValidationError(_violations_from_pydantic(e, data)) from e


def load_workflow_from_string(text: str, fmt: Optional[str] = None) -> WorkflowDocument:
    """Parse a workflow document from JSON or YAML text.

    Args:
        text: Document text
        fmt: "json" or "yaml"; when omitted JSON is tried first, then YAML

    Raises:
        ValidationError: If the text cannot be decoded or is not a valid document
    """
    if fmt is not None and fmt not in ("json", "yaml"):
        raise ValueError(f"Unsupported document format '{fmt}'")

    if fmt == "json" or fmt is None:
        try:
            return parse_workflow(json.loads(text))
        except json.JSONDecodeError as e:
            if fmt == "json":
                raise ValidationError([Violation(f"Invalid JSON: {e}")]) from e

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ValidationError([Violation(f"Invalid YAML: {e}")]) from e
    return parse_workflow(data)


def load_workflow(path: Union[str, Path]) -> WorkflowDocument:
    """Load a workflow document from a .json, .yaml or .yml file.

    Raises:
        FileNotFoundError: If the file does not exist
        ValidationError: If the file is not a valid document
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Workflow document not found: {path}")

    fmt = "yaml" if path.suffix.lower() in YAML_SUFFIXES else "json"
    text = path.read_text(encoding="utf-8")
    document = load_workflow_from_string(text, fmt)
    logger.debug(f"Loaded workflow '{document.name}' from {path} ({len(document.steps)} steps)")
    return document


def document_to_dict(document: WorkflowDocument) -> Dict[str, Any]:
    """Serialise a document to a mapping using the on-disk key names."""
    data = document.model_dump(mode="json", exclude_defaults=True)
    data["metadata"] = document.metadata.model_dump(mode="json")
    data.setdefault("steps", [])
    return {DOCUMENT_KEYS.get(key, key): value for key, value in data.items()}


def dump_workflow(document: WorkflowDocument, fmt: str = "json") -> str:
    """Serialise a document back to JSON or YAML text."""
    data = document_to_dict(document)
    if fmt == "json":
        return json.dumps(data, indent=2)
    if fmt == "yaml":
        return yaml.safe_dump(data, sort_keys=False)
    raise ValueError(f"Unsupported document format '{fmt}'")


def _violations_from_pydantic(error: pydantic.ValidationError, data: Mapping[str, Any]) -> List[Violation]:
    violations = []
    for item in error.errors():
        loc = item.get("loc", ())
        location = ".".join(str(part) for part in loc)
        reason = f"{location}: {item.get('msg')}" if location else str(item.get("msg"))
        violations.append(Violation(reason=reason, step_id=_step_id_at(loc, data)))
    return violations


def _step_id_at(loc: tuple, data: Mapping[str, Any]) -> Optional[str]:
    """Step id of the step a pydantic error location points into, if any."""
    if len(loc) < 2 or loc[0] not in ("steps", "workflow_steps") or not isinstance(loc[1], int):
        return None
    steps = data.get(loc[0])
    if isinstance(steps, list) and loc[1] < len(steps) and isinstance(steps[loc[1]], Mapping):
        step_id = steps[loc[1]].get("id")
        return step_id if isinstance(step_id, str) else None
    return None
