"""
Step reference syntax and input resolution.

Inside a workflow document a step input refers to an earlier step's output
with ``"{stepId.outputName}"`` or ``"{stepId.outputName.path}"``. A string that
is exactly one reference resolves to the referenced value unchanged; a
reference embedded in a longer string is interpolated as text. Strings that
are not in the bracket form pass through untouched.

Values built in Python can use the tagged forms directly: ``Reference`` for a
lookup and ``LiteralValue`` for a value that must never be scanned for
references.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple, Union

from .errors import MissingOutputError, ResolutionError
from .paths import PathNotFound

if TYPE_CHECKING:
    from .context import ExecutionContext
    from .steps import Step

logger = logging.getLogger(__name__)

_IDENT = r"[A-Za-z_][\w\-]*"
_SUFFIX = r"(?:\.[^\s{}.\[\]]+|\[(?:\*|-?\d+)\])*"
_REFERENCE_BODY = rf"({_IDENT})\.({_IDENT})({_SUFFIX})"

REFERENCE_PATTERN = re.compile(r"\{" + _REFERENCE_BODY + r"\}")
_FULL_REFERENCE = re.compile(r"^\{" + _REFERENCE_BODY + r"\}$")


@dataclass(frozen=True)
class Reference:
    """Tagged reference to ``<step_id>.<output>[.path]`` in the context."""

    step_id: str
    output: str
    path: str = ""

    @property
    def key(self) -> str:
        return f"{self.step_id}.{self.output}"

    @property
    def text(self) -> str:
        if not self.path:
            return "{" + self.key + "}"
        joiner = "" if self.path.startswith("[") else "."
        return "{" + self.key + joiner + self.path + "}"

    def __str__(self) -> str:
        return self.text


@dataclass(frozen=True)
class LiteralValue:
    """Tagged literal, used verbatim without reference substitution."""

    value: Any


ValueSource = Union[Reference, LiteralValue]


def reference(step_id: str, output: str, path: str = "") -> Reference:
    return Reference(step_id=step_id, output=output, path=path)


def literal(value: Any) -> LiteralValue:
    return LiteralValue(value)


def _from_match(match: "re.Match[str]") -> Reference:
    suffix = match.group(3) or ""
    return Reference(step_id=match.group(1), output=match.group(2), path=suffix.lstrip("."))


def parse_reference(text: Any) -> Optional[Reference]:
    """Parse a string that is exactly one reference, else return None."""
    if isinstance(text, Reference):
        return text
    if not isinstance(text, str):
        return None
    match = _FULL_REFERENCE.match(text)
    return _from_match(match) if match else None


def classify_value(raw: Any) -> ValueSource:
    """Tag a raw document value as a reference or a literal."""
    if isinstance(raw, (Reference, LiteralValue)):
        return raw
    ref = parse_reference(raw)
    if ref is not None:
        return ref
    return LiteralValue(raw)


def find_references(value: Any) -> List[Reference]:
    """Collect every reference inside a value, walking dicts and lists."""
    found: List[Reference] = []
    _collect(value, found)
    return found


def _collect(value: Any, found: List[Reference]) -> None:
    if isinstance(value, Reference):
        found.append(value)
    elif isinstance(value, LiteralValue):
        return
    elif isinstance(value, str):
        found.extend(_from_match(m) for m in REFERENCE_PATTERN.finditer(value))
    elif isinstance(value, dict):
        for item in value.values():
            _collect(item, found)
    elif isinstance(value, (list, tuple)):
        for item in value:
            _collect(item, found)


def resolve_value(
    raw: Any,
    context: "ExecutionContext",
    step_id: str,
    input_name: Optional[str] = None,
) -> Any:
    """Substitute every reference inside ``raw`` from the context.

    Raises:
        ResolutionError: If any referenced output is not in the context
    """
    if isinstance(raw, LiteralValue):
        return raw.value
    if isinstance(raw, Reference):
        return _lookup(raw, context, step_id, input_name)
    if isinstance(raw, str):
        ref = parse_reference(raw)
        if ref is not None:
            return _lookup(ref, context, step_id, input_name)
        if "{" not in raw:
            return raw
        return REFERENCE_PATTERN.sub(
            lambda m: _as_text(_lookup(_from_match(m), context, step_id, input_name)), raw
        )
    if isinstance(raw, dict):
        return {k: resolve_value(v, context, step_id, input_name) for k, v in raw.items()}
    if isinstance(raw, (list, tuple)):
        return [resolve_value(v, context, step_id, input_name) for v in raw]
    return raw


def resolve_inputs(step: "Step", context: "ExecutionContext") -> Dict[str, Any]:
    """Build the concrete input mapping for a step.

    Inputs listed in ``optional_inputs`` whose references cannot be resolved
    are dropped; any other unresolved input fails the step. Required inputs
    must all be present afterwards.

    Raises:
        ResolutionError: If the step cannot be invoked
    """
    optional = set(step.optional_inputs)
    resolved: Dict[str, Any] = {}

    for name, raw in step.inputs.items():
        try:
            resolved[name] = resolve_value(raw, context, step.id, name)
        except ResolutionError as e:
            if name in optional:
                logger.debug(f"Dropping optional input '{name}' of step {step.id}: {e.reason}")
                continue
            raise

    missing = [name for name in step.required_inputs if name not in resolved]
    if missing:
        raise ResolutionError(
            step.id, f"required inputs not provided: {', '.join(missing)}"
        )
    return resolved


def _lookup(
    ref: Reference, context: "ExecutionContext", step_id: str, input_name: Optional[str]
) -> Any:
    try:
        return context.resolve(ref)
    except PathNotFound as e:
        raise ResolutionError(
            step_id, f"path '{ref.path}' not found in {ref.key}: {e.reason}", ref.text, input_name
        ) from e
    except KeyError as e:
        cause: Optional[MissingOutputError] = context.missing_cause(ref.key)
        if cause is not None:
            reason = f"output {ref.key} was never produced ({cause})"
        elif ref.step_id in context.failed_steps:
            reason = f"step '{ref.step_id}' failed"
        elif context.has_step(ref.step_id):
            reason = f"step '{ref.step_id}' did not produce output '{ref.output}'"
        else:
            reason = f"step '{ref.step_id}' has not run"
        raise ResolutionError(step_id, reason, ref.text, input_name) from (cause or e)


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str)


def split_reference_key(key: str) -> Tuple[str, str]:
    """Split a context key ``step.output`` into its parts."""
    step_id, _, output = key.partition(".")
    return step_id, output
