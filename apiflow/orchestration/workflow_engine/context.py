"""Per-run execution context."""

from __future__ import annotations

import copy
from threading import RLock
from typing import Any, Dict, Iterable, Iterator, List, Optional, Set, Tuple

from .errors import MissingOutputError
from .paths import evaluate_path
from .references import Reference, split_reference_key


class ExecutionContext:
    """Mutable store of step outputs for a single workflow run.

    Keys have the form ``<stepId>.<outputName>``. The context is owned by one
    run and passed explicitly through the executor; it is never shared
    between runs. All access goes through a lock so steps running in
    parallel can write their outputs safely.
    """

    def __init__(self, run_id: Optional[str] = None):
        self.run_id = run_id
        self._values: Dict[str, Any] = {}
        self._missing: Dict[str, MissingOutputError] = {}
        self._completed: Set[str] = set()
        self._completion_order: List[str] = []
        self._failed: Set[str] = set()
        self._lock = RLock()

    def record_outputs(
        self,
        step_id: str,
        outputs: Dict[str, Any],
        missing: Iterable[MissingOutputError] = (),
    ) -> int:
        """Store a completed step's extracted outputs.

        Returns:
            The step's position in forward completion order
        """
        with self._lock:
            for name, value in outputs.items():
                self._values[f"{step_id}.{name}"] = value
            for error in missing:
                self._missing[f"{step_id}.{error.output_name}"] = error
            self._completed.add(step_id)
            self._completion_order.append(step_id)
            return len(self._completion_order) - 1

    def mark_failed(self, step_id: str) -> None:
        with self._lock:
            self._failed.add(step_id)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._values[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._values.get(key, default)

    def resolve(self, ref: Reference) -> Any:
        """Look up a reference, applying its path suffix.

        Raises:
            KeyError: If the output is not in the context
            PathNotFound: If the path suffix does not match the stored value
        """
        with self._lock:
            if ref.key not in self._values:
                raise KeyError(ref.key)
            value = self._values[ref.key]
        if ref.path:
            return evaluate_path(value, ref.path)
        return value

    def try_resolve(self, ref: Reference) -> Tuple[bool, Any]:
        try:
            return True, self.resolve(ref)
        except LookupError:
            return False, None

    def missing_cause(self, key: str) -> Optional[MissingOutputError]:
        with self._lock:
            return self._missing.get(key)

    def has_step(self, step_id: str) -> bool:
        with self._lock:
            return step_id in self._completed

    @property
    def completion_order(self) -> List[str]:
        """Completed steps in the order they finished, minus undone ones."""
        with self._lock:
            return [s for s in self._completion_order if s in self._completed]

    @property
    def failed_steps(self) -> Set[str]:
        with self._lock:
            return set(self._failed)

    def remove_step(self, step_id: str) -> List[str]:
        """Drop every entry of an undone step.

        Returns:
            The removed keys
        """
        with self._lock:
            removed = [key for key in self._values if split_reference_key(key)[0] == step_id]
            for key in removed:
                del self._values[key]
            for key in [k for k in self._missing if split_reference_key(k)[0] == step_id]:
                del self._missing[key]
            self._completed.discard(step_id)
            return removed

    def snapshot(self) -> Dict[str, Any]:
        """Deep copy of the current values."""
        with self._lock:
            return copy.deepcopy(self._values)

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._values)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._values

    def __getitem__(self, key: str) -> Any:
        with self._lock:
            return self._values[key]

    def __len__(self) -> int:
        with self._lock:
            return len(self._values)

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    def __repr__(self) -> str:
        return f"ExecutionContext(run_id={self.run_id!r}, entries={len(self)})"
