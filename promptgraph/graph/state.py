from __future__ import annotations

import copy
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterator, Mapping, Optional

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from promptgraph.graph.errors import StateError


class MergeStrategy(str, Enum):
    """How a partial update for a field is folded into the current value."""

    OVERWRITE = "overwrite"
    NESTED_MERGE = "nested_merge"


@dataclass(frozen=True)
class StateField:
    """Declaration of one named state field.

    ``type`` is any annotation pydantic can validate (``str``, ``int | None``,
    ``dict[str, Any]``, a TypedDict, ...). ``Any`` disables validation.
    """

    name: str
    type: Any = Any
    merge: MergeStrategy = MergeStrategy.OVERWRITE
    default: Any = None
    default_factory: Optional[Callable[[], Any]] = None

    def initial_value(self) -> Any:
        if self.default_factory is not None:
            return self.default_factory()
        if self.merge == MergeStrategy.NESTED_MERGE and self.default is None:
            return {}
        return copy.deepcopy(self.default)


def _merge_mapping(base: Mapping[str, Any], update: Mapping[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in update.items():
        existing = merged.get(key)
        if isinstance(existing, Mapping) and isinstance(value, Mapping):
            merged[key] = _merge_mapping(existing, value)
        else:
            merged[key] = value
    return merged


def read_only_view(values: Mapping[str, Any]) -> Mapping[str, Any]:
    """Return a detached, read-only copy of ``values`` for nodes and routers."""
    return MappingProxyType(copy.deepcopy(dict(values)))


class StateSchema:
    """Fixed set of typed state fields with an explicit per-field merge table."""

    def __init__(self, *fields: StateField) -> None:
        declared: Dict[str, StateField] = {}
        for spec in fields:
            if not spec.name:
                raise ValueError("state fields must be named")
            if spec.name in declared:
                raise ValueError(f"state field '{spec.name}' declared twice")
            declared[spec.name] = spec
        self._fields: Mapping[str, StateField] = MappingProxyType(declared)
        self._adapters: Mapping[str, TypeAdapter] = MappingProxyType(
            {
                name: TypeAdapter(spec.type)
                for name, spec in declared.items()
                if spec.type is not Any
            }
        )

    def __contains__(self, name: object) -> bool:
        return name in self._fields

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    @property
    def fields(self) -> Mapping[str, StateField]:
        return self._fields

    def merge_table(self) -> Dict[str, MergeStrategy]:
        """Field name to merge strategy, for inspection and logging."""
        return {name: spec.merge for name, spec in self._fields.items()}

    def validate_value(self, name: str, value: Any) -> Any:
        spec = self._fields.get(name)
        if spec is None:
            raise StateError(f"unknown state field '{name}'", field=name)
        adapter = self._adapters.get(name)
        if adapter is None:
            return value
        try:
            return adapter.validate_python(value)
        except PydanticValidationError as exc:
            raise StateError(
                f"invalid value for state field '{name}': {exc.errors()[0]['msg']}",
                field=name,
            ) from exc

    def initial(self, seed: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """Build a fresh execution state from caller seed values and defaults."""
        seed = seed or {}
        unknown = sorted(str(key) for key in seed if key not in self._fields)
        if unknown:
            raise StateError(
                f"seed sets undeclared state fields: {', '.join(unknown)}",
                field=unknown[0],
            )
        state: Dict[str, Any] = {}
        for name, spec in self._fields.items():
            if name in seed:
                state[name] = self.validate_value(name, copy.deepcopy(seed[name]))
            else:
                state[name] = spec.initial_value()
        return state

    def merge(
        self, current: Mapping[str, Any], partial: Optional[Mapping[str, Any]]
    ) -> Dict[str, Any]:
        """Fold ``partial`` into ``current`` and return the next state.

        Neither argument is mutated. Fields absent from ``partial`` carry over
        unchanged; unknown fields and values that fail validation raise
        ``StateError`` before anything is produced.
        """
        next_state = dict(current)
        if not partial:
            return next_state
        for name, value in partial.items():
            spec = self._fields.get(name)
            if spec is None:
                raise StateError(f"unknown state field '{name}'", field=name)
            if spec.merge == MergeStrategy.NESTED_MERGE:
                if not isinstance(value, Mapping):
                    raise StateError(
                        f"state field '{name}' merges nested keys and needs a mapping, "
                        f"got {type(value).__name__}",
                        field=name,
                    )
                existing = current.get(name)
                if existing is None:
                    existing = {}
                elif not isinstance(existing, Mapping):
                    raise StateError(
                        f"state field '{name}' holds a non-mapping value",
                        field=name,
                    )
                next_state[name] = self.validate_value(
                    name, _merge_mapping(existing, value)
                )
            else:
                next_state[name] = self.validate_value(name, value)
        return next_state


__all__ = [
    "MergeStrategy",
    "StateField",
    "StateSchema",
    "read_only_view",
]
