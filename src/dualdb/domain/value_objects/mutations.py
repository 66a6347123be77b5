"""Update mutations in the document (``$set``/``$inc``/...) style."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping


class UpdateOp(Enum):
    """Field-level update operators."""

    SET = "$set"
    UNSET = "$unset"
    INC = "$inc"
    PUSH = "$push"
    ADD_TO_SET = "$addToSet"
    PULL = "$pull"


@dataclass(frozen=True)
class UpdateOperation:
    """One operator applied to one field path."""

    op: UpdateOp
    path: str
    value: Any = None


@dataclass(frozen=True)
class Mutation:
    """An ordered list of update operations applied to each matched record.

    Example:
        >>> m = Mutation.from_document({"$set": {"name": "Ann"}, "$inc": {"visits": 1}})
        >>> [o.op for o in m.operations]
        [<UpdateOp.SET: '$set'>, <UpdateOp.INC: '$inc'>]
    """

    operations: tuple[UpdateOperation, ...] = field(default_factory=tuple)

    @classmethod
    def from_document(cls, document: Mapping[str, Mapping[str, Any]]) -> Mutation:
        """Build a mutation from ``{"$op": {path: value}}`` form.

        Raises:
            ValueError: On an unknown operator or a non-map operand.
        """
        operations: list[UpdateOperation] = []
        for op_name, changes in document.items():
            try:
                op = UpdateOp(op_name)
            except ValueError:
                raise ValueError(f"Unsupported update operator: {op_name}") from None
            if not isinstance(changes, Mapping):
                raise ValueError(f"{op_name} requires a map of field paths")
            for path, value in changes.items():
                operations.append(UpdateOperation(op, path, value))
        return cls(tuple(operations))

    @classmethod
    def set(cls, **values: Any) -> Mutation:
        return cls(tuple(UpdateOperation(UpdateOp.SET, k, v) for k, v in values.items()))

    @classmethod
    def unset(cls, *paths: str) -> Mutation:
        return cls(tuple(UpdateOperation(UpdateOp.UNSET, p) for p in paths))

    @classmethod
    def inc(cls, **amounts: int | float) -> Mutation:
        return cls(tuple(UpdateOperation(UpdateOp.INC, k, v) for k, v in amounts.items()))

    @classmethod
    def push(cls, **values: Any) -> Mutation:
        return cls(tuple(UpdateOperation(UpdateOp.PUSH, k, v) for k, v in values.items()))

    @classmethod
    def add_to_set(cls, **values: Any) -> Mutation:
        return cls(tuple(UpdateOperation(UpdateOp.ADD_TO_SET, k, v) for k, v in values.items()))

    @classmethod
    def pull(cls, **values: Any) -> Mutation:
        return cls(tuple(UpdateOperation(UpdateOp.PULL, k, v) for k, v in values.items()))

    def then(self, other: Mutation) -> Mutation:
        """Concatenate two mutations, applying this one first."""
        return Mutation(self.operations + other.operations)

    @property
    def paths(self) -> frozenset[str]:
        """Top-level field names touched by this mutation."""
        return frozenset(o.path.split(".", 1)[0] for o in self.operations)
