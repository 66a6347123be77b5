"""Applies update mutations to documents.

Mutations never touch the stored version: ``apply_mutation`` works on a
deep copy and returns it, leaving the caller to install the new version.
Any failing operation raises before anything is installed.
"""

from __future__ import annotations

import math
from typing import Any

from dualdb.domain.errors import InvalidMutation
from dualdb.domain.value_objects.field_path import (
    MISSING,
    resolve,
    set_path,
    split_path,
    unset_path,
)
from dualdb.domain.value_objects.mutations import Mutation, UpdateOp, UpdateOperation
from dualdb.domain.value_objects.projection import ID_FIELD
from dualdb.domain.value_objects.values import (
    ValueKind,
    copy_value,
    kind_of,
    validate_value,
    values_equal,
)


def validate_mutation(mutation: Mutation) -> None:
    """Check operators, paths and operands without a target document.

    Raises:
        InvalidMutation: On an empty mutation, an ``_id`` path, a bad path
            or a non-Value operand.
    """
    if not isinstance(mutation, Mutation):
        raise InvalidMutation(f"Expected a Mutation, got {type(mutation).__name__}")
    if not mutation.operations:
        raise InvalidMutation("Mutation has no operations")
    for operation in mutation.operations:
        if not isinstance(operation.op, UpdateOp):
            raise InvalidMutation(f"Unsupported update operator: {operation.op!r}")
        try:
            segments = split_path(operation.path)
        except (TypeError, ValueError) as e:
            raise InvalidMutation(str(e)) from e
        if segments[0] == ID_FIELD:
            raise InvalidMutation("The _id field cannot be modified")
        if operation.op == UpdateOp.INC and _kind_or_none(operation.value) != ValueKind.NUMBER:
            raise InvalidMutation(f"$inc on {operation.path} requires a number")
        if operation.op != UpdateOp.UNSET:
            try:
                validate_value(operation.value)
            except TypeError as e:
                raise InvalidMutation(f"Invalid value for {operation.path}: {e}") from e


def _kind_or_none(value: Any) -> ValueKind | None:
    try:
        return kind_of(value)
    except TypeError:
        return None


def _list_at(document: dict[str, Any], operation: UpdateOperation, create: bool) -> list | None:
    current = resolve(document, operation.path)
    if current is MISSING or current is None:
        if not create:
            return None
        current = []
        _assign(document, operation.path, current)
    if not isinstance(current, list):
        raise InvalidMutation(
            f"{operation.op.value} on {operation.path} requires a list, "
            f"found {kind_of(current).name.lower()}"
        )
    return current


def _assign(document: dict[str, Any], path: str, value: Any) -> None:
    try:
        set_path(document, path, value)
    except ValueError as e:
        raise InvalidMutation(str(e)) from e


def _apply_operation(document: dict[str, Any], operation: UpdateOperation) -> None:
    op = operation.op
    if op == UpdateOp.SET:
        _assign(document, operation.path, copy_value(operation.value))

    elif op == UpdateOp.UNSET:
        unset_path(document, operation.path)

    elif op == UpdateOp.INC:
        current = resolve(document, operation.path)
        if current is MISSING:
            current = 0
        if _kind_or_none(current) != ValueKind.NUMBER:
            raise InvalidMutation(f"$inc on {operation.path} requires a numeric field")
        result = current + operation.value
        if isinstance(result, float) and math.isnan(result):
            raise InvalidMutation(f"$inc on {operation.path} produces NaN")
        _assign(document, operation.path, result)

    elif op == UpdateOp.PUSH:
        items = _list_at(document, operation, create=True)
        assert items is not None
        items.append(copy_value(operation.value))

    elif op == UpdateOp.ADD_TO_SET:
        items = _list_at(document, operation, create=True)
        assert items is not None
        if not any(values_equal(item, operation.value) for item in items):
            items.append(copy_value(operation.value))

    elif op == UpdateOp.PULL:
        items = _list_at(document, operation, create=False)
        if items is not None:
            items[:] = [item for item in items if not values_equal(item, operation.value)]

    else:
        raise InvalidMutation(f"Unsupported update operator: {op!r}")


def apply_mutation(document: dict[str, Any], mutation: Mutation) -> tuple[dict[str, Any], bool]:
    """Apply a mutation to a copy of a document.

    Args:
        document: The current stored document (not modified).
        mutation: Operations applied in order.

    Returns:
        (new_document, changed) where ``changed`` is False when the result
        equals the input.

    Raises:
        InvalidMutation: If any operation cannot be applied.
    """
    updated = copy_value(document)
    for operation in mutation.operations:
        _apply_operation(updated, operation)
    return updated, not values_equal(updated, document)
