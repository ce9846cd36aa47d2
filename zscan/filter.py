"""Validation of output filter expressions against the available fields."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Optional, Sequence


class FilterValidationError(ValueError):
    """Raised when a filter names an unknown field or compares the wrong type."""


@dataclass(frozen=True)
class FieldDef:
    """Definition of one output field: its name and declared type."""

    name: Optional[str]
    type: str
    desc: str = ""


class NodeType(enum.Enum):
    OP = enum.auto()
    FIELD = enum.auto()
    STRING = enum.auto()
    INT = enum.auto()


class Operator(enum.Enum):
    GT = enum.auto()
    LT = enum.auto()
    EQ = enum.auto()
    NEQ = enum.auto()
    LT_EQ = enum.auto()
    GT_EQ = enum.auto()
    AND = enum.auto()
    OR = enum.auto()


@dataclass
class FilterNode:
    """A node of a parsed filter expression tree.

    Operator nodes carry ``op`` and two children; field nodes carry
    ``field_name`` (and receive ``field_index`` on validation); literal
    nodes carry ``value``.
    """

    type: NodeType
    op: Optional[Operator] = None
    field_name: Optional[str] = None
    field_index: int = -1
    value: Any = None
    left: Optional["FilterNode"] = None
    right: Optional["FilterNode"] = None


def _validate_node(node: FilterNode, fields: Sequence[FieldDef]) -> None:
    if node.type is not NodeType.OP:
        return
    if node.op in (Operator.AND, Operator.OR):
        return
    if node.left is None or node.right is None:
        raise FilterValidationError("comparison is missing an operand")

    field_name = node.left.field_name
    match = next(
        (
            (index, fdef)
            for index, fdef in enumerate(fields)
            if fdef.name is not None and fdef.name == field_name
        ),
        None,
    )
    if match is None:
        raise FilterValidationError(f"Field '{field_name}' does not exist")
    index, fdef = match
    node.left.field_index = index

    if node.right.type is NodeType.STRING:
        if fdef.type != "string":
            raise FilterValidationError(f"Field '{fdef.name}' is not of type 'string'")
    elif node.right.type is NodeType.INT:
        if fdef.type not in ("int", "bool"):
            raise FilterValidationError(f"Field '{fdef.name}' is not of type 'int'")
    else:
        raise FilterValidationError(f"Field '{fdef.name}' is compared with an invalid value")


def validate_filter(root: Optional[FilterNode], fields: Sequence[FieldDef]) -> bool:
    """Check every comparison in the tree and resolve field indices.

    Returns True when the tree is valid; raises FilterValidationError otherwise.
    """
    if root is None:
        return True
    _validate_node(root, fields)
    validate_filter(root.left, fields)
    validate_filter(root.right, fields)
    return True