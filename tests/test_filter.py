import pytest

from zscan.filter import (
    FieldDef,
    FilterNode,
    FilterValidationError,
    NodeType,
    Operator,
    validate_filter,
)

FIELDS = [
    FieldDef("saddr", "string"),
    FieldDef(None, "int"),
    FieldDef("sport", "int"),
    FieldDef("success", "bool"),
    FieldDef("classification", "string"),
]


def comparison(op, name, value):
    if isinstance(value, str):
        literal = FilterNode(NodeType.STRING, value=value)
    else:
        literal = FilterNode(NodeType.INT, value=value)
    return FilterNode(
        NodeType.OP,
        op=op,
        left=FilterNode(NodeType.FIELD, field_name=name),
        right=literal,
    )


def test_empty_filter_is_valid():
    assert validate_filter(None, FIELDS) is True


def test_string_comparison_resolves_index():
    node = comparison(Operator.EQ, "classification", "synack")
    assert validate_filter(node, FIELDS) is True
    assert node.left.field_index == 4


def test_int_comparison_on_bool_field():
    node = comparison(Operator.EQ, "success", 1)
    assert validate_filter(node, FIELDS) is True
    assert node.left.field_index == 3


def test_unnamed_fielddef_is_skipped():
    node = comparison(Operator.GT, "sport", 1024)
    validate_filter(node, FIELDS)
    assert node.left.field_index == 2


def test_unknown_field_raises():
    node = comparison(Operator.EQ, "nosuchfield", 1)
    with pytest.raises(FilterValidationError, match="Field 'nosuchfield' does not exist"):
        validate_filter(node, FIELDS)


def test_string_value_on_int_field_raises():
    node = comparison(Operator.EQ, "sport", "80")
    with pytest.raises(FilterValidationError, match="is not of type 'string'"):
        validate_filter(node, FIELDS)


def test_int_value_on_string_field_raises():
    node = comparison(Operator.EQ, "saddr", 5)
    with pytest.raises(FilterValidationError, match="is not of type 'int'"):
        validate_filter(node, FIELDS)


def test_invalid_literal_type_raises():
    node = FilterNode(
        NodeType.OP,
        op=Operator.EQ,
        left=FilterNode(NodeType.FIELD, field_name="sport"),
        right=FilterNode(NodeType.FIELD, field_name="saddr"),
    )
    with pytest.raises(FilterValidationError):
        validate_filter(node, FIELDS)


def test_and_or_tree_validates_all_children():
    left = comparison(Operator.EQ, "success", 1)
    right = comparison(Operator.NEQ, "classification", "rst")
    tree = FilterNode(NodeType.OP, op=Operator.AND, left=left, right=right)
    assert validate_filter(tree, FIELDS) is True
    assert (left.left.field_index, right.left.field_index) == (3, 4)


def test_bad_child_under_or_raises():
    good = comparison(Operator.EQ, "success", 1)
    bad = comparison(Operator.LT, "missing", 2)
    tree = FilterNode(NodeType.OP, op=Operator.OR, left=good, right=bad)
    with pytest.raises(FilterValidationError):
        validate_filter(tree, FIELDS)