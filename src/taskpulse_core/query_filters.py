"""Typed query predicates.

Dynamic filters are expressed as a list of ``Clause(field, operator, value)``
entries, AND-ed together. Each filterable field is registered with either a
column expression or a factory that builds the predicate itself, so callers
never splice request text into SQL.
"""
import enum
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Sequence, Union

from sqlalchemy import Select, and_
from sqlalchemy.sql.elements import ColumnElement

from .errors import ValidationError


class Operator(str, enum.Enum):
    """Supported comparison operators."""

    EQ = "eq"
    NE = "ne"
    IN = "in"
    GTE = "gte"
    LTE = "lte"


@dataclass(frozen=True)
class Clause:
    """One filter condition."""

    field: str
    operator: Operator
    value: Any


# A field maps to a column, or to a callable (operator, value) -> predicate
FieldTarget = Union[ColumnElement, Callable[[Operator, Any], ColumnElement]]


def _column_predicate(column: ColumnElement, operator: Operator, value: Any) -> ColumnElement:
    if operator is Operator.EQ:
        return column == value
    if operator is Operator.NE:
        return column != value
    if operator is Operator.IN:
        if not isinstance(value, (list, tuple, set, frozenset)):
            raise ValidationError(f"Operator 'in' needs a list value, got {type(value).__name__}")
        return column.in_(list(value))
    if operator is Operator.GTE:
        return column >= value
    if operator is Operator.LTE:
        return column <= value
    raise ValidationError(f"Unsupported operator: {operator}")


def build_predicate(clause: Clause, fields: Mapping[str, FieldTarget]) -> ColumnElement:
    """
    Build the SQL predicate for a single clause.

    Raises:
        ValidationError: If the field is not registered or the operator is unknown
    """
    if clause.field not in fields:
        raise ValidationError(f"Cannot filter on field '{clause.field}'")
    try:
        operator = Operator(clause.operator)
    except ValueError:
        raise ValidationError(f"Unsupported operator: {clause.operator}")

    target = fields[clause.field]
    if isinstance(target, ColumnElement) or hasattr(target, "__clause_element__"):
        return _column_predicate(target, operator, clause.value)
    return target(operator, clause.value)


def apply_clauses(
    stmt: Select,
    clauses: Sequence[Clause],
    fields: Mapping[str, FieldTarget],
) -> Select:
    """AND every clause onto a select statement."""
    predicates = [build_predicate(clause, fields) for clause in clauses]
    if not predicates:
        return stmt
    return stmt.where(and_(*predicates))
