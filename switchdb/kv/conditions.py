"""
Condition expressions for conditional writes.

A condition is a small tree built from comparisons, attribute existence
tests, AND and NOT. Backends either evaluate it directly against the
existing item (memory, SQLite) or render it into DynamoDB's condition
expression syntax.

Invariants:
    - A comparison involving a missing attribute is false
    - Values of different types never compare (false for every operator)
    - An absent item evaluates exactly like an empty one
"""

from __future__ import annotations

import operator
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

_MISSING = object()

_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "=": operator.eq,
    "<>": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


@dataclass
class ExpressionBuilder:
    """Collects placeholder names and values while rendering a condition."""

    names: Dict[str, str] = field(default_factory=dict)
    values: Dict[str, Any] = field(default_factory=dict)

    def name(self, attribute: str) -> str:
        for placeholder, existing in self.names.items():
            if existing == attribute:
                return placeholder
        placeholder = f"#n{len(self.names)}"
        self.names[placeholder] = attribute
        return placeholder

    def value(self, value: Any) -> str:
        placeholder = f":v{len(self.values)}"
        self.values[placeholder] = value
        return placeholder


class Condition:
    """Base class for condition expression nodes."""

    def evaluate(self, item: Optional[Mapping[str, Any]]) -> bool:
        raise NotImplementedError

    def render(self, builder: ExpressionBuilder) -> str:
        raise NotImplementedError

    def __and__(self, other: Condition) -> Condition:
        return And(self, other)

    def __invert__(self) -> Condition:
        return Not(self)


@dataclass(frozen=True)
class Compare(Condition):
    """``name <op> value`` on a single attribute."""

    name: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in _OPERATORS:
            raise ValueError(f"Unsupported comparison operator: {self.op}")

    def evaluate(self, item: Optional[Mapping[str, Any]]) -> bool:
        current = (item or {}).get(self.name, _MISSING)
        if current is _MISSING or type(current) is not type(self.value):
            return False
        return _OPERATORS[self.op](current, self.value)

    def render(self, builder: ExpressionBuilder) -> str:
        return f"{builder.name(self.name)} {self.op} {builder.value(self.value)}"


@dataclass(frozen=True)
class AttributeExists(Condition):
    name: str

    def evaluate(self, item: Optional[Mapping[str, Any]]) -> bool:
        return self.name in (item or {})

    def render(self, builder: ExpressionBuilder) -> str:
        return f"attribute_exists({builder.name(self.name)})"


@dataclass(frozen=True)
class AttributeNotExists(Condition):
    name: str

    def evaluate(self, item: Optional[Mapping[str, Any]]) -> bool:
        return self.name not in (item or {})

    def render(self, builder: ExpressionBuilder) -> str:
        return f"attribute_not_exists({builder.name(self.name)})"


@dataclass(frozen=True, init=False)
class And(Condition):
    operands: Tuple[Condition, ...]

    def __init__(self, *operands: Condition) -> None:
        if len(operands) < 2:
            raise ValueError("And requires at least two operands")
        object.__setattr__(self, "operands", tuple(operands))

    def evaluate(self, item: Optional[Mapping[str, Any]]) -> bool:
        return all(c.evaluate(item) for c in self.operands)

    def render(self, builder: ExpressionBuilder) -> str:
        return " AND ".join(f"({c.render(builder)})" for c in self.operands)


@dataclass(frozen=True)
class Not(Condition):
    operand: Condition

    def evaluate(self, item: Optional[Mapping[str, Any]]) -> bool:
        return not self.operand.evaluate(item)

    def render(self, builder: ExpressionBuilder) -> str:
        return f"NOT ({self.operand.render(builder)})"


def less_than(name: str, value: Any) -> Compare:
    return Compare(name, "<", value)


def equal(name: str, value: Any) -> Compare:
    return Compare(name, "=", value)


def render(condition: Condition) -> Tuple[str, Dict[str, str], Dict[str, Any]]:
    """Render a condition to (expression, attribute names, attribute values)."""
    builder = ExpressionBuilder()
    expression = condition.render(builder)
    return expression, builder.names, builder.values
