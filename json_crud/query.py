from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Mapping, Tuple, Union

from .errors import InvalidFilterError, UnknownOperatorError

FIELD_OPS = {"$eq", "$ne", "$gt", "$gte", "$lt", "$lte", "$in", "$nin"}
LOGICAL_OPS = {"$and", "$or", "$not"}

_MISSING = object()


@dataclass(frozen=True)
class Field:
    """Constraint `op` on the value stored under `name` in a record."""
    name: str
    op: str
    operand: Any

    def __post_init__(self) -> None:
        if self.op not in FIELD_OPS:
            raise UnknownOperatorError(self.op)
        if self.op in ("$in", "$nin") and not isinstance(self.operand, (list, tuple)):
            raise InvalidFilterError(f"{self.op} test values should be an array")

    def evaluate(self, record: Mapping[str, Any]) -> bool:
        return _apply(self.op, record.get(self.name, _MISSING), self.operand)


@dataclass(frozen=True)
class And:
    children: Tuple["Node", ...] = ()

    def evaluate(self, record: Mapping[str, Any]) -> bool:
        # all() stops at the first failing child
        return all(child.evaluate(record) for child in self.children)


@dataclass(frozen=True)
class Or:
    children: Tuple["Node", ...] = ()

    def evaluate(self, record: Mapping[str, Any]) -> bool:
        return any(child.evaluate(record) for child in self.children)


@dataclass(frozen=True)
class Not:
    child: "Node"

    def evaluate(self, record: Mapping[str, Any]) -> bool:
        return not self.child.evaluate(record)


Node = Union[Field, And, Or, Not]
NODE_TYPES = (Field, And, Or, Not)

# The empty filter; compared by identity, an empty And built from a
# non-empty filter still rejects records that are not mappings
MATCH_ALL = And()


def compile_filter(query: Union[Mapping[str, Any], Node]) -> Node:
    """
    Turn a filter mapping into a node tree. Raises InvalidFilterError /
    UnknownOperatorError on malformed input, so callers can validate a filter
    before touching any data. Node trees are returned unchanged.
    """
    if isinstance(query, NODE_TYPES):
        return query
    if not isinstance(query, Mapping):
        raise InvalidFilterError(f"filter must be a mapping ({type(query).__name__} given)")
    if not query:
        return MATCH_ALL

    parts = []
    for key, value in query.items():
        if not isinstance(key, str):
            raise InvalidFilterError(f"filter keys must be strings ({key!r} given)")
        if key.startswith("$"):
            parts.append(_compile_logical(key, value))
        elif isinstance(value, Mapping):
            parts.extend(_compile_operators(key, value))
        else:
            parts.append(Field(key, "$eq", value))
    if len(parts) == 1:
        return parts[0]
    return And(tuple(parts))


def _compile_logical(key: str, value: Any) -> Node:
    if key == "$not":
        if not isinstance(value, (Mapping,) + NODE_TYPES):
            raise InvalidFilterError("$not takes a single filter")
        return Not(compile_filter(value))
    if key in ("$and", "$or"):
        if not isinstance(value, (list, tuple)):
            raise InvalidFilterError(f"{key} takes an array of filters")
        children = tuple(compile_filter(sub) for sub in value)
        return And(children) if key == "$and" else Or(children)
    raise UnknownOperatorError(key)


def _compile_operators(name: str, ops: Mapping[str, Any]) -> Iterator[Field]:
    # Several operators on one field are combined with AND; an empty mapping
    # constrains nothing.
    for op, operand in ops.items():
        yield Field(name, op, operand)


def matches(record: Any, query: Union[Mapping[str, Any], Node]) -> bool:
    """
    True when `record` satisfies `query`. The empty filter matches anything;
    a record that is not a mapping matches nothing else.
    """
    return evaluate(compile_filter(query), record)


def evaluate(node: Node, record: Any) -> bool:
    if node is MATCH_ALL:
        return True
    if not isinstance(record, Mapping):
        return False
    return node.evaluate(record)


def select(data: Mapping[str, Any], node: Node) -> Dict[str, Any]:
    """Items of `data` whose record satisfies `node`, in iteration order."""
    return {key: value for key, value in data.items() if evaluate(node, value)}


def _strict_equal(a: Any, b: Any) -> bool:
    if a is _MISSING or b is _MISSING:
        return False
    if isinstance(a, bool) != isinstance(b, bool):
        return False
    return a == b


def _equal_or_member(value: Any, operand: Any) -> bool:
    if isinstance(value, list) and any(_strict_equal(item, operand) for item in value):
        return True
    return _strict_equal(value, operand)


def _is_falsy(value: Any) -> bool:
    # JSON falsiness: absent, null, false, 0, ""
    if value is _MISSING or value is None or value is False:
        return True
    if isinstance(value, (int, float)):
        return value == 0 or value != value
    return value == ""


def _apply(op: str, value: Any, operand: Any) -> bool:
    if op == "$eq":
        return _equal_or_member(value, operand)
    if op == "$ne":
        return not _equal_or_member(value, operand)
    if op == "$in":
        return any(_strict_equal(value, candidate) for candidate in operand)
    if op == "$nin":
        return not any(_strict_equal(value, candidate) for candidate in operand)
    if _is_falsy(value):
        return False
    try:
        if op == "$gt":
            return value > operand
        if op == "$gte":
            return value >= operand
        if op == "$lt":
            return value < operand
        if op == "$lte":
            return value <= operand
    except TypeError:
        return False
    raise UnknownOperatorError(op)
