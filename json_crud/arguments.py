"""Normalization of create()/update() arguments.

Callers may pass alternating id/value pairs, objects carrying their id under
the configured id field, or one list holding either shape. Each call is
resolved once into a SaveRequest: an ordered list of (id, value) entries.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from .errors import InvalidArgumentError
from .utils import is_id

Entry = Tuple[Any, Any]


@dataclass(frozen=True)
class ByPairs:
    """`id1, value1, id2, value2, ...`"""

    entries: Tuple[Entry, ...]


@dataclass(frozen=True)
class ByIdField:
    """`{id_field: id1, ...}, {id_field: id2, ...}`"""

    field: str
    records: Tuple[Dict[str, Any], ...]

    @property
    def entries(self) -> Tuple[Entry, ...]:
        return tuple((rec[self.field], rec) for rec in self.records)


@dataclass(frozen=True)
class Batch:
    """A single list argument wrapping one of the other two shapes."""

    inner: Union[ByPairs, ByIdField]

    @property
    def entries(self) -> Tuple[Entry, ...]:
        return self.inner.entries


SaveInput = Union[ByPairs, ByIdField, Batch]


@dataclass(frozen=True)
class SaveRequest:
    data: SaveInput
    replace: bool = False

    @property
    def entries(self) -> Tuple[Entry, ...]:
        return self.data.entries

    @property
    def ids(self) -> List[Any]:
        return [rec_id for rec_id, _ in self.entries]


def _classify(args: Sequence[Any], id_field: Optional[str]) -> Union[ByPairs, ByIdField]:
    if isinstance(args[0], dict):
        if not id_field:
            raise InvalidArgumentError(
                "id field must be given in options to be able to save objects without an id"
            )
        for i, rec in enumerate(args, 1):
            if not isinstance(rec, dict):
                raise InvalidArgumentError(
                    f"Value {i} is not an object ({type(rec).__name__} given); "
                    "id/value pairs and objects cannot be mixed"
                )
            if not is_id(rec.get(id_field)):
                raise InvalidArgumentError(
                    f"Invalid id value for value {i} ({type(rec.get(id_field)).__name__} given)"
                )
        return ByIdField(field=id_field, records=tuple(args))

    if len(args) == 1:
        raise InvalidArgumentError("Non-object value must be given with a key value")
    if len(args) % 2:
        raise InvalidArgumentError(f"Uneven number of key/value arguments given ({len(args)} given)")
    for i in range(0, len(args), 2):
        if not is_id(args[i]):
            raise InvalidArgumentError(
                f"Invalid id value for key {i // 2 + 1} ({type(args[i]).__name__} given)"
            )
    return ByPairs(entries=tuple((args[i], args[i + 1]) for i in range(0, len(args), 2)))


def parse_save_args(
    args: Sequence[Any],
    *,
    id_field: Optional[str] = None,
    allow_replace: bool = False,
    replace: Optional[bool] = None,
) -> SaveRequest:
    """
    Resolve create()/update() positional arguments. With `allow_replace`, a
    leading bool is taken as the replace flag (create only). Raises
    InvalidArgumentError before anything is read or written.
    """
    args = list(args)
    flag = False
    if allow_replace:
        if args and isinstance(args[0], bool):
            if replace is not None:
                raise InvalidArgumentError("replace flag given both positionally and by keyword")
            flag = args.pop(0)
        elif replace is not None:
            flag = bool(replace)
    elif replace is not None:
        raise InvalidArgumentError("replace is only accepted by create")

    if not args:
        raise InvalidArgumentError("No data given")

    if len(args) == 1 and isinstance(args[0], list):
        if not args[0]:
            raise InvalidArgumentError("No data given")
        return SaveRequest(data=Batch(_classify(args[0], id_field)), replace=flag)
    return SaveRequest(data=_classify(args, id_field), replace=flag)
