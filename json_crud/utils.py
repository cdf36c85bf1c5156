from __future__ import annotations
import copy
import json
from typing import Any, Dict, Optional
from urllib.parse import quote, unquote

from .errors import CorruptDataError


def is_id(value: Any) -> bool:
    # bool is an int subclass but never an id
    return isinstance(value, (str, int, float)) and not isinstance(value, bool)


def key_of(rec_id: Any) -> str:
    """Persisted (string) form of an id, as used for JSON object keys and file names."""
    if isinstance(rec_id, float) and rec_id.is_integer():
        return str(int(rec_id))
    return str(rec_id)


def id_to_filename(key: str, extension: str) -> str:
    return quote(key, safe="") + extension


def filename_to_id(filename: str, extension: str) -> Optional[str]:
    if not filename.endswith(extension):
        return None
    return unquote(filename[: -len(extension)])


def deep_merge(current: Any, new: Any) -> Any:
    """
    Merge `new` into `current` and return the result without touching either.
    Objects merge key-wise (recursively); arrays, scalars and type mismatches
    are replaced by `new`. merge(x, x) == x.
    """
    if isinstance(current, dict) and isinstance(new, dict):
        out: Dict[str, Any] = copy.deepcopy(current)
        for k, v in new.items():
            if isinstance(v, dict) and isinstance(out.get(k), dict):
                out[k] = deep_merge(out[k], v)
            else:
                out[k] = copy.deepcopy(v)
        return out
    return copy.deepcopy(new)


def dumps(value: Any, indent: Optional[int] = 2) -> str:
    return json.dumps(value, indent=indent, ensure_ascii=False)


def loads(text: str, source: str) -> Any:
    try:
        return json.loads(text)
    except ValueError as e:
        raise CorruptDataError(f"Invalid JSON in {source}", e) from e
