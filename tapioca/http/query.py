"""Encodes request records into URL query parameters.

Fields are declared on dataclasses with `query_field`:

    @dataclass
    class MessagesQuery:
        limit: int = query_field("limit", default=0, omitempty=True)
        before: Optional[Snowflake] = query_field("before", default=None)
"""

import dataclasses
import typing as t

from ..utils import MISSING

QueryPairs = t.List[t.Tuple[str, str]]

_META = "tapioca.query"


def query_field(name: t.Optional[str] = None, *, omitempty: bool = False, **kwargs: t.Any) -> t.Any:
    metadata = {_META: (name, omitempty)}
    return dataclasses.field(metadata=metadata, **kwargs)


def _encode_value(value: t.Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"

    return str(value)


def _is_zero(value: t.Any) -> bool:
    if isinstance(value, (str, bytes, list, tuple, dict, set)):
        return len(value) == 0

    return value == 0 or value is False


def _add(pairs: QueryPairs, name: str, value: t.Any, omitempty: bool) -> None:
    if value is None or value is MISSING:
        return

    if omitempty and _is_zero(value):
        return

    if isinstance(value, (list, tuple, set, frozenset)):
        for item in value:
            pairs.append((name, _encode_value(item)))
        return

    pairs.append((name, _encode_value(value)))


def encode_query(record: t.Any) -> QueryPairs:
    """Turns a `query_field` dataclass or a mapping into query pairs.

    Mapping entries are always treated as ``omitempty=False``, only
    `None` and `MISSING` are skipped.
    """
    pairs: QueryPairs = []

    if record is None:
        return pairs

    if dataclasses.is_dataclass(record) and not isinstance(record, type):
        for f in dataclasses.fields(record):
            name, omitempty = f.metadata.get(_META, (None, False))
            _add(pairs, name or f.name, getattr(record, f.name), omitempty)

        return pairs

    for name, value in record.items():
        _add(pairs, name, value, False)

    return pairs
