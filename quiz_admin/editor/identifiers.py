"""Kind-tagged identifiers for draggable rows.

Rounds and round-question links share one drag namespace, so a bare
integer is ambiguous there. Inside the editor every draggable id is a
:class:`DragId`; it is reduced to the raw integer only when a request is
built for the server.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union


class Kind(str, Enum):
    ROUND = "round"
    QUESTION = "question"


@dataclass(frozen=True, order=True)
class DragId:
    kind: Kind
    raw_id: int

    def __str__(self) -> str:
        return f"{self.kind.value}-{self.raw_id}"

    @classmethod
    def parse(cls, value: str) -> "DragId":
        """Inverse of ``str()``, for ids that come back from a UI layer."""
        kind, sep, raw = value.rpartition("-")
        if not sep:
            raise ValueError(f"Not a drag id: {value!r}")
        try:
            return cls(Kind(kind), int(raw))
        except ValueError as exc:
            raise ValueError(f"Not a drag id: {value!r}") from exc


AnyId = Union[DragId, int, str]


def tag_with_kind(value: AnyId, kind: Kind) -> DragId:
    """Tag a raw id. Already-tagged ids of the same kind are returned as-is."""
    if isinstance(value, str):
        value = DragId.parse(value) if not value.isdigit() else int(value)
    if isinstance(value, DragId):
        if value.kind is not Kind(kind):
            raise ValueError(f"{value} is not a {Kind(kind).value} id")
        return value
    return DragId(Kind(kind), int(value))


def strip_tag(value: AnyId) -> int:
    """Raw integer id for the persistence layer. Plain ints pass through."""
    if isinstance(value, DragId):
        return value.raw_id
    if isinstance(value, str) and not value.isdigit():
        return DragId.parse(value).raw_id
    return int(value)


def coerce(value: AnyId) -> DragId:
    """Accept a DragId or its string form."""
    if isinstance(value, DragId):
        return value
    if isinstance(value, str):
        return DragId.parse(value)
    raise TypeError(f"Cannot infer the kind of bare id {value!r}")


__all__ = ["Kind", "DragId", "AnyId", "tag_with_kind", "strip_tag", "coerce"]
