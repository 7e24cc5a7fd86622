"""Pure reordering of a package's rounds and round questions.

Nothing here mutates its input; every function returns new sequences.
Out-of-range indices are caller bugs and raise ``IndexError``.
"""

from __future__ import annotations

from dataclasses import replace
from typing import List, Optional, Sequence, Tuple, TypeVar

from .identifiers import DragId, Kind
from .models import Package, Round

T = TypeVar("T")


def _check_index(index: int, length: int, name: str) -> None:
    if not 0 <= index < length:
        raise IndexError(f"{name} {index} out of range for length {length}")


def move_within_list(items: Sequence[T], from_index: int, to_index: int) -> List[T]:
    _check_index(from_index, len(items), "from_index")
    _check_index(to_index, len(items), "to_index")
    result = list(items)
    if from_index == to_index:
        return result
    item = result.pop(from_index)
    result.insert(to_index, item)
    return result


def move_across_lists(
    src: Sequence[T],
    src_index: int,
    dst: Sequence[T],
    dst_index: Optional[int] = None,
) -> Tuple[List[T], List[T]]:
    """Move ``src[src_index]`` into ``dst``; appended when ``dst_index`` is None."""
    _check_index(src_index, len(src), "src_index")
    new_src = list(src)
    new_dst = list(dst)
    item = new_src.pop(src_index)
    if dst_index is None:
        new_dst.append(item)
    else:
        if not 0 <= dst_index <= len(new_dst):
            raise IndexError(f"dst_index {dst_index} out of range for length {len(new_dst)}")
        new_dst.insert(dst_index, item)
    return new_src, new_dst


def reindex(items: Sequence[T]) -> List[T]:
    """Rewrite ``order_index`` to the 0-based position of each item."""
    return [
        item if getattr(item, "order_index") == position else replace(item, order_index=position)
        for position, item in enumerate(items)
    ]


def reindex_package(package: Package) -> Package:
    rounds = [
        replace(round_, round_questions=tuple(reindex(round_.round_questions)))
        for round_ in package.rounds
    ]
    return replace(package, rounds=tuple(reindex(rounds)))


def round_position(package: Package, round_id: DragId) -> Optional[int]:
    for index, round_ in enumerate(package.rounds):
        if round_.id == round_id:
            return index
    return None


def question_position(package: Package, link_id: DragId) -> Optional[Tuple[int, int]]:
    """(round index, question index) of a round-question link."""
    for round_index, round_ in enumerate(package.rounds):
        for question_index, link in enumerate(round_.round_questions):
            if link.id == link_id:
                return round_index, question_index
    return None


def _replace_rounds(package: Package, changed: dict) -> Package:
    rounds: List[Round] = list(package.rounds)
    for index, round_ in changed.items():
        rounds[index] = round_
    return replace(package, rounds=tuple(rounds))


def move_round(package: Package, active: DragId, over: DragId) -> Package:
    source = round_position(package, active)
    target = round_position(package, over)
    if source is None or target is None or source == target:
        return package
    return replace(package, rounds=tuple(move_within_list(package.rounds, source, target)))


def move_question(package: Package, active: DragId, over: DragId) -> Package:
    """Move a round-question link over another link or onto a round container."""
    if active == over:
        return package
    source = question_position(package, active)
    if source is None:
        return package
    src_round, src_index = source

    if over.kind is Kind.ROUND:
        dst_round = round_position(package, over)
        dst_index = None
    else:
        target = question_position(package, over)
        if target is None:
            return package
        dst_round, dst_index = target
    if dst_round is None:
        return package

    if src_round == dst_round:
        links = package.rounds[src_round].round_questions
        if dst_index is None:
            dst_index = len(links) - 1
        moved = move_within_list(links, src_index, dst_index)
        if moved == list(links):
            return package
        return _replace_rounds(
            package,
            {src_round: replace(package.rounds[src_round], round_questions=tuple(moved))},
        )

    new_src, new_dst = move_across_lists(
        package.rounds[src_round].round_questions,
        src_index,
        package.rounds[dst_round].round_questions,
        dst_index,
    )
    return _replace_rounds(
        package,
        {
            src_round: replace(package.rounds[src_round], round_questions=tuple(new_src)),
            dst_round: replace(package.rounds[dst_round], round_questions=tuple(new_dst)),
        },
    )


def apply_move(package: Package, active: DragId, over: DragId) -> Package:
    """Dispatch a drag of ``active`` over ``over`` to the matching move.

    A round dragged over a question is treated as dragged over that
    question's round.
    """
    if active.kind is Kind.ROUND:
        if over.kind is Kind.QUESTION:
            position = question_position(package, over)
            if position is None:
                return package
            over = package.rounds[position[0]].id
        return move_round(package, active, over)
    return move_question(package, active, over)


def contains(package: Package, drag_id: DragId) -> bool:
    if drag_id.kind is Kind.ROUND:
        return round_position(package, drag_id) is not None
    return question_position(package, drag_id) is not None


__all__ = [
    "move_within_list",
    "move_across_lists",
    "reindex",
    "reindex_package",
    "round_position",
    "question_position",
    "move_round",
    "move_question",
    "apply_move",
    "contains",
]
