from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple

from ..content import content_preview
from .identifiers import DragId, Kind, strip_tag, tag_with_kind


@dataclass(frozen=True)
class Question:
    id: int
    title: str
    content: Dict[str, Any] = field(default_factory=dict, hash=False)
    answer: str = ""
    topic: Optional[str] = None
    difficulty: int = 1
    is_generated: bool = False
    fact_checked: bool = False
    author_id: Optional[int] = None
    author_name: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Question":
        author = data.get("author") or {}
        return cls(
            id=int(data["id"]),
            title=data.get("title") or "",
            content=data.get("content") or {},
            answer=data.get("answer") or "",
            topic=data.get("topic"),
            difficulty=int(data.get("difficulty") or 1),
            is_generated=bool(data.get("isGenerated")),
            fact_checked=bool(data.get("factChecked")),
            author_id=data.get("authorId"),
            author_name=author.get("username"),
        )

    @property
    def preview(self) -> str:
        return content_preview(self.content)


@dataclass(frozen=True)
class RoundQuestion:
    id: DragId
    question: Question
    order_index: int = 0

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "RoundQuestion":
        return cls(
            id=tag_with_kind(data["id"], Kind.QUESTION),
            question=Question.from_api(data["question"]),
            order_index=int(data.get("orderIndex") or 0),
        )


@dataclass(frozen=True)
class Round:
    id: DragId
    name: str
    description: str = ""
    question_count: int = 0
    order_index: int = 0
    round_questions: Tuple[RoundQuestion, ...] = ()

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Round":
        links = sorted(data.get("roundQuestions") or [], key=lambda link: link.get("orderIndex") or 0)
        return cls(
            id=tag_with_kind(data["id"], Kind.ROUND),
            name=data.get("name") or "",
            description=data.get("description") or "",
            question_count=int(data.get("questionCount") or 0),
            order_index=int(data.get("orderIndex") or 0),
            round_questions=tuple(RoundQuestion.from_api(link) for link in links),
        )

    @property
    def questions(self) -> List[Question]:
        return [link.question for link in self.round_questions]


@dataclass(frozen=True)
class Package:
    id: int
    title: str
    description: str = ""
    play_date: Optional[str] = None
    author_id: Optional[int] = None
    author_name: Optional[str] = None
    template_id: Optional[int] = None
    rounds: Tuple[Round, ...] = ()

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Package":
        author = data.get("author") or {}
        rounds = sorted(data.get("rounds") or [], key=lambda item: item.get("orderIndex") or 0)
        return cls(
            id=int(data["id"]),
            title=data.get("title") or "",
            description=data.get("description") or "",
            play_date=data.get("playDate"),
            author_id=data.get("authorId"),
            author_name=author.get("username"),
            template_id=data.get("templateId"),
            rounds=tuple(Round.from_api(item) for item in rounds),
        )

    def find_round(self, round_id) -> Optional[Round]:
        target = tag_with_kind(round_id, Kind.ROUND)
        for round_ in self.rounds:
            if round_.id == target:
                return round_
        return None

    def with_question(self, question_id: int, **changes: Any) -> "Package":
        """Copy with every placement of one question updated."""
        rounds = []
        for round_ in self.rounds:
            links = tuple(
                replace(link, question=replace(link.question, **changes))
                if link.question.id == question_id
                else link
                for link in round_.round_questions
            )
            rounds.append(replace(round_, round_questions=links))
        return replace(self, rounds=tuple(rounds))


def order_payload(package: Package) -> Dict[str, Any]:
    """Body for the save-order endpoint, with drag tags stripped.

    The whole tree is always sent, including rounds the last move did not
    touch.
    """
    return {
        "rounds": [
            {
                "id": strip_tag(round_.id),
                "orderIndex": round_.order_index,
                "roundQuestions": [
                    {"id": strip_tag(link.id), "orderIndex": link.order_index}
                    for link in round_.round_questions
                ],
            }
            for round_ in package.rounds
        ]
    }


__all__ = ["Question", "RoundQuestion", "Round", "Package", "order_payload"]
