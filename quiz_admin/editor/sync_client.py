"""The editor's single owner of a package tree.

``PackageSyncClient`` keeps the last tree fetched from the server (the
snapshot), applies reorders and question edits to it optimistically, and
hands the matching writes to an :class:`AutoSaveScheduler`. After every
write settles, successful or not, the tree is fetched again and replaces
the snapshot; there is no merge step and no rollback log.

Structural changes (rounds and round membership) are never optimistic:
they go to the server first and the tree is re-fetched afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
import logging
from typing import Any, Dict, List, Optional

from ..content import is_empty
from .api import PackageApi
from .autosave import DEFAULT_DELAY, AutoSaveScheduler
from .config import EditorConfig
from .errors import EditorError, NotFound, ValidationError
from .identifiers import AnyId, DragId, Kind, tag_with_kind
from .models import Package, Question, Round, order_payload
from .notifications import Notifier
from .ordering import reindex_package


LOGGER = logging.getLogger(__name__)

ORDER_CHANNEL = "package-order"

DEFAULT_ROUND_NAME = "New round"
DEFAULT_ROUND_DESCRIPTION = "Round description"
DEFAULT_QUESTION_COUNT = 5
MAX_GENERATED = 20

# Editable question fields: API key -> model attribute.
QUESTION_FIELDS = {
    "title": "title",
    "content": "content",
    "answer": "answer",
    "topic": "topic",
    "difficulty": "difficulty",
    "factChecked": "fact_checked",
}


@dataclass
class AddQuestionContext:
    """Which round new, searched or generated questions are added to."""

    current_round_id: Optional[DragId] = None


@dataclass(frozen=True)
class Reorder:
    """Replace the arrangement of rounds and round questions."""

    package: Package

    @property
    def channel(self) -> str:
        return ORDER_CHANNEL

    def apply(self, package: Package) -> Package:
        # Rebuild from the given tree so field values stay current; only the
        # arrangement comes from this operation.
        rounds_by_id = {round_.id: round_ for round_ in package.rounds}
        links_by_id = {
            link.id: link for round_ in package.rounds for link in round_.round_questions
        }
        placed = set()
        arranged: List[Round] = []
        for shape in self.package.rounds:
            base = rounds_by_id.get(shape.id)
            if base is None:
                continue
            links = []
            for link in shape.round_questions:
                current = links_by_id.get(link.id)
                if current is not None and link.id not in placed:
                    links.append(current)
                    placed.add(link.id)
            arranged.append(replace(base, round_questions=tuple(links)))

        known = {round_.id for round_ in arranged}
        arranged.extend(round_ for round_ in package.rounds if round_.id not in known)
        for index, round_ in enumerate(arranged):
            original = rounds_by_id[round_.id]
            extra = tuple(link for link in original.round_questions if link.id not in placed)
            if extra:
                placed.update(link.id for link in extra)
                arranged[index] = replace(round_, round_questions=round_.round_questions + extra)
        return reindex_package(replace(package, rounds=tuple(arranged)))

    def payload(self) -> Dict[str, Any]:
        return order_payload(self.package)

    async def persist(self, api: PackageApi, current: Package) -> Any:
        # The server wants every round and link of the package, so the body
        # comes from the tree as it is when the write fires. Rounds or links
        # added since the drop are already folded in by apply().
        return await api.save_order(order_payload(current))


@dataclass(frozen=True)
class EditQuestion:
    question_id: int
    fields: Dict[str, Any] = field(default_factory=dict, hash=False)

    def __post_init__(self):
        unknown = sorted(set(self.fields) - set(QUESTION_FIELDS))
        if unknown:
            raise ValidationError(f"Unknown question fields: {', '.join(unknown)}", field=unknown[0])
        if not self.fields:
            raise ValidationError("Nothing to update.")

    @property
    def channel(self) -> str:
        return f"question:{self.question_id}:{','.join(sorted(self.fields))}"

    def apply(self, package: Package) -> Package:
        changes = {QUESTION_FIELDS[key]: value for key, value in self.fields.items()}
        return package.with_question(self.question_id, **changes)

    def payload(self) -> Dict[str, Any]:
        return dict(self.fields)

    async def persist(self, api: PackageApi, current: Package) -> Any:
        return await api.update_question(self.question_id, self.payload())


class PackageSyncClient:
    def __init__(
        self,
        api: PackageApi,
        package_id: int,
        *,
        notifier: Optional[Notifier] = None,
        scheduler: Optional[AutoSaveScheduler] = None,
        delay: float = DEFAULT_DELAY,
    ):
        self.api = api
        self.package_id = int(package_id)
        self.notifier = notifier or Notifier()
        self.scheduler = scheduler or AutoSaveScheduler(delay)
        self.scheduler.on_settled = self._on_settled
        self.snapshot: Optional[Package] = None
        self.preview: Optional[Package] = None
        self.not_found = False
        self.context = AddQuestionContext()
        self.available_questions: List[Question] = []
        self.available_total = 0
        self._unsettled: Dict[str, Any] = {}

    @classmethod
    def from_config(
        cls,
        config: EditorConfig,
        package_id: int,
        *,
        notifier: Optional[Notifier] = None,
    ) -> "PackageSyncClient":
        return cls(
            PackageApi.from_config(config),
            package_id,
            notifier=notifier,
            delay=config.autosave_delay,
        )

    @property
    def view(self) -> Optional[Package]:
        """What should be rendered: the drag preview if any, else the snapshot."""
        return self.preview if self.preview is not None else self.snapshot

    @property
    def saving(self) -> bool:
        return self.scheduler.saving

    # Reads

    async def load(self) -> Package:
        """Fetch the tree and make it the snapshot.

        Raises NotFound or NetworkError. Edits that have not been written
        yet are re-applied on top of the fetched tree.
        """
        data = await self.api.get_package(self.package_id)
        package = Package.from_api(data)
        for operation in self._unsettled.values():
            package = operation.apply(package)
        self.snapshot = package
        self.not_found = False
        LOGGER.info(
            "Loaded package %s with %s rounds.", self.package_id, len(package.rounds)
        )
        return package

    async def refresh(self) -> Optional[Package]:
        """Like :meth:`load`, but failures become editor state instead of exceptions.

        A missing package switches the editor to its not-found page; anything
        else is shown as a notification and the previous snapshot stays.
        """
        try:
            return await self.load()
        except NotFound as exc:
            LOGGER.warning("Package %s is not available: %s", self.package_id, exc)
            self.not_found = True
        except EditorError as exc:
            self.notifier.report(exc)
        return None

    # Optimistic writes

    def _require_snapshot(self) -> Package:
        if self.snapshot is None:
            raise RuntimeError("load() must complete before the package is changed.")
        return self.snapshot

    def mutate(self, operation) -> Package:
        """Apply ``operation`` locally and schedule its write on its channel."""
        package = self._require_snapshot()
        self.snapshot = operation.apply(package)
        self._unsettled[operation.channel] = operation

        async def persist(_payload, operation=operation):
            try:
                return await operation.persist(self.api, self._require_snapshot())
            finally:
                if self._unsettled.get(operation.channel) is operation:
                    del self._unsettled[operation.channel]

        self.scheduler.schedule(operation.channel, operation.payload(), persist)
        return self.snapshot

    async def _on_settled(self, channel: str, error: Optional[BaseException]) -> None:
        if error is not None:
            self.notifier.report(error)
        await self.refresh()

    def edit_question(self, question_id: int, **fields: Any) -> Package:
        return self.mutate(EditQuestion(int(question_id), fields))

    def show_preview(self, package: Package) -> None:
        self.preview = package

    def clear_preview(self) -> None:
        self.preview = None

    def commit_order(self, package: Package) -> Package:
        self.preview = None
        return self.mutate(Reorder(reindex_package(package)))

    # Fetch, mutate, re-fetch

    async def _round_trip(self, request, success: Optional[str] = None) -> Any:
        try:
            result = await request
        except EditorError as exc:
            self.notifier.report(exc)
            await self.refresh()
            return None
        if success:
            self.notifier.info("Success", success)
        await self.refresh()
        return result

    async def update_package(self, **fields: Any) -> Any:
        if "title" in fields and not str(fields["title"] or "").strip():
            raise ValidationError("Title is required.", field="title")
        return await self._round_trip(self.api.update_package(self.package_id, fields))

    async def add_round(
        self,
        name: str = DEFAULT_ROUND_NAME,
        description: str = DEFAULT_ROUND_DESCRIPTION,
        question_count: int = DEFAULT_QUESTION_COUNT,
    ) -> Any:
        if not (name or "").strip():
            raise ValidationError("Round name is required.", field="name")
        if question_count < 0:
            raise ValidationError("Question count cannot be negative.", field="questionCount")
        package = self._require_snapshot()
        return await self._round_trip(
            self.api.create_round(
                package_id=self.package_id,
                name=name.strip(),
                description=description,
                question_count=question_count,
                order_index=len(package.rounds),
            ),
            success="Round added",
        )

    async def update_round(
        self,
        round_id: AnyId,
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
        question_count: Optional[int] = None,
    ) -> Any:
        fields: Dict[str, Any] = {}
        if name is not None:
            if not name.strip():
                raise ValidationError("Round name is required.", field="name")
            fields["name"] = name.strip()
        if description is not None:
            fields["description"] = description
        if question_count is not None:
            fields["questionCount"] = question_count
        if not fields:
            raise ValidationError("Nothing to update.")
        return await self._round_trip(
            self.api.update_round(tag_with_kind(round_id, Kind.ROUND), fields),
            success="Round updated",
        )

    async def delete_round(self, round_id: AnyId) -> Any:
        target = tag_with_kind(round_id, Kind.ROUND)
        if self.context.current_round_id == target:
            self.context.current_round_id = None
        return await self._round_trip(self.api.delete_round(target), success="Round deleted")

    def select_round(self, round_id: Optional[AnyId]) -> None:
        self.context.current_round_id = (
            None if round_id is None else tag_with_kind(round_id, Kind.ROUND)
        )

    def _target_round(self, round_id: Optional[AnyId]) -> Round:
        target = round_id if round_id is not None else self.context.current_round_id
        if target is None:
            raise ValidationError("Select a round to add questions to.", field="roundId")
        round_ = self._require_snapshot().find_round(target)
        if round_ is None:
            raise ValidationError("The selected round is not part of this package.", field="roundId")
        return round_

    async def add_question_to_round(self, question_id: int, round_id: Optional[AnyId] = None) -> Any:
        round_ = self._target_round(round_id)
        return await self._round_trip(
            self.api.add_question_to_round(round_.id, question_id, len(round_.round_questions)),
            success="Question added to round",
        )

    async def remove_question_from_round(self, round_id: AnyId, question_id: int) -> Any:
        return await self._round_trip(
            self.api.remove_question_from_round(tag_with_kind(round_id, Kind.ROUND), question_id),
            success="Question removed from round",
        )

    async def create_question(
        self,
        *,
        content: Dict[str, Any],
        answer: str = "",
        title: str = "Question",
        difficulty: int = 1,
        topic: Optional[str] = None,
        round_id: Optional[AnyId] = None,
    ) -> Optional[Question]:
        """Create a question and append it to the target round, if one is selected."""
        if not (title or "").strip():
            raise ValidationError("Title is required.", field="title")
        if is_empty(content):
            raise ValidationError("Question content is required.", field="content")
        if not 1 <= int(difficulty) <= 5:
            raise ValidationError("Difficulty must be between 1 and 5.", field="difficulty")
        target = None
        if round_id is not None or self.context.current_round_id is not None:
            target = self._target_round(round_id)

        body: Dict[str, Any] = {
            "title": title.strip(),
            "content": content,
            "answer": answer,
            "difficulty": int(difficulty),
        }
        if topic:
            body["topic"] = topic
        try:
            created = Question.from_api(await self.api.create_question(body))
        except EditorError as exc:
            self.notifier.report(exc)
            await self.refresh()
            return None
        if target is not None:
            try:
                await self.api.add_question_to_round(
                    target.id, created.id, len(target.round_questions)
                )
            except EditorError as exc:
                # The question exists even though it was not placed.
                self.notifier.report(exc)
                await self.refresh()
                return created
        self.notifier.info("Success", "Question created")
        await self.refresh()
        return created

    async def search_questions(self, query: str = "", page: int = 1, limit: int = 20) -> List[Question]:
        try:
            data = await self.api.search_questions(query, page, limit)
        except EditorError as exc:
            self.notifier.report(exc)
            return self.available_questions
        self.available_questions = [Question.from_api(item) for item in data.get("questions") or []]
        self.available_total = int(data.get("total") or 0)
        return self.available_questions

    async def generate_questions(self, prompt: str, count: int = DEFAULT_QUESTION_COUNT) -> List[Question]:
        """Generate questions and append each to the current round, in order."""
        if not (prompt or "").strip():
            raise ValidationError("Describe the questions to generate.", field="prompt")
        if not 1 <= count <= MAX_GENERATED:
            raise ValidationError(f"Count must be between 1 and {MAX_GENERATED}.", field="count")
        target = self._target_round(None)

        generated: List[Question] = []
        position = len(target.round_questions)
        try:
            for item in await self.api.generate_questions(prompt.strip(), count):
                question = Question.from_api(item)
                await self.api.add_question_to_round(target.id, question.id, position)
                generated.append(question)
                position += 1
        except EditorError as exc:
            self.notifier.report(exc)
            await self.refresh()
            return generated
        self.notifier.info("Success", f"Generated {len(generated)} new questions")
        await self.refresh()
        return generated

    async def close(self) -> None:
        """Write everything still waiting on a quiet period."""
        await self.scheduler.flush()


__all__ = [
    "ORDER_CHANNEL",
    "AddQuestionContext",
    "Reorder",
    "EditQuestion",
    "PackageSyncClient",
]
