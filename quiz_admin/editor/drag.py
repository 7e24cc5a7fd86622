from __future__ import annotations

from enum import Enum
import logging
from typing import Optional, Tuple

from .identifiers import AnyId, DragId, coerce
from .models import Package
from .ordering import apply_move, contains, reindex_package


LOGGER = logging.getLogger(__name__)


class DragState(str, Enum):
    IDLE = "idle"
    DRAGGING = "dragging"


class DropOutcome(str, Enum):
    DROPPED = "dropped"
    CANCELLED = "cancelled"
    UNCHANGED = "unchanged"


def _shape(package: Package) -> Tuple:
    return tuple(
        (round_.id, tuple(link.id for link in round_.round_questions))
        for round_ in package.rounds
    )


class DragController:
    """Drives one drag gesture at a time against a :class:`PackageSyncClient`.

    While dragging, every move over a new target recomputes the prospective
    arrangement and shows it as the client's preview. Dropping hands that
    arrangement to the client, which saves it on the package-order channel.
    Cancelling drops the preview so the last committed tree shows again.
    """

    def __init__(self, client):
        self.client = client
        self.state = DragState.IDLE
        self.active: Optional[DragId] = None
        self._origin: Optional[Package] = None
        self._arrangement: Optional[Package] = None
        self._last_over: Optional[DragId] = None

    @property
    def dragging(self) -> bool:
        return self.state is DragState.DRAGGING

    def pick_up(self, item: AnyId) -> bool:
        if self.dragging:
            LOGGER.debug("Ignoring pick-up of %s while %s is dragged.", item, self.active)
            return False
        drag_id = coerce(item)
        package = self.client.snapshot
        if package is None or not contains(package, drag_id):
            LOGGER.debug("Nothing to pick up at %s.", drag_id)
            return False
        self.state = DragState.DRAGGING
        self.active = drag_id
        self._origin = package
        self._arrangement = package
        self._last_over = None
        return True

    def move_over(self, over: AnyId) -> Optional[Package]:
        if not self.dragging:
            return None
        target = coerce(over)
        if target == self._last_over or not contains(self._arrangement, target):
            return self._arrangement
        self._last_over = target
        self._arrangement = apply_move(self._arrangement, self.active, target)
        self.client.show_preview(self._arrangement)
        return self._arrangement

    def drop(self, over: Optional[AnyId] = None) -> DropOutcome:
        """End the gesture over ``over``; no target means the drop is cancelled."""
        if not self.dragging:
            return DropOutcome.CANCELLED
        if over is None:
            return self.cancel()
        target = coerce(over)
        if not contains(self._arrangement, target):
            return self.cancel()
        self.move_over(target)

        arrangement = reindex_package(self._arrangement)
        unchanged = _shape(arrangement) == _shape(self._origin)
        active = self.active
        self._reset()
        if unchanged:
            self.client.clear_preview()
            LOGGER.debug("Drop of %s left the order unchanged.", active)
            return DropOutcome.UNCHANGED
        self.client.commit_order(arrangement)
        LOGGER.info("Dropped %s over %s.", active, target)
        return DropOutcome.DROPPED

    def cancel(self) -> DropOutcome:
        if self.dragging:
            LOGGER.debug("Cancelled drag of %s.", self.active)
        self._reset()
        self.client.clear_preview()
        return DropOutcome.CANCELLED

    def _reset(self) -> None:
        self.state = DragState.IDLE
        self.active = None
        self._origin = None
        self._arrangement = None
        self._last_over = None


__all__ = ["DragState", "DropOutcome", "DragController"]
