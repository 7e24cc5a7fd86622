"""Debounced persistence, one timer per channel.

A channel names the entity a write addresses (the package order, or one
field of one question). Scheduling on a channel replaces whatever was
waiting there and restarts its quiet period; other channels are left
alone. Once a write has been handed to the network it is never cancelled.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from .errors import EditorError


LOGGER = logging.getLogger(__name__)

DEFAULT_DELAY = 1.0

Persist = Callable[[Any], Awaitable[Any]]
SettledCallback = Callable[[str, Optional[BaseException]], Any]


@dataclass
class _PendingWrite:
    payload: Any
    persist: Persist
    handle: asyncio.TimerHandle


class AutoSaveScheduler:
    def __init__(
        self,
        delay: float = DEFAULT_DELAY,
        *,
        on_settled: Optional[SettledCallback] = None,
        on_saving_changed: Optional[Callable[[bool], None]] = None,
    ):
        self.delay = delay
        self.on_settled = on_settled
        self.on_saving_changed = on_saving_changed
        self._pending: Dict[str, _PendingWrite] = {}
        self._inflight: Dict[str, int] = {}
        self._saving: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()

    @property
    def saving(self) -> bool:
        return bool(self._saving)

    def is_pending(self, channel: str) -> bool:
        return channel in self._pending

    def is_saving(self, channel: str) -> bool:
        return channel in self._saving

    def pending_payloads(self) -> Dict[str, Any]:
        return {channel: entry.payload for channel, entry in self._pending.items()}

    def schedule(self, channel: str, payload: Any, persist: Persist) -> None:
        """Queue ``persist(payload)`` to run once ``channel`` has been quiet for ``delay``."""
        loop = asyncio.get_running_loop()
        previous = self._pending.pop(channel, None)
        if previous is not None:
            previous.handle.cancel()
            LOGGER.debug("Replaced pending write on channel %s.", channel)
        handle = loop.call_later(self.delay, self._fire, channel)
        self._pending[channel] = _PendingWrite(payload, persist, handle)
        LOGGER.debug("Scheduled write on channel %s in %.3fs.", channel, self.delay)

    def cancel(self, channel: str) -> bool:
        entry = self._pending.pop(channel, None)
        if entry is None:
            return False
        entry.handle.cancel()
        if not self._inflight.get(channel):
            self._set_saving(channel, False)
        LOGGER.debug("Cancelled pending write on channel %s.", channel)
        return True

    def _set_saving(self, channel: str, active: bool) -> None:
        was_saving = self.saving
        if active:
            self._saving.add(channel)
        else:
            self._saving.discard(channel)
        if self.on_saving_changed is not None and was_saving != self.saving:
            self.on_saving_changed(self.saving)

    def _fire(self, channel: str) -> None:
        entry = self._pending.pop(channel, None)
        if entry is None:
            return
        self._inflight[channel] = self._inflight.get(channel, 0) + 1
        self._set_saving(channel, True)
        LOGGER.info("Saving channel %s.", channel)
        task = asyncio.get_running_loop().create_task(self._run(channel, entry))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, channel: str, entry: _PendingWrite) -> None:
        error: Optional[BaseException] = None
        try:
            await entry.persist(entry.payload)
        except EditorError as exc:
            LOGGER.warning("Write on channel %s failed: %s", channel, exc)
            error = exc
        except Exception as exc:
            LOGGER.exception("Unexpected failure writing channel %s.", channel)
            error = exc
        else:
            LOGGER.info("Saved channel %s.", channel)
        finally:
            self._inflight[channel] -= 1
            # A newer write scheduled meanwhile keeps the flag up until it settles.
            if not self._inflight[channel] and channel not in self._pending:
                self._set_saving(channel, False)

        if self.on_settled is None:
            return
        try:
            result = self.on_settled(channel, error)
            if inspect.isawaitable(result):
                await result
        except Exception:
            LOGGER.exception("Settle callback for channel %s failed.", channel)

    async def flush(self) -> None:
        """Fire every pending write now and wait for all of them to settle."""
        for channel in list(self._pending):
            self._pending[channel].handle.cancel()
            self._fire(channel)
        await self.drain()

    async def drain(self) -> None:
        """Wait for in-flight writes; pending timers are left running."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


__all__ = ["AutoSaveScheduler", "DEFAULT_DELAY"]
