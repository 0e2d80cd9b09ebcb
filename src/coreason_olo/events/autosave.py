# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_maco

import asyncio
from typing import Awaitable, Callable, Dict, Generic, Optional, Set, TypeVar

from coreason_olo.utils.logger import logger

P = TypeVar("P")

DRAFT_SAVE_DELAY_SECONDS = 1.2


class DraftAutosaver(Generic[P]):
    """
    Debounced draft saving.

    Each schedule() restarts the delay; only the last payload of a burst is
    saved. Saves run one at a time, and a save already running is never
    cancelled. Failures are logged, not raised.
    """

    def __init__(self, save: Callable[[P], Awaitable[None]], delay: float = DRAFT_SAVE_DELAY_SECONDS) -> None:
        self.save = save
        self.delay = delay
        self._pending: Optional[P] = None
        self._timer: Optional["asyncio.Task[None]"] = None
        self._running: Set["asyncio.Task[None]"] = set()
        self._lock = asyncio.Lock()

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    def schedule(self, payload: P) -> None:
        """Replaces the pending payload and restarts the delay.

        Outside a running event loop the payload stays pending until the next
        schedule() inside a loop or flush().
        """
        self._pending = payload
        self._cancel_timer()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, draft kept pending")
            return
        task = loop.create_task(self._wait_then_save())
        self._timer = task
        self._running.add(task)
        task.add_done_callback(self._running.discard)

    async def flush(self) -> None:
        """Saves the pending payload now."""
        self._cancel_timer()
        await self._save_latest()

    async def aclose(self) -> None:
        """Drops the pending payload and waits for a save already in progress."""
        self._cancel_timer()
        self._pending = None
        if self._running:
            await asyncio.gather(*self._running, return_exceptions=True)

    def _cancel_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    async def _wait_then_save(self) -> None:
        await asyncio.sleep(self.delay)
        # Past the delay this task is a save in flight and must not be cancelled.
        if self._timer is asyncio.current_task():
            self._timer = None
        await self._save_latest()

    async def _save_latest(self) -> None:
        async with self._lock:
            payload, self._pending = self._pending, None
            if payload is None:
                return
            try:
                await self.save(payload)
            except Exception as e:
                logger.error(f"Draft save failed: {e}")


class SaveCoordinator:
    """
    Serialises explicit saves per configuration name.

    A request overtaken by a newer request for the same name while waiting for
    the lock is skipped.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._latest: Dict[str, int] = {}

    async def save(self, name: str, writer: Callable[[], Awaitable[object]]) -> bool:
        """Runs writer under the name's lock.

        Returns:
            bool: False if a newer save for the same name superseded this one.
        """
        ticket = self._latest.get(name, 0) + 1
        self._latest[name] = ticket
        lock = self._locks.setdefault(name, asyncio.Lock())
        try:
            async with lock:
                if self._latest.get(name) != ticket:
                    logger.debug(f"Save of {name} superseded by a newer request")
                    return False
                await writer()
                return True
        finally:
            # The newest ticket is the last holder; nothing waits on the lock after it.
            if self._latest.get(name) == ticket and not lock.locked():
                del self._latest[name]
                self._locks.pop(name, None)

    @property
    def active_names(self) -> Set[str]:
        """Names with a save running or queued."""
        return set(self._latest)
