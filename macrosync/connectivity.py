"""Connectivity monitor: periodic reachability probes with transition callbacks."""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

logger = logging.getLogger(__name__)

Probe = Callable[[], Awaitable[bool]]
Callback = Callable[[], None]


class ConnectivityMonitor:
    """Polls a probe and notifies listeners when the link goes up or down.

    Callbacks fire on transitions between known states only; the first
    probe result just establishes the baseline.

    Args:
        probe: Coroutine function returning True when the remote is reachable.
        interval: Seconds between probes.
    """

    def __init__(self, probe: Probe, interval: float = 15.0):
        self._probe = probe
        self._interval = interval
        self._online: Optional[bool] = None
        self._on_online: List[Callback] = []
        self._on_offline: List[Callback] = []
        self._task: Optional[asyncio.Task] = None

    @property
    def online(self) -> bool:
        """Last known state; unknown counts as online."""
        return self._online is not False

    def add_listener(
        self, on_online: Optional[Callback] = None, on_offline: Optional[Callback] = None
    ) -> None:
        if on_online:
            self._on_online.append(on_online)
        if on_offline:
            self._on_offline.append(on_offline)

    async def check(self) -> bool:
        """Probe once and fire callbacks if the state changed."""
        try:
            online = bool(await self._probe())
        except Exception as e:
            logger.debug(f"Connectivity probe raised: {e}", exc_info=True)
            online = False

        previous = self._online
        self._online = online
        if previous is None or previous == online:
            return online

        logger.info("Connectivity changed: %s", "online" if online else "offline")
        for callback in self._on_online if online else self._on_offline:
            try:
                callback()
            except Exception as e:
                logger.error(f"Connectivity callback failed: {e}", exc_info=True)
        return online

    async def _run(self):
        while True:
            await self.check()
            await asyncio.sleep(self._interval)

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
