"""
Loop Control
============
Pause / resume / stop token shared between the Orchestrator and every
suspending wait inside an iteration.

    - wait_if_paused() is awaited only at the iteration boundary, so an
      in-flight iteration always runs to completion before a pause bites
    - sleep() returns early once stop() is called, so propagation delays and
      observation windows never hold a stopped loop open
"""
import asyncio

from debugloop.core.errors import LoopStopped


class LoopControl:
    def __init__(self) -> None:
        self._resumed = asyncio.Event()
        self._resumed.set()
        self._stopped = asyncio.Event()

    @property
    def paused(self) -> bool:
        return not self._resumed.is_set()

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    def pause(self) -> None:
        self._resumed.clear()

    def resume(self) -> None:
        self._resumed.set()

    def stop(self) -> None:
        self._stopped.set()
        # Release a paused loop so it can observe the stop
        self._resumed.set()

    async def wait_if_paused(self) -> None:
        """Block while paused; return immediately otherwise."""
        await self._resumed.wait()

    async def sleep(self, seconds: float) -> None:
        """Sleep for `seconds`, raising LoopStopped if stop() fires first."""
        self.raise_if_stopped()
        if seconds > 0:
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=seconds)
            except asyncio.TimeoutError:
                return
        self.raise_if_stopped()

    def raise_if_stopped(self) -> None:
        if self.stopped:
            raise LoopStopped("Stopped by operator")
