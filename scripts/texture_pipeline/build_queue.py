"""
Debounced, single-flight build scheduling.

Each profile moves through IDLE -> PENDING -> RUNNING -> IDLE. Requests while
PENDING push the deadline out; requests while RUNNING queue exactly one follow-up
run. A single driver task sleeps until the earliest deadline and starts due runs.
Everything here runs on the event loop thread, so no locking is needed.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

BuildRunner = Callable[[str], Awaitable[Any]]


class BuildState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    RUNNING = "running"


@dataclass
class ProfileBuildState:
    """Scheduling state for one profile."""
    profile_id: str
    state: BuildState = BuildState.IDLE
    deadline: Optional[float] = None
    rerun_requested: bool = False
    run_count: int = 0
    last_error: Optional[BaseException] = None
    last_result: Any = None


class BuildQueue:
    """Coalesces bursts of build requests into non-overlapping runs per profile."""

    def __init__(self, runner: BuildRunner, debounce_seconds: float = 0.5,
                 clock: Callable[[], float] = time.monotonic):
        """
        Args:
            runner: Coroutine function executing one build for a profile
            debounce_seconds: Quiet period after the last request before a build starts
            clock: Monotonic time source
        """
        self.runner = runner
        self.debounce_seconds = debounce_seconds
        self.clock = clock
        self._states: Dict[str, ProfileBuildState] = {}
        self._running: Dict[str, asyncio.Task] = {}
        self._driver: Optional[asyncio.Task] = None
        self._wakeup = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self._closed = False

    def schedule_build(self, profile_id: str) -> None:
        """Request a build; must be called from the event loop thread."""
        if self._closed:
            logger.debug(f"Build queue closed, ignoring request for {profile_id}")
            return

        state = self._states.setdefault(profile_id, ProfileBuildState(profile_id))
        if state.state == BuildState.RUNNING:
            if not state.rerun_requested:
                logger.info(f"Build in progress for {profile_id}, queuing another run")
            state.rerun_requested = True
        else:
            state.state = BuildState.PENDING
            state.deadline = self.clock() + self.debounce_seconds
            logger.debug(f"Build for {profile_id} scheduled in {self.debounce_seconds:.3f}s")

        self._refresh_idle()
        self._ensure_driver()
        self._wakeup.set()

    def cancel_pending(self, profile_id: str) -> bool:
        """
        Drop a not-yet-started build for a profile, including a queued rerun.
        An in-flight build keeps running.

        Returns:
            True if anything was cancelled
        """
        state = self._states.get(profile_id)
        if state is None:
            return False

        cancelled = False
        if state.state == BuildState.PENDING:
            state.state = BuildState.IDLE
            state.deadline = None
            cancelled = True
        if state.rerun_requested:
            state.rerun_requested = False
            cancelled = True

        self._refresh_idle()
        self._wakeup.set()
        return cancelled

    def cancel_all_pending(self) -> int:
        return sum(1 for profile_id in list(self._states) if self.cancel_pending(profile_id))

    def is_building(self, profile_id: str) -> bool:
        return self.state_of(profile_id).state == BuildState.RUNNING

    def building_profiles(self) -> List[str]:
        return sorted(p for p, s in self._states.items() if s.state == BuildState.RUNNING)

    def pending_profiles(self) -> List[str]:
        return sorted(p for p, s in self._states.items() if s.state == BuildState.PENDING)

    def state_of(self, profile_id: str) -> ProfileBuildState:
        return self._states.get(profile_id) or ProfileBuildState(profile_id)

    async def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until no profile is pending or running.

        Returns:
            False if the timeout expired first
        """
        try:
            await asyncio.wait_for(self._idle.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def close(self, timeout: float = 5.0) -> bool:
        """
        Cancel pending builds, stop the driver and give in-flight builds up to
        timeout seconds to finish.

        Returns:
            False if some build was still running when the timeout expired
        """
        self._closed = True
        self.cancel_all_pending()
        self._wakeup.set()

        if self._driver is not None:
            _, driver_pending = await asyncio.wait([self._driver], timeout=timeout)
            if driver_pending:
                logger.warning(f"Build scheduler did not stop within {timeout}s, cancelling it")
                self._driver.cancel()
            self._driver = None

        running = list(self._running.values())
        if not running:
            return True

        logger.info(f"Waiting for {len(running)} running build(s) to finish")
        _, still_running = await asyncio.wait(running, timeout=timeout)
        if still_running:
            logger.warning(f"{len(still_running)} build(s) still running after {timeout}s")
            return False
        return True

    def _ensure_driver(self) -> None:
        if self._driver is None or self._driver.done():
            self._driver = asyncio.get_running_loop().create_task(self._drive())

    def _refresh_idle(self) -> None:
        busy = any(s.state != BuildState.IDLE for s in self._states.values())
        if busy:
            self._idle.clear()
        else:
            self._idle.set()

    async def _drive(self) -> None:
        while not self._closed:
            now = self.clock()
            for state in list(self._states.values()):
                if state.state == BuildState.PENDING and state.deadline is not None and state.deadline <= now:
                    self._start(state)

            deadlines = [s.deadline for s in self._states.values()
                         if s.state == BuildState.PENDING and s.deadline is not None]
            self._wakeup.clear()
            timeout = max(0.0, min(deadlines) - self.clock()) if deadlines else None
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout)
            except asyncio.TimeoutError:
                pass

    def _start(self, state: ProfileBuildState) -> None:
        state.state = BuildState.RUNNING
        state.deadline = None
        logger.info(f"Starting build for {state.profile_id}")
        task = asyncio.get_running_loop().create_task(self._run(state))
        self._running[state.profile_id] = task

    async def _run(self, state: ProfileBuildState) -> None:
        try:
            state.last_result = await self.runner(state.profile_id)
            state.last_error = None
        except Exception as e:
            logger.error(f"Build for {state.profile_id} failed: {e}")
            state.last_error = e
        finally:
            state.run_count += 1
            self._running.pop(state.profile_id, None)
            if state.rerun_requested and not self._closed:
                state.rerun_requested = False
                state.state = BuildState.PENDING
                state.deadline = self.clock()
                logger.info(f"Changes arrived during build of {state.profile_id}, rebuilding")
            else:
                state.rerun_requested = False
                state.state = BuildState.IDLE
            self._refresh_idle()
            self._wakeup.set()
