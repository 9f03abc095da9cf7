"""
Watch-driven rebuilds.

Watchdog callbacks run on observer threads, so raw events are handed to the event
loop with loop.call_soon_threadsafe() and pushed onto a bounded queue. One
coordinator task drains the queue, resolves each change to the profiles it
affects and schedules them on the BuildQueue.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterable, List, Optional, Sequence, Union

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .build_queue import BuildQueue, BuildRunner
from .config import PipelineConfig
from .errors import ConfigurationError
from .utils.deploy import Deployer, load_deploy_config

logger = logging.getLogger(__name__)

WATCHED_EVENT_TYPES = {"created", "modified", "deleted", "moved"}


@dataclass(frozen=True)
class ChangeEvent:
    """A filesystem change relevant to the pack sources."""
    event_type: str
    path: Path


class ScopeKind(str, Enum):
    SHARED = "shared"
    PROFILE = "profile"
    IGNORED = "ignored"


@dataclass(frozen=True)
class ChangeScope:
    kind: ScopeKind
    profile_id: Optional[str] = None


class ChangeScopeResolver:
    """Maps changed paths to the profiles that need rebuilding."""

    def __init__(self, versions_dir: Union[str, Path], profiles: Iterable[str], shared_name: str = "shared"):
        """
        Args:
            versions_dir: Directory holding the shared tree and one directory per profile
            profiles: Profiles a shared change fans out to
            shared_name: Name of the shared source directory
        """
        self.versions_dir = Path(os.path.abspath(versions_dir))
        self.profiles = list(profiles)
        self.shared_name = shared_name

    def resolve(self, path: Union[str, Path]) -> ChangeScope:
        try:
            relative = Path(os.path.abspath(path)).relative_to(self.versions_dir)
        except ValueError:
            return ChangeScope(ScopeKind.IGNORED)

        parts = relative.parts
        if not parts:
            return ChangeScope(ScopeKind.IGNORED)
        if parts[0] == self.shared_name:
            return ChangeScope(ScopeKind.SHARED)
        if parts[0] in self.profiles and len(parts) > 1:
            return ChangeScope(ScopeKind.PROFILE, parts[0])
        return ChangeScope(ScopeKind.IGNORED)

    def profiles_for(self, event: ChangeEvent) -> List[str]:
        scope = self.resolve(event.path)
        if scope.kind == ScopeKind.SHARED:
            return list(self.profiles)
        if scope.kind == ScopeKind.PROFILE:
            return [scope.profile_id]
        return []


class TextureEventHandler(FileSystemEventHandler):
    """Filters watchdog events down to pack source files and forwards them."""

    IGNORED_NAMES = {".DS_Store", "Thumbs.db", "desktop.ini"}

    def __init__(self, callback: Callable[[ChangeEvent], None]):
        super().__init__()
        self.callback = callback

    def on_any_event(self, event: FileSystemEvent) -> None:
        """Filter and forward relevant events."""
        if event.is_directory or event.event_type not in WATCHED_EVENT_TYPES:
            return

        raw_path = getattr(event, 'dest_path', '') if event.event_type == "moved" else ''
        path = Path(os.fsdecode(raw_path or event.src_path))

        if self._is_ignored_file(path):
            logger.debug(f"Ignoring temp/hidden file: {path}")
            return

        logger.debug(f"File event: {event.event_type} - {path}")
        self.callback(ChangeEvent(event.event_type, path))

    def _is_ignored_file(self, path: Path) -> bool:
        name = path.name
        if name.startswith(".") or name in self.IGNORED_NAMES:
            return True
        if name.endswith(".tmp") or name.endswith("~"):
            return True
        return any(part in (".git", "node_modules") for part in path.parts)


class WatchSession:
    """
    Owns the observers, the event channel and the build queue for one watch run.

    Thread safety:
    - Observer callbacks only call loop.call_soon_threadsafe()
    - The queue, resolver and BuildQueue are touched from the loop thread only
    """

    def __init__(self, config: PipelineConfig, resolver: ChangeScopeResolver, runner: BuildRunner,
                 observer_factory: Callable[[], Any] = Observer, max_pending_events: int = 1024):
        self.config = config
        self.resolver = resolver
        self.build_queue = BuildQueue(runner, debounce_seconds=config.debounce_seconds)
        self.observer_factory = observer_factory
        self.max_pending_events = max_pending_events
        self.handler = TextureEventHandler(self._on_file_change)
        self.observers: List[Any] = []
        self.dropped_events = 0
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._events: Optional[asyncio.Queue] = None
        self._coordinator: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._coordinator is not None and not self._coordinator.done()

    async def start(self, watch_paths: Sequence[Union[str, Path]] = ()) -> None:
        """Start the coordinator and one recursive observer per watch path."""
        if self.is_running:
            logger.warning("Watcher is already running")
            return

        self._loop = asyncio.get_running_loop()
        self._events = asyncio.Queue(maxsize=self.max_pending_events)
        self._coordinator = self._loop.create_task(self._coordinate())

        for path in watch_paths:
            observer = self.observer_factory()
            observer.schedule(self.handler, str(path), recursive=True)
            observer.start()
            self.observers.append(observer)
            logger.info(f"Watching {path}")

    def submit(self, event: ChangeEvent) -> None:
        """Enqueue a change event; call from the loop thread."""
        if self._events is None:
            raise RuntimeError("Watch session has not been started")
        try:
            self._events.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped_events += 1
            logger.warning(f"Event queue full, dropping change to {event.path}")

    async def drain(self) -> None:
        """Wait until every submitted event has been handled."""
        if self._events is not None:
            await self._events.join()

    def handle_event(self, event: ChangeEvent) -> List[str]:
        """Resolve an event's scope and schedule the affected profiles."""
        profiles = self.resolver.profiles_for(event)
        if not profiles:
            return []

        if self.config.notifications:
            label = f"{len(profiles)} profiles" if len(profiles) > 1 else profiles[0]
            logger.info(f"Changed: {event.path} ({label}), debouncing build")

        for profile_id in profiles:
            self.build_queue.schedule_build(profile_id)
        return profiles

    async def stop(self) -> None:
        """Cancel pending builds, stop the coordinator and close observers within the timeout."""
        timeout = self.config.close_timeout
        self.build_queue.cancel_all_pending()

        if self._coordinator is not None:
            self._coordinator.cancel()
            try:
                await self._coordinator
            except asyncio.CancelledError:
                pass
            self._coordinator = None

        for observer in self.observers:
            observer.stop()
        if self.observers:
            joins = [asyncio.to_thread(observer.join, timeout) for observer in self.observers]
            try:
                await asyncio.wait_for(asyncio.gather(*joins), timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Watcher close timeout after {timeout}s")
        self.observers = []

        await self.build_queue.close(timeout)
        logger.info("Hot reload stopped")

    def _on_file_change(self, event: ChangeEvent) -> None:
        # Called on observer threads
        if self._loop is None or self._loop.is_closed():
            return
        try:
            self._loop.call_soon_threadsafe(self.submit, event)
        except RuntimeError:
            logger.debug("Event loop closed, dropping file event")

    async def _coordinate(self) -> None:
        while True:
            event = await self._events.get()
            try:
                self.handle_event(event)
            except Exception as e:
                logger.error(f"Hot reload error for {event.path}: {e}", exc_info=True)
            finally:
                self._events.task_done()


def resolve_profiles_to_watch(target: Optional[str], available: Sequence[str], watch_all: bool) -> List[str]:
    """
    Pick the profiles a watch session covers.

    'all' selects every profile, a known profile name selects itself, otherwise
    watch_all decides between every profile and the first one.

    Raises:
        ConfigurationError: If there are no profiles at all
    """
    if not available:
        raise ConfigurationError("No profiles found in versions directory")
    if target == "all":
        return list(available)
    if target and target in available:
        return [target]
    if target:
        logger.warning(f"Unknown profile '{target}', falling back to configuration")
    if watch_all:
        return list(available)
    return [available[0]]


def watch_paths_for(config: PipelineConfig, profiles: Iterable[str]) -> List[Path]:
    """Shared directory plus each watched profile directory, dropping ones that don't exist."""
    candidates = [config.shared_dir] + [config.profile_dir(p) for p in profiles]
    paths = []
    for path in candidates:
        if path.exists():
            paths.append(path)
        else:
            logger.warning(f"Watch path does not exist: {path}")
    return paths


def create_build_runner(config: PipelineConfig, builder, deployer: Optional[Deployer] = None) -> BuildRunner:
    """
    Coroutine building one profile and, in deploy-on-change mode, deploying it.

    Deploy targets are re-read for every run so .deployrc edits apply without a restart.
    """
    deployer = deployer or Deployer(config.backups_dir, config.pack_name)

    async def run(profile_id: str):
        report = await builder.build(profile_id)
        if config.notifications:
            logger.info(f"Built: {profile_id} ({report.size_kb:.2f} KB)")

        if not config.deploy_on_change:
            return report

        try:
            targets = load_deploy_config(config.deploy_config)
        except ConfigurationError as e:
            logger.warning(f"Skipping deploy of {profile_id}: {e}")
            return report

        target = targets.get(profile_id)
        if target is None:
            logger.warning(f"No deployment configuration for profile: {profile_id}")
            return report

        await asyncio.to_thread(deployer.deploy, profile_id, report.artifact, target)
        if config.notifications:
            logger.info("Ready for texture reload (Press F3+T in Minecraft)")
        return report

    return run
