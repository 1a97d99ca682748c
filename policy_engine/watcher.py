"""
Directory Watcher - Triggers reloads when the plugin directory changes.

A watchdog observer delivers filesystem events for the plugin directory
and its subdirectories. Bursts of events (unpacking a module archive,
an editor's save dance) are coalesced: the first event of a burst opens a
fixed debounce window, later events join it, and when the window closes a
single reload request is issued. Events after that open the next window.
The callback runs on the timer thread, never on the event delivery
thread, and is expected to only enqueue the reload.

If the directory is missing or disappears, the watcher detaches and keeps
polling for it; hot reload is lost until it comes back, the service is
not affected.
"""

import os
import threading
from pathlib import Path
from typing import Any, Callable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from common.logging import get_logger
from policy_engine.exceptions import WatcherUnavailableError

logger = get_logger(__name__)

# Read-only access, e.g. the loader importing a module, is not a change.
IGNORED_EVENT_TYPES = frozenset({"opened", "closed_no_write"})
IGNORED_SUFFIXES = (".pyc", ".pyo", ".swp", "~")


class _PluginDirectoryHandler(FileSystemEventHandler):
    def __init__(self, watcher: "DirectoryWatcher"):
        super().__init__()
        self._watcher = watcher

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type in IGNORED_EVENT_TYPES:
            return
        path = os.fsdecode(event.src_path)
        if "__pycache__" in Path(path).parts or path.endswith(IGNORED_SUFFIXES):
            return
        self._watcher.notify(path)


class DirectoryWatcher:
    """
    Watches a plugin directory and calls on_change after quiet periods.

    Usage:
        watcher = DirectoryWatcher("/var/plugins", framework.request_reload)
        watcher.start()
        ...
        watcher.stop()
    """

    def __init__(
        self,
        directory: str,
        on_change: Callable[[], Any],
        debounce_seconds: float = 2.0,
        retry_interval_seconds: float = 5.0,
    ):
        """
        Initialize the watcher.

        Args:
            directory: Directory to watch (recursively)
            on_change: Non-blocking callback, invoked once per burst of changes
            debounce_seconds: Quiet period required before on_change is called
            retry_interval_seconds: How often to check the directory while detached
        """
        self._directory = Path(directory)
        self._on_change = on_change
        self._debounce = debounce_seconds
        self._retry_interval = retry_interval_seconds

        self._handler = _PluginDirectoryHandler(self)
        self._lock = threading.Lock()
        self._observer: Optional[Observer] = None
        self._timer: Optional[threading.Timer] = None
        self._pending_events = 0
        self._stop_event = threading.Event()
        self._supervisor: Optional[threading.Thread] = None

    @property
    def directory(self) -> Path:
        return self._directory

    @property
    def is_watching(self) -> bool:
        observer = self._observer
        return observer is not None and observer.is_alive()

    def start(self) -> bool:
        """
        Start watching.

        Never raises when the directory cannot be watched; the watcher then
        keeps retrying in the background.

        Returns:
            True if filesystem notifications are active right away
        """
        if self._supervisor is not None:
            return self.is_watching

        self._stop_event.clear()
        attached = self._attach()
        self._supervisor = threading.Thread(
            target=self._supervise, name="authz-watcher-supervisor", daemon=True
        )
        self._supervisor.start()
        return attached

    def stop(self) -> None:
        """Stop watching and drop any pending (debounced) reload."""
        self._stop_event.set()
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._pending_events = 0

        supervisor = self._supervisor
        self._supervisor = None
        if supervisor is not None and supervisor is not threading.current_thread():
            supervisor.join(timeout=self._retry_interval + 1.0)

        self._detach()
        logger.info("plugin_directory_watch_stopped", directory=str(self._directory))

    def notify(self, path: Optional[str] = None) -> None:
        """Record a change, opening a debounce window unless one is already open."""
        with self._lock:
            if self._stop_event.is_set():
                return
            self._pending_events += 1
            if self._timer is None:
                self._timer = threading.Timer(self._debounce, self._fire)
                self._timer.daemon = True
                self._timer.start()

        logger.debug("plugin_directory_event", directory=str(self._directory), path=path)

    def _fire(self) -> None:
        with self._lock:
            if self._stop_event.is_set():
                return
            self._timer = None
            events = self._pending_events
            self._pending_events = 0

        logger.info(
            "plugin_directory_changed",
            directory=str(self._directory),
            coalesced_events=events,
        )
        try:
            self._on_change()
        except Exception as e:
            logger.error(
                "plugin_reload_request_failed",
                directory=str(self._directory),
                error=str(e),
                error_type=type(e).__name__,
            )

    def _attach(self) -> bool:
        try:
            if not self._directory.is_dir():
                raise WatcherUnavailableError(
                    f"Plugin directory {self._directory} does not exist or is not a directory"
                )
            observer = Observer()
            observer.schedule(self._handler, str(self._directory), recursive=True)
            observer.start()
        except (OSError, WatcherUnavailableError) as e:
            error = e if isinstance(e, WatcherUnavailableError) else WatcherUnavailableError(
                f"Cannot watch {self._directory}: {e}"
            )
            logger.warning(
                "plugin_directory_watch_unavailable",
                directory=str(self._directory),
                retry_interval_seconds=self._retry_interval,
                error=str(error),
                error_type=type(error).__name__,
            )
            return False

        self._observer = observer
        logger.info("plugin_directory_watch_started", directory=str(self._directory))
        return True

    def _detach(self) -> None:
        observer = self._observer
        self._observer = None
        if observer is None:
            return
        try:
            observer.stop()
            if observer is not threading.current_thread():
                observer.join(timeout=5.0)
        except Exception as e:
            logger.warning(
                "plugin_directory_watch_stop_failed",
                directory=str(self._directory),
                error=str(e),
                error_type=type(e).__name__,
            )

    def _supervise(self) -> None:
        while not self._stop_event.wait(self._retry_interval):
            if self._observer is None:
                if self._attach():
                    # the directory may have changed while it was not watched
                    self.notify(str(self._directory))
                continue

            if not self._directory.is_dir() or not self._observer.is_alive():
                logger.warning(
                    "plugin_directory_lost",
                    directory=str(self._directory),
                    error_type=WatcherUnavailableError.__name__,
                )
                self._detach()
