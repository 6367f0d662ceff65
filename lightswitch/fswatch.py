"""
Watches the configuration and rule files using watchdog.

Changes are debounced per file: a burst of writes produces a single
notification once the file has been quiet for the debounce interval.
"""

import threading
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer as WatchdogObserver

from lightswitch.channels import Channel
from lightswitch.core import RulesChanged
from lightswitch.logging_config import get_logger

if TYPE_CHECKING:
    from watchdog.observers.api import BaseObserver

logger = get_logger(__name__)


def _decode_path(path: str | bytes) -> str:
    if isinstance(path, bytes):
        return path.decode()
    return path


class Debouncer:
    """Calls callback once, interval seconds after the last call to trigger()."""

    def __init__(self, interval: float, callback: Callable[[], None]) -> None:
        self.interval = interval
        self.callback = callback
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._generation = 0

    def trigger(self) -> None:
        """Start or restart the quiet period."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._generation += 1
            self._timer = threading.Timer(self.interval, self._fire, args=(self._generation,))
            self._timer.daemon = True
            self._timer.start()

    def _fire(self, generation: int) -> None:
        with self._lock:
            # A trigger() or cancel() since this timer was armed supersedes it
            if generation != self._generation:
                return
            self._timer = None
        try:
            self.callback()
        except Exception:
            logger.error("Error in debounced callback", exc_info=True)

    def cancel(self) -> None:
        """Drop a pending notification."""
        with self._lock:
            self._generation += 1
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None


class FilesystemWatcher:
    """
    Observes the configuration file and the rule file.

    A rule file change sends RulesChanged into the channel. A configuration
    file change is only reported in the log, since the configuration is
    read once at startup.
    """

    def __init__(
        self,
        config_file: str | Path,
        rule_file: str | Path,
        channel: Channel,
        debounce_seconds: float = 1.0
    ) -> None:
        """
        Initialize the watcher.

        Args:
            config_file: Path of the configuration file
            rule_file: Path of the rule file
            channel: Receives RulesChanged events
            debounce_seconds: Quiet period that ends a burst of changes
        """
        self.config_file = Path(config_file).absolute()
        self.rule_file = Path(rule_file).absolute()
        self.channel = channel
        self.observer: BaseObserver | None = None
        self._debouncers = {
            self.config_file: Debouncer(debounce_seconds, self._on_config_changed),
            self.rule_file: Debouncer(debounce_seconds, self._on_rules_changed),
        }

    def _on_config_changed(self) -> None:
        logger.warning(
            "Configuration file changed on disk, please restart lightswitch "
            "for the changes to take effect!"
        )

    def _on_rules_changed(self) -> None:
        logger.debug("Rule file changed: %s", self.rule_file)
        self.channel.send(RulesChanged)

    def path_changed(self, path: str | Path) -> None:
        """Feed a change of path into the matching debouncer, if any."""
        debouncer = self._debouncers.get(Path(path).absolute())
        if debouncer is not None:
            debouncer.trigger()

    def start(self) -> None:
        """Start watching both files."""
        self.observer = WatchdogObserver()
        handler = self._create_event_handler()

        # Watch the parent directories, editors often replace files by renaming
        for directory in {self.config_file.parent, self.rule_file.parent}:
            if directory.is_dir():
                self.observer.schedule(handler, str(directory), recursive=False)
            else:
                logger.error("Could not register file watch: %s does not exist", directory)

        self.observer.name = "hotwatch"
        self.observer.start()
        logger.debug("Filesystem watcher started")

    def stop(self) -> None:
        """Stop watching and drop pending notifications."""
        for debouncer in self._debouncers.values():
            debouncer.cancel()
        if self.observer:
            self.observer.stop()
            self.observer.join()

    def _create_event_handler(self) -> FileSystemEventHandler:
        """Create a watchdog event handler that feeds path_changed."""
        watcher = self

        class Handler(FileSystemEventHandler):
            """Forwards changes of the watched files."""

            def on_modified(self, event: FileSystemEvent) -> None:
                if not event.is_directory:
                    watcher.path_changed(_decode_path(event.src_path))

            def on_created(self, event: FileSystemEvent) -> None:
                if not event.is_directory:
                    watcher.path_changed(_decode_path(event.src_path))

            def on_moved(self, event: FileSystemEvent) -> None:
                if not event.is_directory:
                    watcher.path_changed(_decode_path(event.dest_path))

        return Handler()
