"""
Daemon lifecycle for Lightswitch.
"""

import signal
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from lightswitch import dispatchers  # noqa: F401  # pylint: disable=unused-import
from lightswitch.channels import Selector
from lightswitch.config import Config, load_config
from lightswitch.core import (
    ActionDispatcher,
    ProcessEventSource,
    ProcessMonitorError,
    describe_action,
)
from lightswitch.deadlock import DeadlockDetector
from lightswitch.fswatch import FilesystemWatcher
from lightswitch.logging_config import get_logger
from lightswitch.loop import LOOP_ERRORS, DispatchLoop, LoopState
from lightswitch.procmon import NetlinkProcessEventSource, ProcessMonitor
from lightswitch.registry import create_dispatcher
from lightswitch.rules import RuleStore

logger = get_logger(__name__)


@dataclass
class AppContext:
    """State shared by all components, created once per process."""
    config: Config
    config_path: Path
    rules: RuleStore
    dispatcher: ActionDispatcher
    shutdown: threading.Event = field(default_factory=threading.Event)
    experimental_features: bool = False


def create_context(config_path: str | Path, dispatcher: ActionDispatcher | None = None) -> AppContext:
    """
    Load the configuration and build the application context.

    Args:
        config_path: Path to configuration file
        dispatcher: Dispatcher to use instead of the configured one

    Returns:
        The new context (the rule table is not loaded yet)
    """
    config = load_config(config_path)

    if dispatcher is None:
        dispatcher_config: dict[str, Any] = {
            "timeout_seconds": config.dispatch.timeout_seconds,
            **config.dispatch.config,
        }
        dispatcher = create_dispatcher(config.dispatch.type, dispatcher_config)

    experimental = config.global_.enable_experimental_features
    if experimental:
        logger.warning("** EXPERIMENTAL FEATURES are ENABLED, this may expose serious bugs! **")

    return AppContext(
        config=config,
        config_path=Path(config_path),
        rules=RuleStore(config.rules_path),
        dispatcher=dispatcher,
        experimental_features=experimental,
    )


class LightswitchDaemon:
    """Runs the monitor, the watcher and the dispatch loop for one context."""

    def __init__(
        self,
        context: AppContext,
        source_factory: Callable[[], ProcessEventSource] = NetlinkProcessEventSource,
        detect_deadlocks: bool = False
    ) -> None:
        """
        Initialize the daemon.

        Args:
            context: Application context
            source_factory: Creates the process event source
            detect_deadlocks: Also run the lock watchdog thread
        """
        self.context = context
        self.source_factory = source_factory
        self.detect_deadlocks = detect_deadlocks or context.config.global_.detect_deadlocks

        self.selector = Selector()
        self.system_events = self.selector.channel("system-events")
        self.fs_events = self.selector.channel("fs-events")

        self.loop = DispatchLoop(
            rules=context.rules,
            dispatcher=context.dispatcher,
            selector=self.selector,
            system_events=self.system_events,
            fs_events=self.fs_events,
            shutdown=context.shutdown,
            fail_fast=context.config.dispatch.fail_fast,
            poll_interval=context.config.loop.poll_interval_seconds,
        )
        self.watcher: FilesystemWatcher | None = None
        self.monitor: ProcessMonitor | None = None
        self.detector: DeadlockDetector | None = None

    def request_shutdown(self) -> None:
        """Set the shutdown flag and wake the dispatch loop."""
        if not self.context.shutdown.is_set():
            self.context.shutdown.set()
        self.selector.wake()

    def install_signal_handlers(self) -> None:
        """Make SIGINT and SIGTERM request a shutdown."""
        def signal_handler(_sig: int, _frame: Any) -> None:
            logger.info("Shutdown signal received")
            self.request_shutdown()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    def start(self) -> None:
        """Load rules and start the background threads."""
        if self.detect_deadlocks:
            self.detector = DeadlockDetector()
            self.detector.start()

        logger.info("Loading rules...")
        self.context.rules.load()
        for exe_file, action in self.context.rules.items():
            logger.debug("%s => %s", exe_file, describe_action(action))

        self.watcher = FilesystemWatcher(
            config_file=self.context.config_path,
            rule_file=self.context.rules.path,
            channel=self.fs_events,
            debounce_seconds=self.context.config.watch.debounce_seconds,
        )
        self.watcher.start()

        try:
            source = self.source_factory()
        except ProcessMonitorError:
            self.watcher.stop()
            if self.detector:
                self.detector.stop()
            raise

        self.monitor = ProcessMonitor(
            source=source,
            channel=self.system_events,
            shutdown=self.context.shutdown,
        )
        self.monitor.start()

        logger.info("Startup completed")

    def stop(self) -> None:
        """Stop the background threads and persist the rule table."""
        if self.watcher:
            self.watcher.stop()
        if self.detector:
            self.detector.stop()

        # The monitor thread may be blocked in the kernel; it is a daemon thread.
        # After a loop failure the flag is not set and the thread is left running.
        if self.monitor and self.context.shutdown.is_set():
            self.monitor.join(timeout=2)

        logger.info("Saving rules...")
        self.context.rules.save()

    def run(self) -> int:
        """
        Run the daemon until shutdown.

        Returns:
            0 after a requested shutdown, 1 if the dispatch loop failed
        """
        exit_code = 0
        self.start()
        try:
            self.loop.run()
        except LOOP_ERRORS:
            logger.error("Dispatch loop terminated", exc_info=True)
            exit_code = 1
        finally:
            self.stop()

        logger.info("Exiting now (loop %s)", self.loop.state.value)
        return exit_code

    @property
    def stopped(self) -> bool:
        """Whether the dispatch loop has stopped."""
        return self.loop.state is LoopState.STOPPED
