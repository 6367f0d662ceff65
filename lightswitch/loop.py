"""
The dispatch loop: merges process and filesystem events and runs actions.
"""

import threading
from enum import Enum

from lightswitch.channels import Channel, Selector
from lightswitch.core import (
    ActionDispatcher,
    DispatchError,
    FileSystemEvent,
    ProcessExec,
    ProcessExit,
    RuleParseError,
    SystemEvent,
    describe_action,
)
from lightswitch.logging_config import get_logger
from lightswitch.rules import RuleStore

logger = get_logger(__name__)

# Errors that end the loop in fail-fast mode, or are logged and skipped otherwise
LOOP_ERRORS = (DispatchError, RuleParseError, OSError)


class LoopState(Enum):
    """Lifecycle of the dispatch loop."""
    RUNNING = "running"
    STOPPED = "stopped"


class DispatchLoop:
    """
    Consumes system and filesystem events on the calling thread.

    Exactly one event is handled per wakeup. With fail_fast set, the first
    failed dispatch or rule reload stops the loop for good and the error is
    raised from run(); events still queued are never handled.
    """

    def __init__(  # pylint: disable=too-many-arguments,too-many-positional-arguments
        self,
        rules: RuleStore,
        dispatcher: ActionDispatcher,
        selector: Selector,
        system_events: Channel,
        fs_events: Channel,
        shutdown: threading.Event,
        fail_fast: bool = True,
        poll_interval: float | None = 1.0
    ) -> None:
        """
        Initialize the loop.

        Args:
            rules: Rule store consulted for every exec event
            dispatcher: Performs the remote calls
            selector: Selector serving both channels
            system_events: Channel fed by the process monitor
            fs_events: Channel fed by the filesystem watcher
            shutdown: Process-wide shutdown flag
            fail_fast: Stop on the first failed dispatch or reload
            poll_interval: Seconds between shutdown checks while idle
                (None waits until an event arrives or the selector is woken)
        """
        self.rules = rules
        self.dispatcher = dispatcher
        self.selector = selector
        self.system_events = system_events
        self.fs_events = fs_events
        self.shutdown = shutdown
        self.fail_fast = fail_fast
        self.poll_interval = poll_interval
        self.state = LoopState.RUNNING
        self.events_processed = 0

    def run(self) -> None:
        """
        Run until the shutdown flag is set.

        Raises:
            DispatchError, RuleParseError, OSError: In fail-fast mode, when
                handling an event failed
        """
        logger.debug("Entering main loop")
        self.state = LoopState.RUNNING
        try:
            while not self.shutdown.is_set():
                ready = self.selector.select(timeout=self.poll_interval)
                if ready is None:
                    continue

                channel, event = ready
                self.handle(channel, event)
        finally:
            self.state = LoopState.STOPPED
            logger.debug("Left the main loop")

    def handle(self, channel: Channel, event: object) -> None:
        """Handle a single event taken from one of the channels."""
        try:
            if channel is self.system_events:
                self.process_system_event(event)  # type: ignore[arg-type]
            elif channel is self.fs_events:
                self.process_fs_event(event)  # type: ignore[arg-type]
            else:
                logger.warning("Event from unknown channel %s dropped", channel.name)
        except LOOP_ERRORS:
            if self.fail_fast:
                raise
            logger.error("Could not handle %r, continuing", event, exc_info=True)
        finally:
            self.events_processed += 1

    def process_system_event(self, event: SystemEvent) -> None:
        """Dispatch the action matching an exec event, if any."""
        if isinstance(event, ProcessExec):
            if event.file_name is None:
                logger.warning("Could not get executable file name of pid %s", event.event.pid)
                return

            action = self.rules.get(event.file_name)
            if action is None:
                return

            self.dispatcher.dispatch(action)

        elif isinstance(event, ProcessExit):
            logger.debug("Process %s exited (%s)", event.event.pid, event.file_name)

    def process_fs_event(self, event: FileSystemEvent) -> None:
        """Reload the rule table after the rule file changed."""
        if event is FileSystemEvent.RULES_CHANGED:
            logger.warning("Rules changed, reloading...")
            table = self.rules.load()
            for exe_file, action in sorted(table.items()):
                logger.debug("%s => %s", exe_file, describe_action(action))
