"""
Core data structures and interfaces for Lightswitch.

This module defines the values that flow through the daemon:
- Actions: What to ask the lighting daemon to do
- Process events: What the kernel reported
- System/filesystem events: What the dispatch loop consumes
- Dispatchers: How an action reaches the lighting daemon
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any

from lightswitch.logging_config import get_logger

logger = get_logger(__name__)


class DispatchError(Exception):
    """A remote call could not be completed."""


class RuleParseError(ValueError):
    """The rule file does not contain a valid rule table."""


class ProcessMonitorError(Exception):
    """The process event source could not be opened or read."""


@dataclass(frozen=True)
class SwitchToProfile:
    """Switch the lighting daemon to the named profile."""
    profile_name: str


# SwitchSlot takes a D-Bus uint64
MAX_SLOT_INDEX = 2**64 - 1


@dataclass(frozen=True)
class SwitchToSlot:
    """Switch the lighting daemon to the slot at the given index."""
    slot_index: int

    def __post_init__(self) -> None:
        if isinstance(self.slot_index, bool) or not isinstance(self.slot_index, int):
            raise TypeError(f"slot_index must be an integer, got {self.slot_index!r}")
        if self.slot_index < 0:
            raise ValueError(f"slot_index must not be negative, got {self.slot_index}")
        if self.slot_index > MAX_SLOT_INDEX:
            raise ValueError(f"slot_index must fit in an unsigned 64-bit integer, got {self.slot_index}")


Action = SwitchToProfile | SwitchToSlot


class EventKind(Enum):
    """Kind of a process lifecycle event."""
    EXEC = "exec"
    EXIT = "exit"


@dataclass(frozen=True)
class ProcessEvent:
    """A raw process lifecycle event as reported by the event source."""
    pid: int
    kind: EventKind


@dataclass(frozen=True)
class ProcessExec:
    """A process replaced its image; file_name is None if it could not be resolved."""
    event: ProcessEvent
    file_name: str | None


@dataclass(frozen=True)
class ProcessExit:
    """A process terminated."""
    event: ProcessEvent
    file_name: str | None


SystemEvent = ProcessExec | ProcessExit


class FileSystemEvent(Enum):
    """Events produced by the filesystem watcher."""
    RULES_CHANGED = "rules_changed"


RulesChanged = FileSystemEvent.RULES_CHANGED


class ProcessEventSource(ABC):
    """
    Base class for blocking sources of process lifecycle events.

    Sources are read from a single dedicated thread.
    """

    @abstractmethod
    def wait_for_event(self) -> ProcessEvent | None:
        """
        Block until the next relevant process event arrives.

        Returns:
            The next event, or None if the wait ended without one
            (timeout or an event kind that is not forwarded)
        """
        raise NotImplementedError

    def close(self) -> None:
        """Release the underlying OS resources."""


class ActionDispatcher(ABC):
    """
    Base class for all action dispatchers.

    Dispatchers perform the remote call that corresponds to an Action.
    """

    def __init__(self, config: dict[str, Any]):
        """
        Initialize the dispatcher with configuration.

        Args:
            config: Type-specific configuration dictionary
        """
        self.config = config

    def dispatch(self, action: Action) -> None:
        """
        Perform the remote call for an action.

        Args:
            action: The action to perform

        Raises:
            DispatchError: If the remote call failed
        """
        if isinstance(action, SwitchToProfile):
            logger.info("Switching to profile: %s", action.profile_name)
            self.switch_profile(action.profile_name)
        elif isinstance(action, SwitchToSlot):
            logger.info("Switching to slot: %s", action.slot_index)
            self.switch_slot(action.slot_index)
        else:
            raise TypeError(f"Unsupported action: {action!r}")

    @abstractmethod
    def switch_profile(self, profile_name: str) -> None:
        """Make the named profile the active one."""
        raise NotImplementedError

    @abstractmethod
    def switch_slot(self, slot_index: int) -> None:
        """Make the slot at slot_index the active one."""
        raise NotImplementedError


def describe_action(action: Action) -> str:
    """Render an action the way list output and debug logs show it."""
    if isinstance(action, SwitchToProfile):
        return f"SwitchToProfile {{ profile_name: {action.profile_name!r} }}"
    return f"SwitchToSlot {{ slot_index: {action.slot_index} }}"
