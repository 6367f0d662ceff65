"""
Pytest configuration and fixtures for Lightswitch tests.
"""

import logging
import threading
import time
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest

from lightswitch.core import ActionDispatcher, ProcessEvent, ProcessEventSource

RULES_TEXT = """{
  "/usr/bin/game": {
    "SwitchToProfile": {
      "profile_name": "gaming"
    }
  }
}
"""


class RecordingDispatcher(ActionDispatcher):
    """Dispatcher that records remote calls instead of making them."""

    def __init__(
        self,
        fail_with: Exception | None = None,
        on_call: Callable[[], None] | None = None
    ) -> None:
        super().__init__({})
        self.calls: list[tuple[str, Any]] = []
        self.fail_with = fail_with
        self.on_call = on_call

    def _record(self, method: str, argument: Any) -> None:
        self.calls.append((method, argument))
        if self.on_call:
            self.on_call()
        if self.fail_with:
            raise self.fail_with

    def switch_profile(self, profile_name: str) -> None:
        self._record("SwitchProfile", profile_name)

    def switch_slot(self, slot_index: int) -> None:
        self._record("SwitchSlot", slot_index)


class ScriptedSource(ProcessEventSource):
    """Process event source that replays a fixed list of events."""

    def __init__(
        self,
        events: list[ProcessEvent],
        when_exhausted: Callable[[], None] | None = None
    ) -> None:
        self.events = list(events)
        self.when_exhausted = when_exhausted
        self.waits = 0
        self.closed = False

    def wait_for_event(self) -> ProcessEvent | None:
        self.waits += 1
        if self.events:
            return self.events.pop(0)
        if self.when_exhausted:
            self.when_exhausted()
        time.sleep(0.01)
        return None

    def close(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def reset_lightswitch_logger() -> Iterator[None]:
    """Undo setup_logging() so caplog works in every test."""
    yield
    logger = logging.getLogger("lightswitch")
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


@pytest.fixture
def rules_file(tmp_path: Path) -> Path:
    """A rule file with a single profile rule for /usr/bin/game."""
    path = tmp_path / "process-monitor.rules"
    path.write_text(RULES_TEXT, encoding="utf-8")
    return path


@pytest.fixture
def config_file(tmp_path: Path, rules_file: Path) -> Path:
    """A configuration file pointing at rules_file."""
    path = tmp_path / "lightswitch.yaml"
    path.write_text(f"""
global:
  enable_experimental_features: false
rules_file: "{rules_file}"
dispatch:
  type: "log"
watch:
  debounce_seconds: 0.1
loop:
  poll_interval_seconds: 0.05
""", encoding="utf-8")
    return path


@pytest.fixture
def shutdown() -> Iterator[threading.Event]:
    """A shutdown flag that is always set when the test ends."""
    flag = threading.Event()
    yield flag
    flag.set()
