"""
Tests for the dispatch loop.
"""

import threading
from pathlib import Path
from typing import Any

import pytest

from conftest import RecordingDispatcher
from lightswitch.channels import Selector
from lightswitch.core import (
    DispatchError,
    EventKind,
    ProcessEvent,
    ProcessExec,
    ProcessExit,
    RuleParseError,
    RulesChanged,
    SwitchToProfile,
    SwitchToSlot,
)
from lightswitch.loop import DispatchLoop, LoopState
from lightswitch.rules import RuleStore, save_rules


def exec_event(file_name: str | None, pid: int = 100) -> ProcessExec:
    return ProcessExec(event=ProcessEvent(pid=pid, kind=EventKind.EXEC), file_name=file_name)


def build_loop(
    rules: RuleStore,
    dispatcher: RecordingDispatcher,
    shutdown: threading.Event,
    **kwargs: Any
) -> DispatchLoop:
    selector = Selector()
    return DispatchLoop(
        rules=rules,
        dispatcher=dispatcher,
        selector=selector,
        system_events=selector.channel("system-events"),
        fs_events=selector.channel("fs-events"),
        shutdown=shutdown,
        poll_interval=None,
        **kwargs
    )


def stop_after(loop: DispatchLoop, count: int) -> None:
    """Queue a marker that sets the shutdown flag once count events were handled."""
    original = loop.handle

    def handle(channel: Any, event: Any) -> None:
        try:
            original(channel, event)
        finally:
            if loop.events_processed >= count:
                loop.shutdown.set()

    loop.handle = handle  # type: ignore[method-assign]


@pytest.fixture
def store(rules_file: Path) -> RuleStore:
    rules = RuleStore(rules_file)
    rules.load()
    return rules


class TestProcessEvents:
    """Tests for handling process events."""

    def test_matching_exec_dispatches_once(self, store: RuleStore, shutdown: threading.Event) -> None:
        """A known executable causes exactly one SwitchProfile call."""
        dispatcher = RecordingDispatcher()
        loop = build_loop(store, dispatcher, shutdown)
        loop.system_events.send(exec_event("/usr/bin/game"))
        stop_after(loop, 1)

        loop.run()

        assert dispatcher.calls == [("SwitchProfile", "gaming")]
        assert loop.state is LoopState.STOPPED

    def test_unknown_exec_dispatches_nothing(self, store: RuleStore, shutdown: threading.Event) -> None:
        """An executable without a rule causes no remote call."""
        dispatcher = RecordingDispatcher()
        loop = build_loop(store, dispatcher, shutdown)
        loop.system_events.send(exec_event("/usr/bin/unknown"))
        stop_after(loop, 1)

        loop.run()

        assert not dispatcher.calls

    def test_every_rule_dispatches_its_action(self, tmp_path: Path, shutdown: threading.Event) -> None:
        """Each rule's executable triggers its own action and no other."""
        table = {
            "/usr/bin/game": SwitchToProfile(profile_name="gaming"),
            "/usr/bin/editor": SwitchToProfile(profile_name="work"),
            "/bin/foo": SwitchToSlot(slot_index=2),
        }
        rules = RuleStore(tmp_path / "rules", table)

        for exe_file, action in table.items():
            dispatcher = RecordingDispatcher()
            flag = threading.Event()
            loop = build_loop(rules, dispatcher, flag)
            loop.system_events.send(exec_event(exe_file))
            stop_after(loop, 1)

            loop.run()

            expected = (
                ("SwitchProfile", action.profile_name)
                if isinstance(action, SwitchToProfile)
                else ("SwitchSlot", action.slot_index)
            )
            assert dispatcher.calls == [expected]

    def test_unresolved_file_name_is_dropped(
        self,
        store: RuleStore,
        shutdown: threading.Event,
        caplog: pytest.LogCaptureFixture
    ) -> None:
        """An exec event without file name is logged and skipped."""
        dispatcher = RecordingDispatcher()
        loop = build_loop(store, dispatcher, shutdown)
        loop.system_events.send(exec_event(None, pid=4242))
        stop_after(loop, 1)

        loop.run()

        assert not dispatcher.calls
        assert "Could not get executable file name of pid 4242" in caplog.text

    def test_exit_events_trigger_nothing(self, store: RuleStore, shutdown: threading.Event) -> None:
        """Exit events are observed but never dispatch."""
        dispatcher = RecordingDispatcher()
        loop = build_loop(store, dispatcher, shutdown)
        loop.system_events.send(
            ProcessExit(event=ProcessEvent(pid=1, kind=EventKind.EXIT), file_name="/usr/bin/game")
        )
        stop_after(loop, 1)

        loop.run()

        assert not dispatcher.calls
        assert loop.events_processed == 1


class TestFailurePolicy:
    """Tests for fail-fast and log-and-continue handling of errors."""

    def test_dispatch_failure_stops_loop(self, store: RuleStore, shutdown: threading.Event) -> None:
        """A failed call stops the loop and leaves queued events unprocessed."""
        dispatcher = RecordingDispatcher(fail_with=DispatchError("timed out"))
        loop = build_loop(store, dispatcher, shutdown)
        loop.system_events.send(exec_event("/usr/bin/game", pid=1))
        loop.system_events.send(exec_event("/usr/bin/game", pid=2))

        with pytest.raises(DispatchError, match="timed out"):
            loop.run()

        assert loop.state is LoopState.STOPPED
        assert len(dispatcher.calls) == 1
        assert len(loop.system_events) == 1
        assert not shutdown.is_set()

    def test_reload_failure_stops_loop(self, store: RuleStore, shutdown: threading.Event) -> None:
        """A rule file that cannot be parsed stops the loop like a failed call."""
        store.path.write_text("garbage", encoding="utf-8")
        loop = build_loop(store, RecordingDispatcher(), shutdown)
        loop.fs_events.send(RulesChanged)

        with pytest.raises(RuleParseError):
            loop.run()

        assert loop.state is LoopState.STOPPED

    def test_reload_of_missing_file_stops_loop(self, store: RuleStore, shutdown: threading.Event) -> None:
        """A vanished rule file stops the loop with an OSError."""
        store.path.unlink()
        loop = build_loop(store, RecordingDispatcher(), shutdown)
        loop.fs_events.send(RulesChanged)

        with pytest.raises(OSError):
            loop.run()

    def test_isolated_failures_continue(
        self,
        store: RuleStore,
        shutdown: threading.Event,
        caplog: pytest.LogCaptureFixture
    ) -> None:
        """Without fail_fast, a failed call is logged and later events still run."""
        dispatcher = RecordingDispatcher(fail_with=DispatchError("remote said no"))
        loop = build_loop(store, dispatcher, shutdown, fail_fast=False)
        loop.system_events.send(exec_event("/usr/bin/game", pid=1))
        loop.system_events.send(exec_event("/usr/bin/game", pid=2))
        stop_after(loop, 2)

        loop.run()

        assert len(dispatcher.calls) == 2
        assert "continuing" in caplog.text


class TestShutdown:
    """Tests for stopping the loop."""

    def test_new_loop_is_running(self, store: RuleStore, shutdown: threading.Event) -> None:
        """A freshly built loop is running until it stops."""
        loop = build_loop(store, RecordingDispatcher(), shutdown)

        assert loop.state is LoopState.RUNNING

    def test_flag_set_before_run(self, store: RuleStore, shutdown: threading.Event) -> None:
        """A set flag stops the loop before any event is taken."""
        dispatcher = RecordingDispatcher()
        loop = build_loop(store, dispatcher, shutdown)
        loop.system_events.send(exec_event("/usr/bin/game"))
        shutdown.set()

        loop.run()

        assert not dispatcher.calls
        assert len(loop.system_events) == 1
        assert loop.state is LoopState.STOPPED

    def test_flag_set_during_event(self, store: RuleStore, shutdown: threading.Event) -> None:
        """The loop stops within one wait cycle after the flag is set."""
        dispatcher = RecordingDispatcher(on_call=shutdown.set)
        loop = build_loop(store, dispatcher, shutdown)
        loop.system_events.send(exec_event("/usr/bin/game", pid=1))
        loop.system_events.send(exec_event("/usr/bin/game", pid=2))

        loop.run()

        assert len(dispatcher.calls) == 1
        assert len(loop.system_events) == 1


class TestReload:
    """Tests for hot reloading the rule table."""

    def test_rules_changed_reloads_table(self, store: RuleStore, shutdown: threading.Event) -> None:
        """After RulesChanged, lookups use the new file content."""
        save_rules(store.path, {"/bin/foo": SwitchToSlot(slot_index=2)})
        dispatcher = RecordingDispatcher()
        loop = build_loop(store, dispatcher, shutdown)
        loop.fs_events.send(RulesChanged)
        stop_after(loop, 1)

        loop.run()

        assert store.get("/bin/foo") == SwitchToSlot(slot_index=2)
        assert store.get("/usr/bin/game") is None

    def test_reload_applies_to_later_events(self, store: RuleStore, shutdown: threading.Event) -> None:
        """Events handled after a reload are matched against the new table."""
        save_rules(store.path, {"/usr/bin/game": SwitchToSlot(slot_index=7)})
        dispatcher = RecordingDispatcher()
        loop = build_loop(store, dispatcher, shutdown)
        loop.process_fs_event(RulesChanged)
        loop.process_system_event(exec_event("/usr/bin/game"))

        assert dispatcher.calls == [("SwitchSlot", 7)]
