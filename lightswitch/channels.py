"""
Unbounded in-process channels with a select over several of them.

Producers on any thread send into a Channel; a single consumer waits on the
Selector until one of its channels has data. Items of one channel come out
in the order they were sent.
"""

import threading
from collections import deque
from typing import Any


class Channel:
    """An unbounded FIFO channel bound to a Selector."""

    def __init__(self, name: str, selector: "Selector") -> None:
        self.name = name
        self._selector = selector
        self._items: deque[Any] = deque()

    def send(self, item: Any) -> None:
        """Append an item and wake the consumer."""
        with self._selector.condition:
            self._items.append(item)
            self._selector.condition.notify_all()

    def __len__(self) -> int:
        with self._selector.condition:
            return len(self._items)

    def __repr__(self) -> str:
        return f"<Channel {self.name} pending={len(self._items)}>"


class Selector:
    """
    Waits on a set of channels.

    When more than one channel has data, channels are served round-robin so
    a busy channel cannot starve the others.
    """

    def __init__(self) -> None:
        self.condition = threading.Condition()
        self.channels: list[Channel] = []
        self._next = 0
        self._woken = False

    def channel(self, name: str) -> Channel:
        """Create a new channel served by this selector."""
        channel = Channel(name, self)
        with self.condition:
            self.channels.append(channel)
        return channel

    def wake(self) -> None:
        """Make a pending or the next select() return without an item."""
        with self.condition:
            self._woken = True
            self.condition.notify_all()

    def _pop_ready(self) -> tuple[Channel, Any] | None:
        count = len(self.channels)
        for offset in range(count):
            index = (self._next + offset) % count
            channel = self.channels[index]
            if channel._items:  # pylint: disable=protected-access
                self._next = (index + 1) % count
                return channel, channel._items.popleft()  # pylint: disable=protected-access
        return None

    def select(self, timeout: float | None = None) -> tuple[Channel, Any] | None:
        """
        Take one item from the first ready channel.

        Args:
            timeout: Maximum seconds to wait (None waits until data or wake())

        Returns:
            (channel, item), or None on timeout or wake()
        """
        with self.condition:
            ready = self._pop_ready()
            if ready is not None:
                return ready
            if self._woken:
                self._woken = False
                return None

            self.condition.wait_for(
                lambda: self._woken or any(c._items for c in self.channels),  # pylint: disable=protected-access
                timeout=timeout
            )

            ready = self._pop_ready()
            if ready is not None:
                return ready
            self._woken = False
            return None
