"""
Process lifecycle monitoring via the Linux process events connector.

The kernel reports fork/exec/exit/... events over a netlink socket to
subscribed listeners (requires CAP_NET_ADMIN). ProcessMonitor reads those
events on a dedicated thread, resolves the executable of each process and
sends SystemEvents into a channel.

Message layout (native byte order):

    struct nlmsghdr   { u32 len; u16 type; u16 flags; u32 seq; u32 pid; }
    struct cn_msg     { u32 idx; u32 val; u32 seq; u32 ack; u16 len; u16 flags; }
    struct proc_event { u32 what; u32 cpu; u64 timestamp_ns; <event data> }

    exec data: i32 process_pid; i32 process_tgid
    exit data: i32 process_pid; i32 process_tgid; u32 exit_code; u32 exit_signal
"""

import os
import socket
import struct
import threading

import psutil

from lightswitch.channels import Channel
from lightswitch.core import (
    EventKind,
    ProcessEvent,
    ProcessEventSource,
    ProcessExec,
    ProcessExit,
    ProcessMonitorError,
    SystemEvent,
)
from lightswitch.logging_config import get_logger

logger = get_logger(__name__)

NETLINK_CONNECTOR = 11
CN_IDX_PROC = 1
CN_VAL_PROC = 1
NLMSG_DONE = 3

PROC_CN_MCAST_LISTEN = 1
PROC_CN_MCAST_IGNORE = 2

PROC_EVENT_EXEC = 0x00000002
PROC_EVENT_EXIT = 0x80000000

NLMSGHDR = struct.Struct("=IHHII")
CN_MSG = struct.Struct("=IIIIHH")
PROC_EVENT_HEADER = struct.Struct("=IIQ")
PID_TGID = struct.Struct("=ii")
MCAST_OP = struct.Struct("=I")

RECV_BUFFER_SIZE = 4096


def build_subscription(op: int, port_id: int) -> bytes:
    """Build the netlink message that (un)subscribes from process events."""
    payload = MCAST_OP.pack(op)
    cn_msg = CN_MSG.pack(CN_IDX_PROC, CN_VAL_PROC, 0, 0, len(payload), 0)
    length = NLMSGHDR.size + len(cn_msg) + len(payload)
    return NLMSGHDR.pack(length, NLMSG_DONE, 0, 0, port_id) + cn_msg + payload


def parse_messages(data: bytes) -> list[ProcessEvent]:
    """
    Parse a datagram received from the process events connector.

    Only exec events and exits of thread group leaders are returned;
    everything else is skipped.
    """
    events = []
    offset = 0

    while offset + NLMSGHDR.size <= len(data):
        msg_len, _msg_type, _flags, _seq, _port = NLMSGHDR.unpack_from(data, offset)
        if msg_len < NLMSGHDR.size or offset + msg_len > len(data):
            logger.debug("Truncated netlink message at offset %s", offset)
            break

        body = offset + NLMSGHDR.size
        event_offset = body + CN_MSG.size
        if event_offset + PROC_EVENT_HEADER.size + PID_TGID.size <= offset + msg_len:
            idx, val = CN_MSG.unpack_from(data, body)[:2]
            if idx == CN_IDX_PROC and val == CN_VAL_PROC:
                event = _parse_proc_event(data, event_offset)
                if event is not None:
                    events.append(event)

        # Messages are 4-byte aligned
        offset += (msg_len + 3) & ~3

    return events


def _parse_proc_event(data: bytes, offset: int) -> ProcessEvent | None:
    what = PROC_EVENT_HEADER.unpack_from(data, offset)[0]
    pid, tgid = PID_TGID.unpack_from(data, offset + PROC_EVENT_HEADER.size)

    if what == PROC_EVENT_EXEC:
        return ProcessEvent(pid=pid, kind=EventKind.EXEC)
    if what == PROC_EVENT_EXIT and pid == tgid:
        return ProcessEvent(pid=pid, kind=EventKind.EXIT)
    return None


class NetlinkProcessEventSource(ProcessEventSource):
    """
    Process events read from the kernel's netlink process connector.

    Args:
        recv_timeout: Seconds a single wait may block before returning None
    """

    def __init__(self, recv_timeout: float | None = 1.0) -> None:
        self._pending: list[ProcessEvent] = []
        try:
            self.sock = socket.socket(socket.AF_NETLINK, socket.SOCK_DGRAM, NETLINK_CONNECTOR)
        except (AttributeError, OSError) as e:
            raise ProcessMonitorError(f"Could not open the process events connector: {e}") from e

        try:
            self.sock.bind((os.getpid(), CN_IDX_PROC))
            self.sock.send(build_subscription(PROC_CN_MCAST_LISTEN, os.getpid()))
        except OSError as e:
            self.sock.close()
            raise ProcessMonitorError(
                f"Could not register Linux process monitoring (root privileges required?): {e}"
            ) from e

        self.sock.settimeout(recv_timeout)

    def wait_for_event(self) -> ProcessEvent | None:
        """Return the next exec/exit event, or None after a timeout."""
        if self._pending:
            return self._pending.pop(0)

        try:
            data = self.sock.recv(RECV_BUFFER_SIZE)
        except TimeoutError:
            return None
        except OSError as e:
            raise ProcessMonitorError(f"Could not read process events: {e}") from e

        self._pending.extend(parse_messages(data))
        if self._pending:
            return self._pending.pop(0)
        return None

    def close(self) -> None:
        """Unsubscribe and close the socket."""
        try:
            self.sock.send(build_subscription(PROC_CN_MCAST_IGNORE, os.getpid()))
        except OSError:
            logger.debug("Could not unsubscribe from process events", exc_info=True)
        self.sock.close()


def get_process_file_name(pid: int) -> str | None:
    """
    Resolve the executable path of a process.

    Returns None if the process is already gone, access is denied, or the
    kernel reports no executable (e.g. kernel threads).
    """
    try:
        exe = psutil.Process(pid).exe()
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return None
    return exe or None


def to_system_event(event: ProcessEvent, file_name: str | None) -> SystemEvent:
    """Wrap a raw process event together with its resolved file name."""
    if event.kind is EventKind.EXEC:
        return ProcessExec(event=event, file_name=file_name)
    return ProcessExit(event=event, file_name=file_name)


class ProcessMonitor:
    """
    Reads a ProcessEventSource on a dedicated thread.

    The shutdown flag is checked between events only; a source that blocks
    indefinitely delays shutdown until its next event.
    """

    def __init__(
        self,
        source: ProcessEventSource,
        channel: Channel,
        shutdown: threading.Event
    ) -> None:
        """
        Initialize the monitor.

        Args:
            source: Where process events come from
            channel: Receives one SystemEvent per forwarded process event
            shutdown: Process-wide shutdown flag
        """
        self.source = source
        self.channel = channel
        self.shutdown = shutdown
        self.thread: threading.Thread | None = None

    def poll_once(self) -> SystemEvent | None:
        """Wait for one process event and forward it to the channel."""
        event = self.source.wait_for_event()
        if event is None:
            return None

        system_event = to_system_event(event, get_process_file_name(event.pid))
        self.channel.send(system_event)
        return system_event

    def run(self) -> None:
        """Forward events until the shutdown flag is set."""
        logger.debug("Process monitor thread started")
        try:
            while not self.shutdown.is_set():
                self.poll_once()
        except ProcessMonitorError:
            logger.error("Process monitor failed", exc_info=True)
        finally:
            self.source.close()
            logger.debug("Process monitor thread stopped")

    def start(self) -> Channel:
        """Start the monitor thread and return the channel it feeds."""
        self.thread = threading.Thread(target=self.run, name="monitor", daemon=True)
        self.thread.start()
        return self.channel

    def join(self, timeout: float | None = None) -> None:
        """Wait for the monitor thread to finish."""
        if self.thread:
            self.thread.join(timeout=timeout)
