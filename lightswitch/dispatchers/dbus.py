"""
D-Bus dispatcher talking to the Eruption lighting daemon.
"""

import struct

from jeepney import DBusAddress, new_method_call
from jeepney.auth import AuthenticationError
from jeepney.io.blocking import open_dbus_connection
from jeepney.low_level import Message
from jeepney.wrappers import DBusErrorResponse, unwrap_msg

from lightswitch.core import ActionDispatcher, DispatchError
from lightswitch.logging_config import get_logger
from lightswitch.registry import register_dispatcher

logger = get_logger(__name__)

BUS_NAME = "org.eruption"
PROFILE_PATH = "/org/eruption/profile"
PROFILE_INTERFACE = "org.eruption.Profile"
SLOT_PATH = "/org/eruption/slot"
SLOT_INTERFACE = "org.eruption.Slot"

DEFAULT_TIMEOUT = 4.0


@register_dispatcher("dbus")
class DBusDispatcher(ActionDispatcher):
    """
    Switches profiles and slots through the lighting daemon's D-Bus API.

    Every call opens its own bus connection and closes it afterwards, so a
    restarted lighting daemon is picked up without reconnect logic.

    Config:
        bus: "SYSTEM" or "SESSION" (default: SYSTEM)
        bus_name: Well-known name of the lighting daemon (default: org.eruption)
        timeout_seconds: Per-call timeout (default: 4)
    """

    def switch_profile(self, profile_name: str) -> None:
        """Call org.eruption.Profile.SwitchProfile."""
        self._call(PROFILE_PATH, PROFILE_INTERFACE, "SwitchProfile", "s", (profile_name,))

    def switch_slot(self, slot_index: int) -> None:
        """Call org.eruption.Slot.SwitchSlot."""
        self._call(SLOT_PATH, SLOT_INTERFACE, "SwitchSlot", "t", (slot_index,))

    def _call(
        self,
        object_path: str,
        interface: str,
        method: str,
        signature: str,
        body: tuple
    ) -> None:
        bus = self.config.get("bus", "SYSTEM")
        timeout = float(self.config.get("timeout_seconds", DEFAULT_TIMEOUT))
        address = DBusAddress(
            object_path,
            bus_name=self.config.get("bus_name", BUS_NAME),
            interface=interface
        )
        message = new_method_call(address, method, signature, body)

        try:
            with open_dbus_connection(bus=bus) as connection:
                reply: Message = connection.send_and_get_reply(message, timeout=timeout)
            result = unwrap_msg(reply)
        except TimeoutError as e:
            raise DispatchError(f"{interface}.{method} timed out after {timeout}s") from e
        except DBusErrorResponse as e:
            raise DispatchError(f"{interface}.{method} failed: {e.name}: {e.data}") from e
        except (OSError, AuthenticationError) as e:
            raise DispatchError(f"Could not reach the lighting daemon on the {bus.lower()} bus: {e}") from e
        except (struct.error, ValueError) as e:
            raise DispatchError(f"{interface}.{method}{body!r} could not be encoded: {e}") from e

        if not result or not result[0]:
            raise DispatchError(f"{interface}.{method}{body!r} was rejected by the lighting daemon")

        logger.debug("%s.%s%r succeeded", interface, method, body)


# Export for dynamic importing
__all__ = ["DBusDispatcher"]
