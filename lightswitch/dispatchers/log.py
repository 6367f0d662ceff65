"""
Dry-run dispatcher for Lightswitch.
"""

from lightswitch.core import ActionDispatcher
from lightswitch.logging_config import get_logger
from lightswitch.registry import register_dispatcher

logger = get_logger(__name__)


@register_dispatcher("log")
class LogDispatcher(ActionDispatcher):
    """
    Only logs the calls that would be made.

    Useful for testing rules without a running lighting daemon.

    Config:
        (none required)
    """

    def switch_profile(self, profile_name: str) -> None:
        logger.info("[dry run] SwitchProfile(%r)", profile_name)

    def switch_slot(self, slot_index: int) -> None:
        logger.info("[dry run] SwitchSlot(%s)", slot_index)


# Export for dynamic importing
__all__ = ["LogDispatcher"]
