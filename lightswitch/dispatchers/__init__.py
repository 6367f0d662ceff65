"""
Built-in action dispatchers for Lightswitch.

Every module in this package is imported on first use, which registers its
dispatchers. The classes a module lists in __all__ are re-exported here.
"""

import importlib
import inspect
import pkgutil
from types import ModuleType

from lightswitch.core import ActionDispatcher
from lightswitch.logging_config import get_logger

logger = get_logger(__name__)


def collect_dispatchers(module: ModuleType, seen: set[str]) -> list[tuple[str, type[ActionDispatcher]]]:
    """
    Pick the dispatcher classes a module exports.

    Exports that are already in seen, are not classes, or are not
    ActionDispatcher subclasses are skipped with a warning. Accepted names
    are added to seen.

    Args:
        module: An imported dispatcher module
        seen: Names already exported by earlier modules

    Returns:
        (name, class) pairs in __all__ order
    """
    short_name = module.__name__.rpartition(".")[2]
    found = []

    for name in getattr(module, "__all__", ()):
        if name in seen:
            logger.warning("Duplicate dispatcher name '%s' in module '%s' - skipping", name, short_name)
            continue

        cls = getattr(module, name)
        if not inspect.isclass(cls):
            logger.warning("Export '%s' in module '%s' is not a class - skipping", name, short_name)
            continue
        if not issubclass(cls, ActionDispatcher):
            logger.warning(
                "Export '%s' in module '%s' is not an ActionDispatcher subclass - skipping",
                name,
                short_name
            )
            continue

        seen.add(name)
        found.append((name, cls))

    return found


__all__ = []
_seen_names: set[str] = set()

for module_info in pkgutil.iter_modules(__path__):
    module = importlib.import_module(f"{__name__}.{module_info.name}")
    for name, cls in collect_dispatchers(module, _seen_names):
        globals()[name] = cls
        __all__.append(name)
