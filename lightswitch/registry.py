"""
Dispatcher registry and factory for Lightswitch.

Dispatcher implementations register themselves under a type name, and the
daemon instantiates the one selected in the configuration.
"""

from collections.abc import Callable
from typing import Any

from lightswitch.core import ActionDispatcher


class DispatcherRegistry:
    """Maps dispatcher type names to implementation classes."""

    def __init__(self) -> None:
        self._dispatchers: dict[str, type[ActionDispatcher]] = {}

    def register_dispatcher(self, type_name: str, cls: type[ActionDispatcher]) -> None:
        """Register a dispatcher implementation."""
        self._dispatchers[type_name] = cls

    def get_dispatcher(self, type_name: str) -> type[ActionDispatcher]:
        """Get a dispatcher class by type name."""
        if type_name not in self._dispatchers:
            raise ValueError(f"Unknown dispatcher type: {type_name}")
        return self._dispatchers[type_name]

    def list_dispatchers(self) -> list[str]:
        """List all registered dispatcher type names."""
        return list(self._dispatchers.keys())


# Global registry instance
_registry = DispatcherRegistry()


def create_dispatcher(type_name: str, config: dict[str, Any]) -> ActionDispatcher:
    """Create a dispatcher instance from configuration."""
    cls = _registry.get_dispatcher(type_name)
    return cls(config)


def register_dispatcher(
    type_name: str
) -> Callable[[type[ActionDispatcher]], type[ActionDispatcher]]:
    """Decorator to register a dispatcher class."""
    def decorator(cls: type[ActionDispatcher]) -> type[ActionDispatcher]:
        _registry.register_dispatcher(type_name, cls)
        return cls
    return decorator


def get_registry() -> DispatcherRegistry:
    """Get the global dispatcher registry."""
    return _registry
