"""Tool registry for managing MCP tools."""

from __future__ import annotations

import importlib
import logging
from collections.abc import Iterator
from typing import Any, Callable

from mcp_bridge.mcp.errors import DuplicateTool, ToolNotFound
from mcp_bridge.mcp.models import Tool, ToolDescriptor, ToolParameter
from mcp_bridge.mcp.schema import input_schema

logger = logging.getLogger(__name__)


class RegistryFrozenError(RuntimeError):
    """Raised when a tool is registered after the registry was frozen."""


class ToolListing:
    """Lazy, restartable view over the registered descriptors.

    Each iteration starts from the first registered tool again.
    """

    def __init__(self, tools: dict[str, ToolDescriptor]):
        self._tools = tools

    def __iter__(self) -> Iterator[ToolDescriptor]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)


class ToolRegistry:
    """Registry for MCP tools with plugin-style provider loading.

    Tools are registered during startup, after which ``freeze()`` makes the
    registry read-only. Lookups never need locking once frozen.
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolDescriptor] = {}
        self._providers: set[str] = set()
        self._frozen = False

    def register(self, descriptor: ToolDescriptor) -> ToolDescriptor:
        """Register a tool descriptor.

        Raises:
            DuplicateTool: If a tool with the same name is already registered.
            RegistryFrozenError: If the registry no longer accepts tools.
        """
        if self._frozen:
            raise RegistryFrozenError(
                f"Cannot register '{descriptor.name}': registry is frozen"
            )
        if descriptor.name in self._tools:
            raise DuplicateTool(
                f"Tool '{descriptor.name}' is already registered",
                {"tool": descriptor.name},
            )
        self._tools[descriptor.name] = descriptor
        logger.info(f"Registered tool: {descriptor.name}")
        return descriptor

    def add(
        self,
        name: str,
        handler: Callable[..., Any],
        description: str = "",
        parameters: list[ToolParameter] | tuple[ToolParameter, ...] = (),
        returns: str = "any",
        allow_extra: bool = False,
        timeout: float | None = None,
    ) -> ToolDescriptor:
        """Build a descriptor from its parts and register it."""
        return self.register(
            ToolDescriptor(
                name=name,
                description=description,
                parameters=tuple(parameters),
                returns=returns,
                allow_extra=allow_extra,
                timeout=timeout,
                handler=handler,
            )
        )

    def get(self, name: str) -> ToolDescriptor | None:
        """Get a tool by name."""
        return self._tools.get(name)

    def lookup(self, name: str) -> ToolDescriptor:
        """Get a tool by name, raising ToolNotFound when it is not registered."""
        descriptor = self._tools.get(name)
        if descriptor is None:
            raise ToolNotFound(f"Tool not found: {name}", {"tool": name})
        return descriptor

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def list(self) -> ToolListing:
        """Descriptors in registration order."""
        return ToolListing(self._tools)

    def list_tools(self) -> list[Tool]:
        """List all registered tools as MCP Tool models."""
        return [
            Tool(
                name=descriptor.name,
                description=descriptor.description,
                inputSchema=input_schema(descriptor),
                returns=descriptor.returns,
            )
            for descriptor in self.list()
        ]

    def freeze(self) -> None:
        """Stop accepting registrations."""
        self._frozen = True
        logger.debug(f"Tool registry frozen with {self.tool_count} tools")

    @property
    def frozen(self) -> bool:
        return self._frozen

    def load_provider(self, provider_name: str, config: dict[str, Any] | None = None) -> bool:
        """
        Load a provider module and register its tools.

        Providers live in mcp_bridge/tools/<provider_name>/ and expose a
        register_tools(registry, config) function. Import failures are logged
        and reported as False; a DuplicateTool raised while registering
        propagates and aborts startup.
        """
        if provider_name in self._providers:
            logger.debug(f"Provider '{provider_name}' already loaded")
            return True

        module_path = f"mcp_bridge.tools.{provider_name}.tools"
        try:
            module = importlib.import_module(module_path)
        except ImportError as e:
            logger.warning(f"Could not import provider '{provider_name}': {e}")
            return False

        if not hasattr(module, "register_tools"):
            logger.warning(f"Provider '{provider_name}' has no register_tools function")
            return False

        module.register_tools(self, config or {})
        self._providers.add(provider_name)
        logger.info(f"Loaded provider: {provider_name}")
        return True

    def load_providers(
        self,
        provider_names: list[str],
        provider_configs: dict[str, dict[str, Any]] | None = None,
    ) -> dict[str, bool]:
        """Load multiple providers, returning success status for each."""
        provider_configs = provider_configs or {}
        results = {}
        for name in provider_names:
            results[name] = self.load_provider(name, provider_configs.get(name))
        return results

    @property
    def tool_count(self) -> int:
        """Return the number of registered tools."""
        return len(self._tools)

    @property
    def provider_count(self) -> int:
        """Return the number of loaded providers."""
        return len(self._providers)
