"""
Capability Registry

Named tool, resource and prompt definitions with their handlers and metadata.
This is the only runtime-keyed lookup surface of the gateway.
"""

from __future__ import annotations

import inspect
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog

from mcp_gateway.protocol.errors import InvalidParamsError

logger = structlog.get_logger()

# handler(arguments, context) -> value | awaitable | async iterator of chunks
CapabilityHandler = Callable[..., Any]


class CapabilityKind(str, Enum):
    """Kinds of capability held by the registry."""

    TOOL = "tool"
    RESOURCE = "resource"
    PROMPT = "prompt"


class RateLimitTier(str, Enum):
    """Quota tier a tool draws from in addition to the tenant counter."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class CapabilityNotFoundError(LookupError):
    """No definition registered under the requested name."""

    def __init__(self, kind: CapabilityKind, name: str) -> None:
        self.kind = kind
        self.name = name
        super().__init__(f"Unknown {kind.value}: {name}")


@dataclass
class ToolAnnotations:
    """
    Side-effect hints for a tool.

    Used for documentation and rate-tier selection only.
    """

    read_only: bool = False
    destructive: bool = False
    idempotent: bool = False
    rate_limit_tier: RateLimitTier = RateLimitTier.LOW
    cost: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "readOnlyHint": self.read_only,
            "destructiveHint": self.destructive,
            "idempotentHint": self.idempotent,
            "rateLimitTier": self.rate_limit_tier.value,
        }


@dataclass
class CapabilityArgument:
    """Declared argument of a resource or prompt."""

    name: str
    description: str = ""
    required: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "description": self.description, "required": self.required}


@dataclass
class ToolDefinition:
    """A callable tool."""

    name: str
    description: str
    handler: CapabilityHandler
    input_schema: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )
    streaming: bool | None = None
    required_scopes: frozenset[str] = field(default_factory=frozenset)
    annotations: ToolAnnotations = field(default_factory=ToolAnnotations)
    category: str = "general"

    def __post_init__(self) -> None:
        if self.streaming is None:
            self.streaming = inspect.isasyncgenfunction(self.handler)
        self.required_scopes = frozenset(self.required_scopes)

    @property
    def key(self) -> str:
        return self.name

    def required_arguments(self) -> list[str]:
        return list(self.input_schema.get("required", []))

    def to_listing(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
            "annotations": self.annotations.to_dict(),
        }


@dataclass
class ResourceDefinition:
    """A readable resource, keyed by URI."""

    uri: str
    name: str
    description: str
    handler: CapabilityHandler
    mime_type: str = "application/json"
    arguments: list[CapabilityArgument] = field(default_factory=list)
    required_scopes: frozenset[str] = field(default_factory=frozenset)
    streaming: bool = False

    def __post_init__(self) -> None:
        self.required_scopes = frozenset(self.required_scopes)

    @property
    def key(self) -> str:
        return self.uri

    def required_arguments(self) -> list[str]:
        return [arg.name for arg in self.arguments if arg.required]

    def to_listing(self) -> dict[str, Any]:
        return {
            "uri": self.uri,
            "name": self.name,
            "description": self.description,
            "mimeType": self.mime_type,
        }


@dataclass
class PromptDefinition:
    """A parameterized prompt template."""

    name: str
    description: str
    handler: CapabilityHandler
    arguments: list[CapabilityArgument] = field(default_factory=list)
    required_scopes: frozenset[str] = field(default_factory=frozenset)
    streaming: bool = False

    def __post_init__(self) -> None:
        self.required_scopes = frozenset(self.required_scopes)

    @property
    def key(self) -> str:
        return self.name

    def required_arguments(self) -> list[str]:
        return [arg.name for arg in self.arguments if arg.required]

    def to_listing(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "arguments": [arg.to_dict() for arg in self.arguments],
        }


CapabilityDefinition = ToolDefinition | ResourceDefinition | PromptDefinition

_DEFINITION_TYPES: dict[CapabilityKind, type] = {
    CapabilityKind.TOOL: ToolDefinition,
    CapabilityKind.RESOURCE: ResourceDefinition,
    CapabilityKind.PROMPT: PromptDefinition,
}


def _describe(func: Callable[..., Any]) -> str:
    doc = inspect.getdoc(func) or ""
    return doc.splitlines()[0] if doc else ""


def validate_arguments(definition: CapabilityDefinition, arguments: dict[str, Any]) -> None:
    """
    Check that every required argument is present and not None.

    Raises:
        InvalidParamsError: If any required argument is missing
    """
    missing = [
        name for name in definition.required_arguments() if arguments.get(name) is None
    ]
    if missing:
        raise InvalidParamsError(
            f"Missing required argument: {', '.join(missing)}",
            data={"missing": missing},
        )


class CapabilityRegistry:
    """
    Registry of tools, resources and prompts.

    Registration happens at startup. Reads are plain dict lookups and need no
    locking. Registering a name twice replaces the earlier definition.
    """

    def __init__(self) -> None:
        self._definitions: dict[CapabilityKind, dict[str, CapabilityDefinition]] = {
            kind: {} for kind in CapabilityKind
        }

    def register(
        self,
        kind: CapabilityKind,
        definitions: Iterable[CapabilityDefinition] | CapabilityDefinition,
    ) -> None:
        """
        Register one or more definitions of the given kind.

        Args:
            kind: Capability kind
            definitions: Definition or iterable of definitions

        Raises:
            TypeError: If a definition does not match ``kind``
        """
        if isinstance(definitions, tuple(_DEFINITION_TYPES.values())):
            definitions = [definitions]

        expected = _DEFINITION_TYPES[kind]
        table = self._definitions[kind]

        for definition in definitions:
            if not isinstance(definition, expected):
                raise TypeError(
                    f"Cannot register {type(definition).__name__} as {kind.value}"
                )
            if definition.key in table:
                logger.warning(
                    "Overriding existing capability",
                    kind=kind.value,
                    name=definition.key,
                )
            table[definition.key] = definition
            logger.debug("Registered capability", kind=kind.value, name=definition.key)

    def unregister(self, kind: CapabilityKind, name: str) -> None:
        if self._definitions[kind].pop(name, None) is not None:
            logger.debug("Unregistered capability", kind=kind.value, name=name)

    def resolve(self, kind: CapabilityKind, name: str) -> CapabilityDefinition:
        """
        Look up a definition by name (URI for resources).

        Raises:
            CapabilityNotFoundError: If nothing is registered under ``name``
        """
        try:
            return self._definitions[kind][name]
        except KeyError:
            raise CapabilityNotFoundError(kind, name) from None

    def get(self, kind: CapabilityKind, name: str) -> CapabilityDefinition | None:
        return self._definitions[kind].get(name)

    def list(self, kind: CapabilityKind) -> list[CapabilityDefinition]:
        """Snapshot of all definitions of ``kind`` sorted by name."""
        table = self._definitions[kind]
        return [table[key] for key in sorted(table)]

    def count(self, kind: CapabilityKind) -> int:
        return len(self._definitions[kind])

    def tool_tier(self, name: str) -> RateLimitTier | None:
        tool = self.get(CapabilityKind.TOOL, name)
        return tool.annotations.rate_limit_tier if tool else None

    def tool_cost(self, name: str) -> int:
        tool = self.get(CapabilityKind.TOOL, name)
        return tool.annotations.cost if tool else 1

    # Decorator helpers

    def tool(
        self,
        name: str | None = None,
        description: str | None = None,
        input_schema: dict[str, Any] | None = None,
        streaming: bool | None = None,
        required_scopes: Iterable[str] = (),
        annotations: ToolAnnotations | None = None,
        category: str = "general",
    ) -> Callable[[CapabilityHandler], CapabilityHandler]:
        """
        Decorator to register a function as a tool.

        Example:
            @registry.tool(input_schema={"type": "object", "required": ["id"]})
            async def get_order(arguments, context):
                ...
        """

        def decorator(func: CapabilityHandler) -> CapabilityHandler:
            definition = ToolDefinition(
                name=name or func.__name__,
                description=description if description is not None else _describe(func),
                handler=func,
                streaming=streaming,
                required_scopes=frozenset(required_scopes),
                annotations=annotations or ToolAnnotations(),
                category=category,
            )
            if input_schema is not None:
                definition.input_schema = input_schema
            self.register(CapabilityKind.TOOL, definition)
            return func

        return decorator

    def resource(
        self,
        uri: str,
        name: str | None = None,
        description: str | None = None,
        mime_type: str = "application/json",
        arguments: Iterable[CapabilityArgument] = (),
        required_scopes: Iterable[str] = (),
    ) -> Callable[[CapabilityHandler], CapabilityHandler]:
        """Decorator to register a function as a resource reader."""

        def decorator(func: CapabilityHandler) -> CapabilityHandler:
            self.register(
                CapabilityKind.RESOURCE,
                ResourceDefinition(
                    uri=uri,
                    name=name or func.__name__,
                    description=description if description is not None else _describe(func),
                    handler=func,
                    mime_type=mime_type,
                    arguments=list(arguments),
                    required_scopes=frozenset(required_scopes),
                ),
            )
            return func

        return decorator

    def prompt(
        self,
        name: str | None = None,
        description: str | None = None,
        arguments: Iterable[CapabilityArgument] = (),
        required_scopes: Iterable[str] = (),
    ) -> Callable[[CapabilityHandler], CapabilityHandler]:
        """Decorator to register a function as a prompt renderer."""

        def decorator(func: CapabilityHandler) -> CapabilityHandler:
            self.register(
                CapabilityKind.PROMPT,
                PromptDefinition(
                    name=name or func.__name__,
                    description=description if description is not None else _describe(func),
                    handler=func,
                    arguments=list(arguments),
                    required_scopes=frozenset(required_scopes),
                ),
            )
            return func

        return decorator
