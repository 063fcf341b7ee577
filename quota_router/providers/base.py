"""
Provider handler interface.

Every concrete provider adapter implements :class:`ApiHandler`; the
fallback handler depends on nothing else.
"""

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol

from ..core.chunks import ApiStreamChunk

Message = Dict[str, Any]
ContentBlock = Dict[str, Any]


@dataclass(frozen=True)
class ModelDescriptor:
    """Identifier and metadata of the model a handler talks to."""
    id: str
    info: Dict[str, Any] = field(default_factory=dict)


class NoActiveHandlerError(RuntimeError):
    """Raised when no provider handler could be selected."""

    def __init__(self, message: str = "No active handler configured"):
        super().__init__(message)


class ApiHandler(Protocol):
    """Request-issuing capability of one provider."""

    def create_message(
        self,
        system_prompt: str,
        messages: List[Message],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AsyncIterator[ApiStreamChunk]:
        ...

    async def count_tokens(self, content: List[ContentBlock]) -> int:
        ...

    def get_model(self) -> ModelDescriptor:
        ...
