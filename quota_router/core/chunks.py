"""
Response stream chunks.

Shapes of the items yielded by a provider's message stream.
"""

from dataclasses import dataclass
from typing import Optional, Union


@dataclass(frozen=True)
class TextChunk:
    """A piece of generated text."""
    text: str
    type: str = "text"


@dataclass(frozen=True)
class ReasoningChunk:
    """A piece of model reasoning, streamed separately from the answer."""
    text: str
    type: str = "reasoning"


@dataclass(frozen=True)
class UsageChunk:
    """Token usage reported by the provider.

    Contains the counts exactly as reported; missing counts are treated as zero.
    """
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    type: str = "usage"

    @property
    def total_tokens(self) -> int:
        """Total tokens used (input + output)."""
        return (self.input_tokens or 0) + (self.output_tokens or 0)


ApiStreamChunk = Union[TextChunk, ReasoningChunk, UsageChunk]
