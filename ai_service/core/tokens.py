"""
Token usage accounting.

Holds vendor-reported token counts; nothing here estimates tokens.
"""

from dataclasses import dataclass
from typing import Any, Dict


@dataclass(frozen=True)
class TokenUsage:
    """Token usage reported by a provider for one call."""
    input: int = 0
    output: int = 0

    def __post_init__(self):
        if self.input < 0 or self.output < 0:
            raise ValueError("token counts cannot be negative")

    @property
    def total(self) -> int:
        """Total tokens used (input + output)."""
        return self.input + self.output

    def to_dict(self) -> Dict[str, int]:
        return {"input": self.input, "output": self.output, "total": self.total}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TokenUsage":
        return cls(input=int(data.get("input", 0)), output=int(data.get("output", 0)))


def usage_or_zero(input_tokens: Any, output_tokens: Any) -> TokenUsage:
    """Build usage from vendor metadata, treating missing counts as 0."""
    return TokenUsage(input=int(input_tokens or 0), output=int(output_tokens or 0))
