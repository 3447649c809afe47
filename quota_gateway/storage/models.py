"""
Data models for storage layer.

Defines the per-user daily usage record and its stored JSON form.
"""

import json
from dataclasses import dataclass, replace
from typing import Any, Dict


@dataclass(frozen=True)
class UsageRecord:
    """Cumulative token usage for one user on one day.

    total_tokens always equals input_tokens + output_tokens. The version is
    the store's write counter for the record; 0 means it was never stored.
    """
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    version: int = 0

    def __post_init__(self):
        """Validate counters are non-negative and consistent."""
        if self.input_tokens < 0 or self.output_tokens < 0:
            raise ValueError("token counters must be >= 0")
        if self.total_tokens != self.input_tokens + self.output_tokens:
            raise ValueError("total_tokens must equal input_tokens + output_tokens")

    @classmethod
    def zero(cls) -> "UsageRecord":
        """Record for a user not yet seen on a given day."""
        return cls()

    def add(self, input_tokens: int, output_tokens: int) -> "UsageRecord":
        """Return a copy with the given token counts added.

        The version is carried over unchanged; the store bumps it on write.
        """
        return replace(
            self,
            input_tokens=self.input_tokens + input_tokens,
            output_tokens=self.output_tokens + output_tokens,
            total_tokens=self.total_tokens + input_tokens + output_tokens
        )

    def to_json(self) -> str:
        """Serialize counters to the stored blob format."""
        return json.dumps({
            "input": self.input_tokens,
            "output": self.output_tokens,
            "total": self.total_tokens
        })

    @classmethod
    def from_json(cls, raw: str, version: int = 0) -> "UsageRecord":
        """Parse a stored blob.

        Raises:
            ValueError: If the blob is not a valid usage record
        """
        try:
            data: Dict[str, Any] = json.loads(raw)
            if not isinstance(data, dict):
                raise ValueError("usage record must be a JSON object")
            return cls(
                input_tokens=int(data.get("input", 0)),
                output_tokens=int(data.get("output", 0)),
                total_tokens=int(data.get("total", 0)),
                version=version
            )
        except TypeError as e:
            raise ValueError(f"invalid usage record: {e}") from e
