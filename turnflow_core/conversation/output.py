"""Platform-independent output templates and the conversion strategy."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence


@dataclass
class OutputTemplate:
    """
    One piece of output produced by an application handler.

    Platforms turn templates into their native response payloads through
    their OutputConverter. Per-platform overrides are keyed by platform id.
    """

    message: Optional[str] = None
    reprompt: Optional[str] = None
    listen: bool = True
    quick_replies: List[str] = field(default_factory=list)
    card: Optional[Dict[str, Any]] = None
    platforms: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def for_platform(self, platform_id: Optional[str]) -> "OutputTemplate":
        """Return a copy with the overrides for one platform applied."""
        overrides = self.platforms.get(platform_id) if platform_id else None
        if not overrides:
            return self
        return replace(self, platforms={}, **overrides)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "reprompt": self.reprompt,
            "listen": self.listen,
            "quick_replies": list(self.quick_replies),
            "card": self.card,
        }


class OutputConverter(ABC):
    """Strategy converting output templates into native response payloads."""

    @abstractmethod
    def to_response(self, output: OutputTemplate) -> Any:
        """Convert a single template."""

    def convert(
        self,
        outputs: Sequence[OutputTemplate],
        platform_id: Optional[str] = None,
    ) -> Any:
        """
        Convert every template of a turn.

        Returns a single payload for zero or one template, a list of
        payloads otherwise. Collapsing a list is the platform's
        finalize_response() job.
        """
        if not outputs:
            return self.to_response(OutputTemplate(listen=False))

        responses = [self.to_response(output.for_platform(platform_id)) for output in outputs]
        return responses[0] if len(responses) == 1 else responses


__all__ = ["OutputTemplate", "OutputConverter"]
