"""Message sink for user-facing notices, warnings and errors.

Fire-and-forget: callers add messages and never read a result back. Every
message is also logged.
"""

from dataclasses import dataclass, field
from typing import Literal

from libs.common.logging import get_logger

logger = get_logger(__name__)

Level = Literal["notice", "warning", "error"]


@dataclass
class Message:
    level: Level
    text: str


@dataclass
class Messages:
    items: list[Message] = field(default_factory=list)

    def add_notice(self, text: str) -> None:
        logger.info(text)
        self.items.append(Message("notice", text))

    def add_warning(self, text: str) -> None:
        logger.warning(text)
        self.items.append(Message("warning", text))

    def add_error(self, text: str) -> None:
        logger.error(text)
        self.items.append(Message("error", text))

    def of_level(self, level: Level) -> list[str]:
        return [m.text for m in self.items if m.level == level]

    @property
    def warnings(self) -> list[str]:
        return self.of_level("warning")

    @property
    def errors(self) -> list[str]:
        return self.of_level("error")

    def flush(self) -> list[Message]:
        """Return and forget everything collected so far."""
        items, self.items = self.items, []
        return items
