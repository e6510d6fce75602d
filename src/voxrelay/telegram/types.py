from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class TelegramVoice:
    file_id: str
    mime_type: str | None
    file_size: int | None
    duration: int | None
    raw: dict[str, Any] | None = None


@dataclass(frozen=True, slots=True)
class TelegramIncomingMessage:
    update_id: int
    chat_id: int
    message_id: int
    text: str
    sender_id: int | None
    voice: TelegramVoice | None = None
    chat_profile: dict[str, Any] = field(default_factory=dict)
    raw: dict[str, Any] | None = None

    @property
    def requester_id(self) -> str:
        return str(self.sender_id if self.sender_id is not None else self.chat_id)


@dataclass(frozen=True, slots=True)
class BotCommand:
    name: str
    args: str
