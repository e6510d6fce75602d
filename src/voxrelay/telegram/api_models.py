from __future__ import annotations

import msgspec

__all__ = [
    "Chat",
    "File",
    "Message",
    "Update",
    "User",
    "Voice",
]


class User(msgspec.Struct, forbid_unknown_fields=False):
    id: int
    is_bot: bool = False
    username: str | None = None
    first_name: str | None = None
    last_name: str | None = None


class Chat(msgspec.Struct, forbid_unknown_fields=False):
    id: int
    type: str
    username: str | None = None
    first_name: str | None = None


class Voice(msgspec.Struct, forbid_unknown_fields=False):
    file_id: str
    duration: int | None = None
    mime_type: str | None = None
    file_size: int | None = None


class Message(msgspec.Struct, forbid_unknown_fields=False):
    message_id: int
    chat: Chat | None = None
    from_: User | None = msgspec.field(default=None, name="from")
    text: str | None = None
    caption: str | None = None
    voice: Voice | None = None


class Update(msgspec.Struct, forbid_unknown_fields=False):
    update_id: int
    message: Message | None = None


class File(msgspec.Struct, forbid_unknown_fields=False):
    file_id: str | None = None
    file_path: str | None = None
    file_size: int | None = None
