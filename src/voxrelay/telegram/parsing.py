from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

import anyio
import msgspec

from ..logging import get_logger
from .api_models import Message, Update
from .client import BotClient
from .types import BotCommand, TelegramIncomingMessage, TelegramVoice

logger = get_logger(__name__)

__all__ = [
    "parse_command",
    "parse_incoming_update",
    "poll_incoming",
]


def parse_incoming_update(
    update: Update | dict[str, Any],
    *,
    chat_ids: set[int] | None = None,
) -> TelegramIncomingMessage | None:
    raw_message: dict[str, Any] | None = None
    if isinstance(update, dict):
        raw_message = (
            update.get("message") if isinstance(update.get("message"), dict) else None
        )
        try:
            update = msgspec.convert(update, type=Update)
        except msgspec.ValidationError:
            logger.debug("telegram.update.invalid", update=update)
            return None
    if update.message is None:
        return None
    return _parse_incoming_message(
        update.update_id,
        update.message,
        chat_ids=chat_ids,
        raw=raw_message,
    )


def _parse_incoming_message(
    update_id: int,
    msg: Message,
    *,
    chat_ids: set[int] | None = None,
    raw: dict[str, Any] | None = None,
) -> TelegramIncomingMessage | None:
    chat = msg.chat
    if chat is None:
        return None
    if chat_ids is not None and chat.id not in chat_ids:
        return None
    text = msg.text if msg.text is not None else msg.caption
    voice: TelegramVoice | None = None
    if msg.voice is not None:
        voice = TelegramVoice(
            file_id=msg.voice.file_id,
            mime_type=msg.voice.mime_type,
            file_size=msg.voice.file_size,
            duration=msg.voice.duration,
            raw=msgspec.to_builtins(msg.voice),
        )
    if text is None and voice is None:
        return None
    profile = {
        "type": chat.type,
        "username": chat.username,
        "first_name": chat.first_name,
    }
    sender = msg.from_
    return TelegramIncomingMessage(
        update_id=update_id,
        chat_id=chat.id,
        message_id=msg.message_id,
        text=text or "",
        sender_id=sender.id if sender is not None else None,
        voice=voice,
        chat_profile={key: value for key, value in profile.items() if value},
        raw=raw if raw is not None else msgspec.to_builtins(msg),
    )


def parse_command(text: str, *, bot_username: str | None = None) -> BotCommand | None:
    stripped = text.strip()
    if not stripped.startswith("/"):
        return None
    head, _, args = stripped.partition(" ")
    name = head[1:]
    if "@" in name:
        name, _, target = name.partition("@")
        if bot_username is not None and target.lower() != bot_username.lower():
            return None
    if not name:
        return None
    return BotCommand(name=name.lower(), args=args.strip())


async def poll_incoming(
    bot: BotClient,
    *,
    offset: int | None = None,
    chat_ids: set[int] | None = None,
    timeout_s: int = 50,
    retry_delay_s: float = 2.0,
    sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
) -> AsyncIterator[TelegramIncomingMessage]:
    while True:
        updates = await bot.get_updates(
            offset=offset, timeout_s=timeout_s, allowed_updates=["message"]
        )
        if updates is None:
            logger.info("telegram.poll.failed", retry_in=retry_delay_s)
            await sleep(retry_delay_s)
            continue
        for update in updates:
            update_id = update.get("update_id") if isinstance(update, dict) else None
            if isinstance(update_id, int):
                offset = update_id + 1
            msg = parse_incoming_update(update, chat_ids=chat_ids)
            if msg is not None:
                yield msg
