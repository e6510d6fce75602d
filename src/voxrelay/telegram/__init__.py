from __future__ import annotations

from .client import BotClient, TelegramClient, TelegramRetryAfter
from .loop import run_main_loop, with_chat_action
from .parsing import parse_command, parse_incoming_update, poll_incoming
from .types import BotCommand, TelegramIncomingMessage, TelegramVoice

__all__ = [
    "BotClient",
    "BotCommand",
    "TelegramClient",
    "TelegramIncomingMessage",
    "TelegramRetryAfter",
    "TelegramVoice",
    "parse_command",
    "parse_incoming_update",
    "poll_incoming",
    "run_main_loop",
    "with_chat_action",
]
