from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TypeVar

import anyio

from ..logging import get_logger
from .client import BotClient
from .parsing import poll_incoming
from .types import TelegramIncomingMessage

logger = get_logger(__name__)

__all__ = ["run_main_loop", "with_chat_action"]

CHAT_ACTION_INTERVAL_S = 4.0

T = TypeVar("T")
Handler = Callable[[TelegramIncomingMessage], Awaitable[None]]


async def _guarded(handler: Handler, msg: TelegramIncomingMessage) -> None:
    try:
        await handler(msg)
    except Exception as exc:
        logger.exception(
            "telegram.handler.crashed",
            chat_id=msg.chat_id,
            message_id=msg.message_id,
            error=str(exc),
            error_type=exc.__class__.__name__,
        )


async def run_main_loop(
    bot: BotClient,
    handler: Handler,
    *,
    chat_ids: set[int] | None = None,
    poll_timeout_s: int = 50,
    sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
) -> None:
    """Poll for updates and handle each one in its own task."""
    async with anyio.create_task_group() as tg:
        async for msg in poll_incoming(
            bot, chat_ids=chat_ids, timeout_s=poll_timeout_s, sleep=sleep
        ):
            logger.debug(
                "telegram.incoming",
                chat_id=msg.chat_id,
                message_id=msg.message_id,
                voice=msg.voice is not None,
            )
            tg.start_soon(_guarded, handler, msg)


async def with_chat_action(
    bot: BotClient,
    chat_id: int,
    work: Callable[[], Awaitable[T]],
    action: str = "typing",
    *,
    interval_s: float = CHAT_ACTION_INTERVAL_S,
) -> T:
    """Run ``work`` while repeating a chat action; Telegram expires them after ~5s."""

    async def _pump() -> None:
        while True:
            await anyio.sleep(interval_s)
            await bot.send_chat_action(chat_id, action)

    await bot.send_chat_action(chat_id, action)
    result: T | None = None
    error: Exception | None = None
    async with anyio.create_task_group() as tg:
        tg.start_soon(_pump)
        try:
            result = await work()
        except Exception as exc:
            error = exc
        finally:
            tg.cancel_scope.cancel()
    if error is not None:
        raise error
    return result  # type: ignore[return-value]
