from __future__ import annotations

import signal
from contextlib import AsyncExitStack

import anyio

from .bot import BotApp
from .config import BotSettings
from .conversation import ConversationService
from .logging import get_logger
from .openai_api import OpenAIClient
from .store import HistoryStore
from .telegram.client import TelegramClient
from .telegram.loop import run_main_loop
from .voice import MediaFetcher, Transcoder, TransientFileStore, VoiceIngestor

logger = get_logger(__name__)

__all__ = ["serve"]


async def _watch_signals(scope: anyio.CancelScope) -> None:
    with anyio.open_signal_receiver(signal.SIGINT, signal.SIGTERM) as signals:
        async for signum in signals:
            logger.info("shutdown.signal", signal=signal.Signals(signum).name)
            scope.cancel()
            return


async def serve(settings: BotSettings) -> None:
    async with AsyncExitStack() as stack:
        store = HistoryStore(
            settings.mongodb_uri,
            database=settings.database,
            collection=settings.collection,
        )
        await store.open()
        stack.push_async_callback(store.close)

        bot = TelegramClient(settings.bot_token, timeout_s=settings.request_timeout_s)
        stack.push_async_callback(bot.close)

        openai = OpenAIClient(
            settings.openai_api_key,
            chat_model=settings.chat_model,
            speech_model=settings.speech_model,
            image_model=settings.image_model,
            image_size=settings.image_size,
            base_url=settings.openai_base_url,
            timeout_s=settings.request_timeout_s,
        )
        stack.push_async_callback(openai.close)

        fetcher = MediaFetcher(timeout_s=settings.request_timeout_s)
        stack.push_async_callback(fetcher.close)

        transcoder = Transcoder(
            ffmpeg_cmd=settings.ffmpeg,
            max_duration_s=settings.max_voice_seconds,
        )
        if not transcoder.is_available():
            logger.warning("voice.ffmpeg_missing", ffmpeg=settings.ffmpeg)

        me = await bot.get_me()
        app = BotApp(
            bot=bot,
            store=store,
            conversation=ConversationService(
                store=store,
                completer=openai,
                system_prompt=settings.system_prompt,
            ),
            ingestor=VoiceIngestor(
                files=TransientFileStore(settings.voices_dir),
                fetcher=fetcher,
                transcoder=transcoder,
                transcriber=openai,
                timeout_s=settings.voice_timeout_s,
            ),
            images=openai,
            chat_model=settings.chat_model,
            image_model=settings.image_model,
            max_voice_seconds=settings.max_voice_seconds,
            bot_username=me.get("username") if me else None,
        )
        await app.register_commands()
        logger.info(
            "bot.started",
            username=app.bot_username,
            voices_dir=str(settings.voices_dir),
        )

        async with anyio.create_task_group() as tg:
            tg.start_soon(_watch_signals, tg.cancel_scope)
            await run_main_loop(bot, app.handle)
        logger.info("bot.stopped")
