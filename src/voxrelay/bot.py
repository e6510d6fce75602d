from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from .conversation import ConversationService
from .errors import (
    ApiError,
    CompletionError,
    FetchError,
    ImageError,
    StoreError,
    TranscodeError,
    TranscriptionError,
    VoxrelayError,
)
from .logging import get_logger
from .openai_api import GeneratedImage
from .store import HistoryStore
from .telegram.client import BotClient
from .telegram.loop import with_chat_action
from .telegram.parsing import parse_command
from .telegram.types import TelegramIncomingMessage
from .voice.ingest import VoiceIngestor, VoiceRequest
from .voice.transcode import DEFAULT_MAX_DURATION_S

logger = get_logger(__name__)

__all__ = ["BOT_COMMANDS", "BotApp", "ImageGenerator", "user_message_for"]

BOT_COMMANDS: list[dict[str, Any]] = [
    {"command": "start", "description": "Start bot command"},
    {"command": "clear", "description": "clear chat context with the model"},
    {"command": "paint", "description": "give your prompt and get a picture"},
    {"command": "quit", "description": "leave the paint mode"},
    {"command": "models", "description": "list models available to the bot"},
]

ACK_TEXT = "I received your message. Waiting response from server"
PAINT_ENTER_TEXT = (
    "You have entered the paint mode! Write any prompt you want. "
    "For exit from this mode use command '/quit'"
)
PAINT_LEAVE_TEXT = "You have left the paint mode"
PAINT_ACK_TEXT = "I received your prompt. Let's try to draw it!"
CLEAR_TEXT = "I successfully cleared all your context"
MAX_LISTED_MODELS = 50

_ERROR_MESSAGES: dict[type[VoxrelayError], str] = {
    FetchError: "I could not download your voice message. Please send it again.",
    TranscodeError: "I could not decode your voice message. Please send it again.",
    TranscriptionError: "I could not recognize speech in your voice message. Please try again.",
    CompletionError: "The model did not answer. Please try again.",
    ImageError: "I could not draw that. Please try another prompt.",
    StoreError: "Conversation storage is unavailable right now. Please try later.",
}


def user_message_for(error: VoxrelayError) -> str:
    for kind, text in _ERROR_MESSAGES.items():
        if isinstance(error, kind):
            return text
    return "Something went wrong. Please try again."


def _utf16_len(text: str) -> int:
    # Telegram measures entity offsets in UTF-16 code units.
    return len(text.encode("utf-16-le")) // 2


def code_entity(text: str) -> list[dict[str, Any]]:
    return [{"type": "code", "offset": 0, "length": _utf16_len(text)}]


def compose(*parts: str | tuple[str, str]) -> tuple[str, list[dict[str, Any]]]:
    """Join plain strings and `(entity_type, text)` pairs into text plus entities."""
    text = ""
    entities: list[dict[str, Any]] = []
    for part in parts:
        if isinstance(part, tuple):
            kind, chunk = part
            if chunk:
                entities.append(
                    {
                        "type": kind,
                        "offset": _utf16_len(text),
                        "length": _utf16_len(chunk),
                    }
                )
        else:
            chunk = part
        text += chunk
    return text, entities


class ImageGenerator(Protocol):
    async def generate_image(self, prompt: str) -> GeneratedImage: ...

    async def list_models(self) -> list[str]: ...


@dataclass(slots=True)
class BotApp:
    bot: BotClient
    store: HistoryStore
    conversation: ConversationService
    ingestor: VoiceIngestor
    images: ImageGenerator
    chat_model: str = ""
    image_model: str = ""
    max_voice_seconds: float = DEFAULT_MAX_DURATION_S
    bot_username: str | None = None
    paint_chats: set[int] = field(default_factory=set)

    async def register_commands(self) -> bool:
        ok = await self.bot.set_my_commands(BOT_COMMANDS)
        if not ok:
            logger.warning("bot.commands.register_failed")
        return ok

    async def reply(self, msg: TelegramIncomingMessage, text: str, **kwargs: Any) -> None:
        await self.bot.send_message(chat_id=msg.chat_id, text=text, **kwargs)

    async def reply_code(self, msg: TelegramIncomingMessage, text: str) -> None:
        await self.reply(msg, text, entities=code_entity(text))

    async def handle(self, msg: TelegramIncomingMessage) -> None:
        try:
            await self.store.get_or_create_user(msg.chat_id, msg.chat_profile)
            await self._dispatch(msg)
        except VoxrelayError as exc:
            logger.error(
                "bot.request.failed",
                chat_id=msg.chat_id,
                message_id=msg.message_id,
                error=str(exc),
                error_kind=type(exc).__name__,
            )
            await self.reply(msg, user_message_for(exc))

    async def _dispatch(self, msg: TelegramIncomingMessage) -> None:
        if msg.voice is not None:
            await self.handle_voice(msg)
            return
        command = parse_command(msg.text, bot_username=self.bot_username)
        if command is not None:
            handler = getattr(self, f"command_{command.name}", None)
            if handler is not None:
                await handler(msg)
                return
        if msg.chat_id in self.paint_chats:
            await self.paint(msg, msg.text)
            return
        await self.handle_text(msg)

    async def command_start(self, msg: TelegramIncomingMessage) -> None:
        name = msg.chat_profile.get("first_name") or "there"
        text, entities = compose(
            "Greetings ",
            ("bold", name),
            "! Here you can ask questions to the GPT chat, "
            "using text or voice messages. We are using ",
            ("bold", self.chat_model),
            " model API for text responses and ",
            f'"{self.image_model}" model for image generation.',
        )
        await self.reply(msg, text, entities=entities)

    async def command_clear(self, msg: TelegramIncomingMessage) -> None:
        await self.conversation.clear(msg.chat_id)
        await self.reply(msg, CLEAR_TEXT)

    async def command_paint(self, msg: TelegramIncomingMessage) -> None:
        self.paint_chats.add(msg.chat_id)
        await self.reply(msg, PAINT_ENTER_TEXT)

    async def command_quit(self, msg: TelegramIncomingMessage) -> None:
        self.paint_chats.discard(msg.chat_id)
        await self.reply(msg, PAINT_LEAVE_TEXT)

    async def command_models(self, msg: TelegramIncomingMessage) -> None:
        try:
            models = await self.images.list_models()
        except ApiError as exc:
            raise CompletionError(f"listing models failed: {exc}") from exc
        logger.info("openai.models", models=models)
        listed = "\n".join(models[:MAX_LISTED_MODELS])
        more = len(models) - MAX_LISTED_MODELS
        if more > 0:
            listed += f"\n... and {more} more"
        await self.reply(msg, f"Available models:\n{listed}" if models else "No models available")

    async def handle_text(self, msg: TelegramIncomingMessage) -> None:
        await self.reply_code(msg, ACK_TEXT)
        await self._answer(msg, msg.text)

    async def handle_voice(self, msg: TelegramIncomingMessage) -> None:
        await self.reply_code(msg, ACK_TEXT)
        text = await self.transcribe(msg)
        await self.reply_code(msg, f"Your message is: {text}")
        if msg.chat_id in self.paint_chats:
            await self.paint(msg, text, acknowledge=False)
            return
        await self._answer(msg, text)

    async def transcribe(self, msg: TelegramIncomingMessage) -> str:
        assert msg.voice is not None
        file_info = await self.bot.get_file(msg.voice.file_id)
        if file_info is None or not file_info.file_path:
            raise FetchError("failed to fetch voice file info")
        result = await self.ingestor.ingest(
            VoiceRequest(
                source_url=self.bot.file_url(file_info.file_path),
                requester_id=msg.requester_id,
                max_duration_s=self.max_voice_seconds,
            )
        )
        if not result.ok:
            assert result.error is not None
            raise result.error
        assert result.text is not None
        return result.text

    async def _answer(self, msg: TelegramIncomingMessage, text: str) -> None:
        async def work() -> str:
            return await self.conversation.reply(msg.chat_id, text)

        answer = await with_chat_action(self.bot, msg.chat_id, work)
        await self.reply(msg, answer)

    async def paint(
        self, msg: TelegramIncomingMessage, prompt: str, *, acknowledge: bool = True
    ) -> None:
        if acknowledge:
            await self.reply(msg, PAINT_ACK_TEXT)

        async def work() -> GeneratedImage:
            try:
                return await self.images.generate_image(prompt)
            except ApiError as exc:
                raise ImageError(str(exc)) from exc

        image = await with_chat_action(self.bot, msg.chat_id, work, "upload_photo")
        if not image.url:
            raise ImageError("image generation returned no url")
        await self.bot.send_photo(chat_id=msg.chat_id, photo=image.url)
        if image.revised_prompt:
            await self.reply(msg, image.revised_prompt)
