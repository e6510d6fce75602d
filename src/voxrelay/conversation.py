from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol

from .errors import ApiError, CompletionError
from .logging import get_logger
from .openai_api import ChatReply
from .store import (
    MESSAGES_FIELD,
    ConversationMessage,
    HistoryStore,
    Role,
    UserRecord,
)

logger = get_logger(__name__)

__all__ = ["ChatCompleter", "ConversationService"]


class ChatCompleter(Protocol):
    async def complete(self, messages: Sequence[dict[str, Any]]) -> ChatReply: ...


class ConversationService:
    """One chat turn: record the question, complete, record the answer."""

    def __init__(
        self,
        *,
        store: HistoryStore,
        completer: ChatCompleter,
        system_prompt: str | None = None,
    ) -> None:
        self.store = store
        self.completer = completer
        self.system_prompt = system_prompt

    def _prompt(self, history: Sequence[ConversationMessage]) -> list[dict[str, Any]]:
        messages = [message.to_document() for message in history]
        if self.system_prompt:
            messages.insert(
                0,
                ConversationMessage(
                    role=Role.SYSTEM, content=self.system_prompt
                ).to_document(),
            )
        return messages

    async def reply(self, user_id: int | str, text: str) -> str:
        updated = await self.store.append_to_array_field(
            user_id,
            MESSAGES_FIELD,
            ConversationMessage(role=Role.USER, content=text),
        )
        try:
            answer = await self.completer.complete(self._prompt(updated.messages))
        except ApiError as exc:
            logger.error(
                "chat.completion.failed",
                user_id=user_id,
                status=exc.status,
                error=str(exc),
            )
            raise CompletionError(str(exc)) from exc
        if not answer.content:
            logger.error(
                "chat.completion.empty",
                user_id=user_id,
                finish_reason=answer.finish_reason,
            )
            raise CompletionError("chat completion returned no content")

        await self.store.append_to_array_field(
            user_id,
            MESSAGES_FIELD,
            ConversationMessage(role=Role.ASSISTANT, content=answer.content),
        )
        return answer.content

    async def clear(self, user_id: int | str) -> UserRecord:
        return await self.store.clear_array_field(user_id, MESSAGES_FIELD)
