from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from typing import Any

import anyio
import httpx
import msgspec

from .errors import ApiError
from .logging import get_logger

logger = get_logger(__name__)

__all__ = [
    "ChatReply",
    "GeneratedImage",
    "OpenAIClient",
]

OPENAI_BASE_URL = "https://api.openai.com/v1"
OPENAI_AUDIO_MAX_BYTES = 25 * 1024 * 1024


class ChatReply(msgspec.Struct, frozen=True):
    role: str
    content: str | None
    finish_reason: str | None = None


class GeneratedImage(msgspec.Struct, frozen=True):
    url: str | None = None
    revised_prompt: str | None = None
    b64_json: str | None = None


class _ChatChoice(msgspec.Struct, forbid_unknown_fields=False):
    message: ChatReply
    finish_reason: str | None = None


class _ChatResponse(msgspec.Struct, forbid_unknown_fields=False):
    choices: list[_ChatChoice]


class _ImageResponse(msgspec.Struct, forbid_unknown_fields=False):
    data: list[GeneratedImage]


class _Transcript(msgspec.Struct, forbid_unknown_fields=False):
    text: str


class _ModelEntry(msgspec.Struct, forbid_unknown_fields=False):
    id: str


class _ModelList(msgspec.Struct, forbid_unknown_fields=False):
    data: list[_ModelEntry]


class OpenAIClient:
    """Thin adapter over the OpenAI HTTP API.

    Every call returns one of the structs above or raises ``ApiError``;
    callers never see raw response payloads.
    """

    def __init__(
        self,
        api_key: str,
        *,
        chat_model: str = "gpt-4-1106-preview",
        speech_model: str = "whisper-1",
        image_model: str = "dall-e-3",
        image_size: str = "1024x1024",
        base_url: str = OPENAI_BASE_URL,
        timeout_s: float = 120,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("OpenAI API key is empty")
        self.chat_model = chat_model
        self.speech_model = speech_model
        self.image_model = image_model
        self.image_size = image_size
        self._base = base_url.rstrip("/")
        self._headers = {"Authorization": f"Bearer {api_key}"}
        self._client = client or httpx.AsyncClient(timeout=timeout_s)
        self._owns_client = client is None

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        op: str,
        **kwargs: Any,
    ) -> bytes:
        url = f"{self._base}/{path}"
        try:
            resp = await self._client.request(
                method, url, headers=self._headers, **kwargs
            )
        except httpx.HTTPError as exc:
            logger.error(
                "openai.network_error",
                op=op,
                url=url,
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
            raise ApiError(f"{op} request failed: {exc}") from exc

        if resp.status_code >= 400:
            body = resp.text
            logger.error(
                "openai.http_error",
                op=op,
                status=resp.status_code,
                url=url,
                body=body[:2000],
            )
            raise ApiError(
                f"{op} returned HTTP {resp.status_code}",
                status=resp.status_code,
                body=body,
            )
        return resp.content

    def _decode(self, raw: bytes, kind: type[Any], *, op: str) -> Any:
        try:
            return msgspec.json.decode(raw, type=kind)
        except msgspec.DecodeError as exc:
            logger.error(
                "openai.bad_response",
                op=op,
                error=str(exc),
                body=raw[:2000].decode("utf-8", errors="replace"),
            )
            raise ApiError(f"{op} returned an unexpected payload: {exc}") from exc

    async def complete(self, messages: Sequence[dict[str, Any]]) -> ChatReply:
        raw = await self._request(
            "POST",
            "chat/completions",
            op="chat",
            json={"model": self.chat_model, "messages": list(messages)},
        )
        payload: _ChatResponse = self._decode(raw, _ChatResponse, op="chat")
        if not payload.choices:
            raise ApiError("chat returned no choices")
        choice = payload.choices[0]
        return ChatReply(
            role=choice.message.role,
            content=choice.message.content,
            finish_reason=choice.finish_reason,
        )

    async def transcribe(self, audio_path: Path) -> str:
        audio_path = Path(audio_path)
        try:
            audio_bytes = await anyio.Path(audio_path).read_bytes()
        except OSError as exc:
            raise ApiError(f"cannot read {audio_path.name}: {exc}") from exc
        if len(audio_bytes) > OPENAI_AUDIO_MAX_BYTES:
            raise ApiError("audio file is too large to transcribe")
        raw = await self._request(
            "POST",
            "audio/transcriptions",
            op="transcription",
            data={"model": self.speech_model},
            files={"file": (audio_path.name, audio_bytes, "application/octet-stream")},
        )
        payload: _Transcript = self._decode(raw, _Transcript, op="transcription")
        return payload.text

    async def generate_image(self, prompt: str) -> GeneratedImage:
        raw = await self._request(
            "POST",
            "images/generations",
            op="image",
            json={
                "model": self.image_model,
                "prompt": prompt,
                "n": 1,
                "size": self.image_size,
            },
        )
        payload: _ImageResponse = self._decode(raw, _ImageResponse, op="image")
        if not payload.data:
            raise ApiError("image generation returned no data")
        return payload.data[0]

    async def list_models(self) -> list[str]:
        raw = await self._request("GET", "models", op="models")
        payload: _ModelList = self._decode(raw, _ModelList, op="models")
        return sorted(entry.id for entry in payload.data)
