from __future__ import annotations

import re
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import anyio
import httpx
import msgspec

from ..logging import get_logger
from .api_models import File

logger = get_logger(__name__)

__all__ = [
    "BotClient",
    "TelegramClient",
    "TelegramRetryAfter",
]

TELEGRAM_API_URL = "https://api.telegram.org"


class TelegramRetryAfter(Exception):
    def __init__(self, retry_after: float) -> None:
        super().__init__(f"retry after {retry_after}s")
        self.retry_after = retry_after


class BotClient(Protocol):
    async def close(self) -> None: ...

    async def get_updates(
        self,
        offset: int | None,
        timeout_s: int = 50,
        allowed_updates: list[str] | None = None,
    ) -> list[dict] | None: ...

    async def send_message(
        self,
        chat_id: int,
        text: str,
        reply_to_message_id: int | None = None,
        entities: list[dict] | None = None,
        parse_mode: str | None = None,
    ) -> dict | None: ...

    async def send_photo(
        self,
        chat_id: int,
        photo: str,
        caption: str | None = None,
    ) -> dict | None: ...

    async def send_chat_action(self, chat_id: int, action: str = "typing") -> bool: ...

    async def get_file(self, file_id: str) -> File | None: ...

    def file_url(self, file_path: str) -> str: ...

    async def set_my_commands(self, commands: list[dict[str, Any]]) -> bool: ...

    async def get_me(self) -> dict | None: ...


_RETRY_AFTER_RE = re.compile(r"retry after (\d+)", re.IGNORECASE)


def _retry_after_from_payload(payload: dict[str, Any]) -> float | None:
    params = payload.get("parameters")
    if isinstance(params, dict):
        retry_after = params.get("retry_after")
        if isinstance(retry_after, (int, float)):
            return float(retry_after)
    description = payload.get("description")
    if isinstance(description, str):
        return _retry_after_from_description(description)
    return None


def _retry_after_from_description(description: str) -> float | None:
    match = _RETRY_AFTER_RE.search(description)
    if not match:
        return None
    return float(match.group(1))


def _retry_after_from_response(resp: httpx.Response) -> float | None:
    try:
        payload = resp.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        retry_after = _retry_after_from_payload(payload)
        if retry_after is not None:
            return retry_after
    return _retry_after_from_description(resp.text)


class TelegramClient:
    """Bot API calls over HTTP.

    Calls are best-effort: failures are logged and reported as ``None`` or
    ``False``. Rate-limit answers are retried up to ``max_retries`` times.
    """

    def __init__(
        self,
        token: str,
        timeout_s: float = 120,
        client: httpx.AsyncClient | None = None,
        *,
        base_url: str = TELEGRAM_API_URL,
        max_retries: int = 2,
        sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
    ) -> None:
        if not token:
            raise ValueError("Telegram token is empty")
        self._base = f"{base_url}/bot{token}"
        self._file_base = f"{base_url}/file/bot{token}"
        self._client = client or httpx.AsyncClient(timeout=timeout_s)
        self._owns_client = client is None
        self._max_retries = max_retries
        self._sleep = sleep

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _post(self, method: str, json_data: dict[str, Any]) -> Any | None:
        logger.debug("telegram.request", method=method, payload=json_data)
        try:
            resp = await self._client.post(f"{self._base}/{method}", json=json_data)
        except httpx.HTTPError as e:
            logger.error(
                "telegram.network_error",
                method=method,
                error=str(e),
                error_type=e.__class__.__name__,
            )
            return None

        try:
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            if resp.status_code == 429:
                retry_after = _retry_after_from_response(resp)
                if retry_after is not None:
                    logger.info(
                        "telegram.rate_limited",
                        method=method,
                        status=resp.status_code,
                        retry_after=retry_after,
                    )
                    raise TelegramRetryAfter(retry_after) from e
            logger.error(
                "telegram.http_error",
                method=method,
                status=resp.status_code,
                error=str(e),
                body=resp.text,
            )
            return None

        try:
            payload = resp.json()
        except ValueError as e:
            logger.error(
                "telegram.bad_response",
                method=method,
                status=resp.status_code,
                error=str(e),
                error_type=e.__class__.__name__,
                body=resp.text,
            )
            return None

        if not isinstance(payload, dict):
            logger.error("telegram.invalid_payload", method=method, payload=payload)
            return None

        if not payload.get("ok"):
            retry_after = _retry_after_from_payload(payload)
            if retry_after is not None:
                logger.info(
                    "telegram.rate_limited", method=method, retry_after=retry_after
                )
                raise TelegramRetryAfter(retry_after)
            logger.error("telegram.api_error", method=method, payload=payload)
            return None

        logger.debug("telegram.response", method=method, payload=payload)
        return payload.get("result")

    async def _call(self, method: str, params: dict[str, Any]) -> Any | None:
        attempt = 0
        while True:
            try:
                return await self._post(method, params)
            except TelegramRetryAfter as exc:
                attempt += 1
                if attempt > self._max_retries:
                    logger.error(
                        "telegram.rate_limit_exhausted", method=method, attempts=attempt
                    )
                    return None
                await self._sleep(exc.retry_after)

    async def get_updates(
        self,
        offset: int | None,
        timeout_s: int = 50,
        allowed_updates: list[str] | None = None,
    ) -> list[dict] | None:
        params: dict[str, Any] = {"timeout": timeout_s}
        if offset is not None:
            params["offset"] = offset
        if allowed_updates is not None:
            params["allowed_updates"] = allowed_updates
        result = await self._call("getUpdates", params)
        return result if isinstance(result, list) else None

    async def send_message(
        self,
        chat_id: int,
        text: str,
        reply_to_message_id: int | None = None,
        entities: list[dict] | None = None,
        parse_mode: str | None = None,
    ) -> dict | None:
        params: dict[str, Any] = {
            "chat_id": chat_id,
            "text": text,
        }
        if reply_to_message_id is not None:
            params["reply_to_message_id"] = reply_to_message_id
        if entities is not None:
            params["entities"] = entities
        if parse_mode is not None:
            params["parse_mode"] = parse_mode
        return await self._call("sendMessage", params)  # type: ignore[return-value]

    async def send_photo(
        self,
        chat_id: int,
        photo: str,
        caption: str | None = None,
    ) -> dict | None:
        params: dict[str, Any] = {"chat_id": chat_id, "photo": photo}
        if caption is not None:
            params["caption"] = caption
        return await self._call("sendPhoto", params)  # type: ignore[return-value]

    async def send_chat_action(self, chat_id: int, action: str = "typing") -> bool:
        res = await self._call("sendChatAction", {"chat_id": chat_id, "action": action})
        return bool(res)

    async def get_file(self, file_id: str) -> File | None:
        res = await self._call("getFile", {"file_id": file_id})
        if not isinstance(res, dict):
            return None
        try:
            return msgspec.convert(res, type=File)
        except msgspec.ValidationError as exc:
            logger.error("telegram.get_file.invalid", error=str(exc), payload=res)
            return None

    def file_url(self, file_path: str) -> str:
        return f"{self._file_base}/{file_path.lstrip('/')}"

    async def set_my_commands(self, commands: list[dict[str, Any]]) -> bool:
        res = await self._call("setMyCommands", {"commands": commands})
        return bool(res)

    async def get_me(self) -> dict | None:
        res = await self._call("getMe", {})
        return res if isinstance(res, dict) else None
