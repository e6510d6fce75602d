from __future__ import annotations

from pathlib import Path

import anyio
import httpx

from ..errors import FetchError
from ..logging import get_logger

logger = get_logger(__name__)

__all__ = ["MediaFetcher"]

CHUNK_SIZE = 64 * 1024


class MediaFetcher:
    def __init__(
        self,
        *,
        timeout_s: float = 60,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(
            timeout=timeout_s, follow_redirects=True
        )
        self._owns_client = client is None

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def fetch(self, url: str, destination: Path) -> Path:
        """Stream ``url`` into ``destination``.

        Resolves once the file is fully written and closed. A partially
        written file is left behind on failure for the caller to release.
        """
        written = 0
        try:
            async with self._client.stream("GET", url) as resp:
                if resp.status_code >= 400:
                    await resp.aread()
                    logger.error(
                        "voice.fetch.http_error",
                        status=resp.status_code,
                        url=str(resp.request.url),
                        body=resp.text[:500],
                    )
                    raise FetchError(
                        f"download failed with HTTP {resp.status_code}"
                    )
                async with await anyio.open_file(destination, "wb") as fh:
                    async for chunk in resp.aiter_bytes(CHUNK_SIZE):
                        await fh.write(chunk)
                        written += len(chunk)
        except httpx.HTTPError as exc:
            logger.error(
                "voice.fetch.network_error",
                url=url,
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
            raise FetchError(f"download failed: {exc}") from exc
        except OSError as exc:
            logger.error(
                "voice.fetch.write_error",
                path=str(destination),
                error=str(exc),
            )
            raise FetchError(f"could not write {destination.name}: {exc}") from exc

        logger.debug("voice.fetch.done", path=str(destination), size=written)
        return destination
