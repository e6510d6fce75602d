from __future__ import annotations

import shutil
import subprocess
from collections import deque
from pathlib import Path

import anyio

from ..errors import TranscodeError
from ..logging import get_logger
from ..utils.process import manage_subprocess
from ..utils.streams import drain_stderr

logger = get_logger(__name__)

__all__ = ["DEFAULT_MAX_DURATION_S", "Transcoder"]

DEFAULT_MAX_DURATION_S = 30.0
STDERR_TAIL_LINES = 50


def _format_seconds(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.3f}"


class Transcoder:
    """Converts a downloaded voice container with ffmpeg.

    Input longer than ``max_duration_s`` is cut, never rejected.
    """

    def __init__(
        self,
        *,
        ffmpeg_cmd: str = "ffmpeg",
        max_duration_s: float = DEFAULT_MAX_DURATION_S,
        output_ext: str = "mp3",
    ) -> None:
        self.ffmpeg_cmd = ffmpeg_cmd
        self.max_duration_s = max_duration_s
        self.output_ext = output_ext.lstrip(".")

    def is_available(self) -> bool:
        return shutil.which(self.ffmpeg_cmd) is not None

    def build_args(
        self, source: Path, target: Path, *, max_duration_s: float | None = None
    ) -> list[str]:
        duration = self.max_duration_s if max_duration_s is None else max_duration_s
        return [
            self.ffmpeg_cmd,
            "-hide_banner",
            "-loglevel",
            "error",
            "-y",
            "-t",
            _format_seconds(duration),
            "-i",
            str(source),
            str(target),
        ]

    async def transcode(
        self,
        source: Path,
        target: Path | None = None,
        *,
        max_duration_s: float | None = None,
    ) -> Path:
        if target is None:
            target = source.with_suffix(f".{self.output_ext}")
        args = self.build_args(source, target, max_duration_s=max_duration_s)
        logger.debug("voice.transcode.start", args=args)

        stderr_chunks: deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        try:
            async with manage_subprocess(
                *args,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
            ) as proc:
                assert proc.stderr is not None
                async with anyio.create_task_group() as tg:
                    tg.start_soon(
                        drain_stderr, proc.stderr, stderr_chunks, logger, "ffmpeg"
                    )
                    rc = await proc.wait()
        except FileNotFoundError as exc:
            logger.error("voice.transcode.missing_ffmpeg", ffmpeg=self.ffmpeg_cmd)
            raise TranscodeError(f"ffmpeg not found: {self.ffmpeg_cmd}") from exc
        except OSError as exc:
            logger.error(
                "voice.transcode.spawn_failed", ffmpeg=self.ffmpeg_cmd, error=str(exc)
            )
            raise TranscodeError(f"cannot run {self.ffmpeg_cmd}: {exc}") from exc

        if rc != 0:
            message = "".join(stderr_chunks).strip() or f"ffmpeg exited with {rc}"
            logger.error(
                "voice.transcode.failed",
                source=str(source),
                returncode=rc,
                error=message,
            )
            raise TranscodeError(message)

        try:
            source.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning(
                "voice.transcode.source_cleanup_failed",
                source=str(source),
                error=str(exc),
            )
        logger.debug("voice.transcode.done", target=str(target))
        return target
