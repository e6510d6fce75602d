from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

import anyio

from ..errors import (
    ApiError,
    FetchError,
    TranscodeError,
    TranscriptionError,
    VoxrelayError,
)
from ..logging import get_logger
from .fetch import MediaFetcher
from .tempfiles import TransientFileStore
from .transcode import DEFAULT_MAX_DURATION_S, Transcoder

logger = get_logger(__name__)

__all__ = [
    "JobState",
    "TranscodeJob",
    "Transcriber",
    "TranscriptResult",
    "VoiceIngestor",
    "VoiceRequest",
]

CONTAINER_EXT = "ogg"


class Transcriber(Protocol):
    async def transcribe(self, audio_path: Path) -> str: ...


class JobState(enum.StrEnum):
    IDLE = "idle"
    FETCHING = "fetching"
    TRANSCODING = "transcoding"
    TRANSCRIBING = "transcribing"
    DONE = "done"
    FAILED = "failed"


_STAGE_ERRORS: dict[JobState, type[VoxrelayError]] = {
    JobState.IDLE: FetchError,
    JobState.FETCHING: FetchError,
    JobState.TRANSCODING: TranscodeError,
    JobState.TRANSCRIBING: TranscriptionError,
}


@dataclass(frozen=True, slots=True)
class VoiceRequest:
    source_url: str
    requester_id: str
    max_duration_s: float = DEFAULT_MAX_DURATION_S
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])


@dataclass(slots=True)
class TranscodeJob:
    request: VoiceRequest
    source_path: Path
    target_path: Path
    state: JobState = JobState.IDLE

    def advance(self, state: JobState) -> None:
        logger.debug(
            "voice.job.state",
            requester_id=self.request.requester_id,
            request_id=self.request.request_id,
            previous=str(self.state),
            state=str(state),
        )
        self.state = state


@dataclass(frozen=True, slots=True)
class TranscriptResult:
    text: str | None = None
    error: VoxrelayError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def error_kind(self) -> str | None:
        if self.error is None:
            return None
        return type(self.error).__name__

    @classmethod
    def success(cls, text: str) -> TranscriptResult:
        return cls(text=text)

    @classmethod
    def failure(cls, error: VoxrelayError) -> TranscriptResult:
        return cls(error=error)


class VoiceIngestor:
    """Download, transcode, then transcribe a voice note.

    Calls are independent; any number may run concurrently. Both temp files
    are released before a call returns, whatever the outcome.
    """

    def __init__(
        self,
        *,
        files: TransientFileStore,
        fetcher: MediaFetcher,
        transcoder: Transcoder,
        transcriber: Transcriber,
        timeout_s: float | None = None,
    ) -> None:
        self.files = files
        self.fetcher = fetcher
        self.transcoder = transcoder
        self.transcriber = transcriber
        self.timeout_s = timeout_s

    def new_job(self, request: VoiceRequest) -> TranscodeJob:
        return TranscodeJob(
            request=request,
            source_path=self.files.allocate_path(
                request.requester_id, CONTAINER_EXT, request.request_id
            ),
            target_path=self.files.allocate_path(
                request.requester_id,
                self.transcoder.output_ext,
                request.request_id,
            ),
        )

    async def ingest(self, request: VoiceRequest) -> TranscriptResult:
        try:
            job = self.new_job(request)
        except OSError as exc:
            logger.error(
                "voice.ingest.allocate_failed",
                requester_id=request.requester_id,
                request_id=request.request_id,
                root=str(self.files.root),
                error=str(exc),
            )
            return TranscriptResult.failure(
                FetchError(f"cannot prepare voices directory: {exc}")
            )
        try:
            with anyio.fail_after(self.timeout_s):
                text = await self._run(job)
        except TimeoutError:
            stage = job.state
            error_cls = _STAGE_ERRORS.get(stage, TranscriptionError)
            logger.error(
                "voice.ingest.timeout",
                requester_id=request.requester_id,
                request_id=request.request_id,
                stage=str(stage),
                timeout_s=self.timeout_s,
            )
            job.advance(JobState.FAILED)
            return TranscriptResult.failure(
                error_cls(f"timed out while {stage} after {self.timeout_s}s")
            )
        except VoxrelayError as exc:
            job.advance(JobState.FAILED)
            return TranscriptResult.failure(exc)
        finally:
            self.files.release(job.source_path)
            self.files.release(job.target_path)
        job.advance(JobState.DONE)
        return TranscriptResult.success(text)

    async def _run(self, job: TranscodeJob) -> str:
        job.advance(JobState.FETCHING)
        await self.fetcher.fetch(job.request.source_url, job.source_path)

        job.advance(JobState.TRANSCODING)
        audio_path = await self.transcoder.transcode(
            job.source_path,
            job.target_path,
            max_duration_s=job.request.max_duration_s,
        )

        job.advance(JobState.TRANSCRIBING)
        try:
            text = await self.transcriber.transcribe(audio_path)
        except ApiError as exc:
            logger.error(
                "voice.transcribe.failed",
                requester_id=job.request.requester_id,
                status=exc.status,
                error=str(exc),
            )
            raise TranscriptionError(str(exc)) from exc
        text = text.strip()
        if not text:
            logger.error(
                "voice.transcribe.empty", requester_id=job.request.requester_id
            )
            raise TranscriptionError("transcription returned empty text")
        return text
