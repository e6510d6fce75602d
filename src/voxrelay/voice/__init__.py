from __future__ import annotations

from .fetch import MediaFetcher
from .ingest import (
    JobState,
    TranscodeJob,
    Transcriber,
    TranscriptResult,
    VoiceIngestor,
    VoiceRequest,
)
from .tempfiles import TransientFileStore
from .transcode import DEFAULT_MAX_DURATION_S, Transcoder

__all__ = [
    "DEFAULT_MAX_DURATION_S",
    "JobState",
    "MediaFetcher",
    "TranscodeJob",
    "Transcoder",
    "Transcriber",
    "TranscriptResult",
    "TransientFileStore",
    "VoiceIngestor",
    "VoiceRequest",
]
