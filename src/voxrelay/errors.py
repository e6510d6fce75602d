from __future__ import annotations


class VoxrelayError(Exception):
    """Base class for failures reported back to a single chat."""


class ConfigError(VoxrelayError):
    pass


class FetchError(VoxrelayError):
    """The voice note could not be downloaded."""


class TranscodeError(VoxrelayError):
    """ffmpeg failed to convert the downloaded container."""


class TranscriptionError(VoxrelayError):
    """The speech-to-text call failed or produced no text."""


class StoreError(VoxrelayError):
    """A document-store operation failed."""


class CompletionError(VoxrelayError):
    """The chat-completion call failed or returned no content."""


class ImageError(VoxrelayError):
    """Image generation failed."""


class ApiError(VoxrelayError):
    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.body = body
