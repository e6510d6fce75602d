from __future__ import annotations

import re
from pathlib import Path

from ..logging import get_logger

logger = get_logger(__name__)

__all__ = ["TransientFileStore"]

_UNSAFE_CHARS_RE = re.compile(r"[^A-Za-z0-9_-]+")


def _safe_component(value: str) -> str:
    cleaned = _UNSAFE_CHARS_RE.sub("_", value).strip("_")
    return cleaned or "anon"


class TransientFileStore:
    """Scratch directory holding the container/decoded pair of each voice note."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def allocate_path(
        self,
        requester_id: str,
        extension: str,
        request_id: str | None = None,
    ) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        stem = _safe_component(str(requester_id))
        if request_id:
            stem = f"{stem}-{_safe_component(request_id)}"
        return self.root / f"{stem}.{extension.lstrip('.')}"

    def release(self, path: Path) -> None:
        try:
            Path(path).unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            logger.warning("voice.tempfile.release_failed", path=str(path), error=str(exc))
