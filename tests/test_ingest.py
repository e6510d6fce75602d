from pathlib import Path

import anyio
import httpx
import pytest

from tests.fakes import FakeTranscriber, posix_only
from voxrelay.errors import ApiError, TranscriptionError
from voxrelay.voice import (
    JobState,
    MediaFetcher,
    Transcoder,
    TransientFileStore,
    VoiceIngestor,
    VoiceRequest,
)

pytestmark = posix_only

SOURCES = {
    "/voice/1.oga": b"good morning",
    "/voice/2.oga": b"good night",
    "/voice/42.oga": b"ten seconds of speech",
}


def _serve_sources(request: httpx.Request) -> httpx.Response:
    body = SOURCES.get(request.url.path)
    if body is None:
        return httpx.Response(404, text="file not found")
    return httpx.Response(200, content=body)


def _ingestor(
    voices_dir: Path,
    ffmpeg: str,
    *,
    handler=_serve_sources,
    transcriber: FakeTranscriber | None = None,
    timeout_s: float | None = None,
) -> VoiceIngestor:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return VoiceIngestor(
        files=TransientFileStore(voices_dir),
        fetcher=MediaFetcher(client=client),
        transcoder=Transcoder(ffmpeg_cmd=ffmpeg),
        transcriber=transcriber or FakeTranscriber(),
        timeout_s=timeout_s,
    )


def _leftovers(voices_dir: Path) -> list[str]:
    if not voices_dir.exists():
        return []
    return sorted(path.name for path in voices_dir.iterdir())


@pytest.mark.anyio
async def test_ingest_success_leaves_no_files(voices_dir: Path, fake_ffmpeg: str) -> None:
    transcriber = FakeTranscriber()
    ingestor = _ingestor(voices_dir, fake_ffmpeg, transcriber=transcriber)

    result = await ingestor.ingest(
        VoiceRequest(source_url="https://files.test/voice/42.oga", requester_id="42")
    )

    assert result.ok
    assert result.text == "heard ten seconds of speech"
    assert result.error_kind is None
    assert transcriber.seen[0].suffix == ".mp3"
    assert transcriber.seen[0].name.startswith("42-")
    assert _leftovers(voices_dir) == []


@pytest.mark.anyio
async def test_ingest_fetch_404(voices_dir: Path, fake_ffmpeg: str) -> None:
    transcriber = FakeTranscriber()
    ingestor = _ingestor(voices_dir, fake_ffmpeg, transcriber=transcriber)

    result = await ingestor.ingest(
        VoiceRequest(source_url="https://files.test/voice/404.oga", requester_id="42")
    )

    assert not result.ok
    assert result.error_kind == "FetchError"
    assert transcriber.seen == []
    assert _leftovers(voices_dir) == []


@pytest.mark.anyio
async def test_ingest_fetch_network_error(voices_dir: Path, fake_ffmpeg: str) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    ingestor = _ingestor(voices_dir, fake_ffmpeg, handler=handler)

    result = await ingestor.ingest(
        VoiceRequest(source_url="https://files.test/voice/1.oga", requester_id="1")
    )

    assert result.error_kind == "FetchError"
    assert _leftovers(voices_dir) == []


class _BrokenBody(httpx.AsyncByteStream):
    async def __aiter__(self):
        yield b"first half of the voice note"
        raise httpx.ReadError("connection reset by peer")


@pytest.mark.anyio
async def test_ingest_interrupted_download_removes_partial_file(
    voices_dir: Path, fake_ffmpeg: str
) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, stream=_BrokenBody())

    transcriber = FakeTranscriber()
    ingestor = _ingestor(
        voices_dir, fake_ffmpeg, handler=handler, transcriber=transcriber
    )

    result = await ingestor.ingest(
        VoiceRequest(source_url="https://files.test/voice/1.oga", requester_id="1")
    )

    assert result.error_kind == "FetchError"
    assert transcriber.seen == []
    assert voices_dir.exists()
    assert _leftovers(voices_dir) == []


@pytest.mark.anyio
async def test_ingest_unusable_voices_dir_is_reported(
    tmp_path: Path, fake_ffmpeg: str
) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    transcriber = FakeTranscriber()
    ingestor = _ingestor(blocker / "voices", fake_ffmpeg, transcriber=transcriber)

    result = await ingestor.ingest(
        VoiceRequest(source_url="https://files.test/voice/1.oga", requester_id="1")
    )

    assert not result.ok
    assert result.error_kind == "FetchError"
    assert "voices directory" in str(result.error)
    assert transcriber.seen == []


@pytest.mark.anyio
async def test_ingest_transcode_failure_cleans_container(
    voices_dir: Path, failing_ffmpeg: str
) -> None:
    transcriber = FakeTranscriber()
    ingestor = _ingestor(voices_dir, failing_ffmpeg, transcriber=transcriber)

    result = await ingestor.ingest(
        VoiceRequest(source_url="https://files.test/voice/1.oga", requester_id="1")
    )

    assert result.error_kind == "TranscodeError"
    assert "Invalid data found" in str(result.error)
    assert transcriber.seen == []
    assert _leftovers(voices_dir) == []


@pytest.mark.anyio
async def test_ingest_transcription_failure_cleans_decoded(
    voices_dir: Path, fake_ffmpeg: str
) -> None:
    transcriber = FakeTranscriber(error=ApiError("boom", status=500, body="oops"))
    ingestor = _ingestor(voices_dir, fake_ffmpeg, transcriber=transcriber)

    result = await ingestor.ingest(
        VoiceRequest(source_url="https://files.test/voice/1.oga", requester_id="1")
    )

    assert result.error_kind == "TranscriptionError"
    assert isinstance(result.error, TranscriptionError)
    assert len(transcriber.seen) == 1
    assert _leftovers(voices_dir) == []


@pytest.mark.anyio
async def test_ingest_empty_transcript_is_an_error(
    voices_dir: Path, fake_ffmpeg: str
) -> None:
    ingestor = _ingestor(voices_dir, fake_ffmpeg, transcriber=FakeTranscriber(text="  "))

    result = await ingestor.ingest(
        VoiceRequest(source_url="https://files.test/voice/1.oga", requester_id="1")
    )

    assert result.error_kind == "TranscriptionError"
    assert _leftovers(voices_dir) == []


@pytest.mark.anyio
async def test_ingest_timeout_reports_running_stage(
    voices_dir: Path, fake_ffmpeg: str
) -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        await anyio.sleep(10)
        return httpx.Response(200, content=b"late")

    ingestor = _ingestor(voices_dir, fake_ffmpeg, handler=handler, timeout_s=0.1)

    result = await ingestor.ingest(
        VoiceRequest(source_url="https://files.test/voice/1.oga", requester_id="1")
    )

    assert result.error_kind == "FetchError"
    assert "timed out while fetching" in str(result.error)
    assert _leftovers(voices_dir) == []


@pytest.mark.anyio
async def test_concurrent_requesters_do_not_mix(voices_dir: Path, fake_ffmpeg: str) -> None:
    ingestor = _ingestor(voices_dir, fake_ffmpeg)
    results = {}

    async def run(requester_id: str) -> None:
        results[requester_id] = await ingestor.ingest(
            VoiceRequest(
                source_url=f"https://files.test/voice/{requester_id}.oga",
                requester_id=requester_id,
            )
        )

    async with anyio.create_task_group() as tg:
        tg.start_soon(run, "1")
        tg.start_soon(run, "2")

    assert results["1"].text == "heard good morning"
    assert results["2"].text == "heard good night"
    assert _leftovers(voices_dir) == []


@pytest.mark.anyio
async def test_same_requester_overlapping_requests_are_isolated(
    voices_dir: Path, fake_ffmpeg: str
) -> None:
    ingestor = _ingestor(voices_dir, fake_ffmpeg)
    first = VoiceRequest(source_url="https://files.test/voice/1.oga", requester_id="9")
    second = VoiceRequest(source_url="https://files.test/voice/2.oga", requester_id="9")

    assert ingestor.new_job(first).source_path != ingestor.new_job(second).source_path

    results = []

    async def run(request: VoiceRequest) -> None:
        results.append((request.source_url, await ingestor.ingest(request)))

    async with anyio.create_task_group() as tg:
        tg.start_soon(run, first)
        tg.start_soon(run, second)

    texts = {url: result.text for url, result in results}
    assert texts == {
        "https://files.test/voice/1.oga": "heard good morning",
        "https://files.test/voice/2.oga": "heard good night",
    }


def test_new_job_starts_idle(voices_dir: Path) -> None:
    ingestor = _ingestor(voices_dir, "ffmpeg")
    request = VoiceRequest(source_url="https://files.test/voice/1.oga", requester_id="5")

    job = ingestor.new_job(request)

    assert job.state is JobState.IDLE
    assert job.source_path.suffix == ".ogg"
    assert job.target_path.suffix == ".mp3"
    assert job.source_path.stem == job.target_path.stem
