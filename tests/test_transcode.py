import shutil
import subprocess
import wave
from pathlib import Path

import pytest

from tests.fakes import posix_only
from voxrelay.errors import TranscodeError
from voxrelay.voice.transcode import Transcoder


def test_build_args_truncates_input() -> None:
    transcoder = Transcoder(ffmpeg_cmd="ffmpeg")

    args = transcoder.build_args(Path("in.ogg"), Path("out.mp3"))

    assert args[0] == "ffmpeg"
    assert args[args.index("-t") + 1] == "30"
    assert args.index("-t") < args.index("-i")
    assert args[-2:] == ["in.ogg", "out.mp3"]


def test_build_args_duration_override() -> None:
    transcoder = Transcoder()

    args = transcoder.build_args(Path("in.ogg"), Path("out.mp3"), max_duration_s=12.5)

    assert args[args.index("-t") + 1] == "12.500"


@posix_only
@pytest.mark.anyio
async def test_transcode_success_removes_source(tmp_path: Path, fake_ffmpeg: str) -> None:
    source = tmp_path / "42.ogg"
    source.write_text("voice")
    transcoder = Transcoder(ffmpeg_cmd=fake_ffmpeg)

    target = await transcoder.transcode(source)

    assert target == tmp_path / "42.mp3"
    assert target.read_text() == "voice"
    assert not source.exists()


@posix_only
@pytest.mark.anyio
async def test_transcode_failure_keeps_source(tmp_path: Path, failing_ffmpeg: str) -> None:
    source = tmp_path / "42.ogg"
    source.write_text("not audio")
    transcoder = Transcoder(ffmpeg_cmd=failing_ffmpeg)

    with pytest.raises(TranscodeError, match="Invalid data found"):
        await transcoder.transcode(source, tmp_path / "42.mp3")

    assert source.exists()
    assert not (tmp_path / "42.mp3").exists()


@pytest.mark.anyio
async def test_transcode_missing_binary(tmp_path: Path) -> None:
    source = tmp_path / "42.ogg"
    source.write_text("voice")
    transcoder = Transcoder(ffmpeg_cmd=str(tmp_path / "no-such-ffmpeg"))

    with pytest.raises(TranscodeError, match="not found"):
        await transcoder.transcode(source)

    assert source.exists()


@posix_only
@pytest.mark.anyio
async def test_transcode_unrunnable_binary(tmp_path: Path) -> None:
    source = tmp_path / "42.ogg"
    source.write_text("voice")
    broken = tmp_path / "ffmpeg-broken"
    broken.write_bytes(b"\x00\x01\x02 not an executable format")
    broken.chmod(0o755)
    transcoder = Transcoder(ffmpeg_cmd=str(broken))

    with pytest.raises(TranscodeError, match="cannot run"):
        await transcoder.transcode(source)

    assert source.exists()


@pytest.mark.skipif(shutil.which("ffmpeg") is None, reason="ffmpeg not installed")
@pytest.mark.anyio
async def test_transcode_truncates_long_audio(tmp_path: Path) -> None:
    source = tmp_path / "long.wav"
    subprocess.run(
        [
            "ffmpeg",
            "-hide_banner",
            "-loglevel",
            "error",
            "-y",
            "-f",
            "lavfi",
            "-i",
            "sine=frequency=440:duration=40",
            "-ac",
            "1",
            "-ar",
            "16000",
            str(source),
        ],
        check=True,
    )
    transcoder = Transcoder(output_ext="wav")

    target = await transcoder.transcode(source, tmp_path / "short.wav")

    with wave.open(str(target)) as wav:
        duration = wav.getnframes() / wav.getframerate()
    assert 29.0 < duration <= 30.05
    assert not source.exists()
