from pathlib import Path

from voxrelay.voice.tempfiles import TransientFileStore


def test_allocate_path_is_scoped_to_requester(voices_dir: Path) -> None:
    files = TransientFileStore(voices_dir)

    path = files.allocate_path("42", "ogg")

    assert path == voices_dir / "42.ogg"
    assert voices_dir.is_dir()


def test_allocate_path_with_request_token(voices_dir: Path) -> None:
    files = TransientFileStore(voices_dir)

    first = files.allocate_path("42", "mp3", "aaa")
    second = files.allocate_path("42", "mp3", "bbb")

    assert first.name == "42-aaa.mp3"
    assert first != second


def test_allocate_path_sanitizes_requester(voices_dir: Path) -> None:
    files = TransientFileStore(voices_dir)

    path = files.allocate_path("../etc/passwd", ".ogg")

    assert path.parent == voices_dir
    assert path.name == "etc_passwd.ogg"


def test_release_is_idempotent(voices_dir: Path) -> None:
    files = TransientFileStore(voices_dir)
    path = files.allocate_path("7", "ogg")
    path.write_bytes(b"data")

    files.release(path)
    files.release(path)

    assert not path.exists()


def test_release_swallows_os_errors(voices_dir: Path) -> None:
    files = TransientFileStore(voices_dir)
    directory = files.allocate_path("7", "ogg")
    directory.mkdir()

    files.release(directory)

    assert directory.exists()
