import io
import wave
from typing import Callable

import pytest

from src.common import db
from src.common import settings as common_settings
from src.common.settings import Settings


def _make_wav(seconds: float, framerate: int = 1000) -> bytes:
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as out:
        out.setnchannels(1)
        out.setsampwidth(1)
        out.setframerate(framerate)
        out.writeframes(b"\x80" * int(round(seconds * framerate)))
    return buffer.getvalue()


@pytest.fixture()
def make_wav() -> Callable[..., bytes]:
    return _make_wav


@pytest.fixture()
def database(tmp_path, monkeypatch: pytest.MonkeyPatch) -> str:
    url = f"sqlite+aiosqlite:///{tmp_path / 'archive.db'}"

    class TestSettings(Settings):
        database_url: str = url

    monkeypatch.setattr(common_settings, "settings", TestSettings())
    monkeypatch.setattr(db, "_engine", None)
    monkeypatch.setattr(db, "_sessionmaker", None)
    return url
