"""Extract the play length of an uploaded audio blob."""

from __future__ import annotations

import asyncio
import math
import tempfile
from pathlib import PurePath

import mutagen
from mutagen import MutagenError

from src.common.logging import get_logger

from .errors import DecodeError

logger = get_logger(__name__)


def round_seconds(length: float) -> int:
    """Round half up, so 2.5 s becomes 3 s."""

    return int(math.floor(length + 0.5))


def extract_duration(data: bytes, filename: str = "") -> int:
    """Return the duration of ``data`` in whole seconds.

    The blob is written to a throwaway temporary file which is removed on both
    the success and the failure path. Raises :class:`DecodeError` when the
    bytes are empty, in an unknown format, or carry no usable length.
    """

    if not data:
        raise DecodeError("empty audio file")
    suffix = PurePath(filename).suffix.lower() if filename else ""
    with tempfile.NamedTemporaryFile(suffix=suffix) as handle:
        handle.write(data)
        handle.flush()
        try:
            audio = mutagen.File(handle.name)
        except (MutagenError, OSError, ValueError) as exc:
            raise DecodeError(f"cannot parse audio metadata: {exc}") from exc
    if audio is None or audio.info is None:
        raise DecodeError("unsupported audio format")
    length = getattr(audio.info, "length", None)
    if length is None or not math.isfinite(length) or length < 0:
        raise DecodeError("audio metadata carries no duration")
    seconds = round_seconds(length)
    logger.debug("duration.extracted", filename=filename, seconds=seconds)
    return seconds


async def extract_duration_async(data: bytes, filename: str = "") -> int:
    """Run :func:`extract_duration` in a worker thread."""

    return await asyncio.to_thread(extract_duration, data, filename)


def format_duration(seconds: int) -> str:
    """Render seconds as ``m:ss``."""

    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}:{secs:02d}"
