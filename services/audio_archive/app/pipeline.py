"""Upload, replace and delete pipelines for audio assets.

Each pipeline is a short sequence of awaited backend calls. The ordering is
the contract: a new asset is always stored and resolvable before an old one
is removed, and an asset is always removed before the record pointing at it.
Nothing is retried and nothing is rolled back; partial failures leave the
orphans described on each method.
"""

from __future__ import annotations

import re
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator

from src.common.logging import get_logger
from src.common.metrics import JOB_DURATION, PIPELINE_FAILURES

from .duration import extract_duration_async
from .errors import ArchiveError, InvalidUploadError, OwnershipError
from .records import AudioRecord, MetadataStore
from .sessions import Identity
from .storage import ObjectStore, key_from_url, object_key

logger = get_logger(__name__)

SERVICE_NAME = "audio_archive"

_EXTENSION = re.compile(r"\.[^/.]+$")


@dataclass(frozen=True)
class CandidateFile:
    """An audio file as received from the client."""

    filename: str
    content_type: str
    data: bytes

    @property
    def suggested_title(self) -> str:
        """The file name without its last extension."""

        return _EXTENSION.sub("", self.filename)


@dataclass(frozen=True)
class PreparedAudio:
    """A candidate whose duration is known."""

    candidate: CandidateFile
    duration: int


def ensure_audio(candidate: CandidateFile) -> None:
    if not (candidate.content_type or "").startswith("audio/"):
        raise InvalidUploadError("Please select an audio file")


async def prepare(candidate: CandidateFile) -> PreparedAudio:
    """Check the media type and extract the duration; raises ``DecodeError``."""

    ensure_audio(candidate)
    duration = await extract_duration_async(candidate.data, candidate.filename)
    return PreparedAudio(candidate=candidate, duration=duration)


def resolve_title(title: str | None, candidate: CandidateFile | None = None) -> str:
    """Trimmed title, auto-filled from the file name when left blank."""

    resolved = (title or "").strip()
    if not resolved and candidate is not None:
        resolved = candidate.suggested_title.strip()
    if not resolved:
        raise InvalidUploadError("Please enter a title")
    return resolved


class AudioPipeline:
    """Orchestrates the object store and metadata store for one request."""

    def __init__(self, records: MetadataStore, objects: ObjectStore) -> None:
        self.records = records
        self.objects = objects

    @contextmanager
    def _step(self, pipeline: str, step: str) -> Iterator[None]:
        try:
            yield
        except ArchiveError:
            PIPELINE_FAILURES.labels(SERVICE_NAME, pipeline, step).inc()
            raise

    @staticmethod
    @contextmanager
    def _timed(pipeline: str) -> Iterator[None]:
        """Time a whole pipeline run, failed runs included."""

        start = time.monotonic()
        try:
            yield
        finally:
            JOB_DURATION.labels(SERVICE_NAME, pipeline).observe(time.monotonic() - start)

    async def _store_asset(self, pipeline: str, candidate: CandidateFile) -> tuple[str, str]:
        key = object_key(candidate.filename)
        with self._step(pipeline, "upload"):
            await self.objects.upload(key, candidate.data, candidate.content_type)
        logger.info("asset.uploaded", pipeline=pipeline, key=key, size=len(candidate.data))
        return key, self.objects.public_url(key)

    async def upload(
        self, prepared: PreparedAudio, title: str | None, identity: Identity
    ) -> AudioRecord:
        """Store a new asset and create its record.

        If the insert fails the uploaded asset stays in the store without a
        record.
        """

        with self._timed("upload"):
            candidate = prepared.candidate
            ensure_audio(candidate)
            resolved_title = resolve_title(title, candidate)
            key, file_url = await self._store_asset("upload", candidate)
            try:
                with self._step("upload", "insert"):
                    record = await self.records.insert(
                        title=resolved_title,
                        file_url=file_url,
                        duration=prepared.duration,
                        uploaded_by=identity.id,
                    )
            except ArchiveError:
                logger.warning("asset.orphaned", pipeline="upload", key=key)
                raise
            logger.info(
                "audio.created", record_id=record.id, key=key, duration=record.duration
            )
            return record

    async def _load_owned(self, record_id: str, identity: Identity) -> AudioRecord:
        record = await self.records.get(record_id)
        if not record.is_owned_by(identity.id):
            raise OwnershipError(f"{identity.id} does not own audio file {record_id}")
        return record

    async def replace(
        self,
        record_id: str,
        title: str | None,
        identity: Identity,
        prepared: PreparedAudio | None = None,
    ) -> AudioRecord:
        """Rename a record and optionally swap its asset.

        Without ``prepared`` this is a single metadata update. With it, the new
        asset is stored first, the old one is removed best-effort (a failure is
        logged and leaves the old asset behind), and the title, URL and
        duration are written together.
        """

        with self._timed("replace"):
            record = await self._load_owned(record_id, identity)
            changes: dict[str, Any] = {"title": resolve_title(title)}
            if prepared is not None:
                ensure_audio(prepared.candidate)
                _, file_url = await self._store_asset("replace", prepared.candidate)
                old_key = key_from_url(record.file_url)
                try:
                    with self._step("replace", "remove_old"):
                        await self.objects.remove([old_key])
                except ArchiveError:
                    logger.exception("asset.orphaned", pipeline="replace", key=old_key)
                changes["file_url"] = file_url
                changes["duration"] = prepared.duration
            with self._step("replace", "update"):
                updated = await self.records.update(record.id, changes)
            logger.info(
                "audio.updated", record_id=record.id, replaced_asset=prepared is not None
            )
            return updated

    async def delete(self, record_id: str, identity: Identity) -> None:
        """Remove the asset, then the record.

        A storage failure aborts with the record intact. If the record delete
        fails afterwards, the record is left pointing at a removed asset.
        """

        with self._timed("delete"):
            record = await self._load_owned(record_id, identity)
            key = key_from_url(record.file_url)
            with self._step("delete", "remove"):
                removed = await self.objects.remove([key])
            if key not in removed:
                logger.warning("asset.already_absent", record_id=record.id, key=key)
            try:
                with self._step("delete", "delete_record"):
                    await self.records.delete(record.id)
            except ArchiveError:
                logger.warning("record.dangling", record_id=record.id, key=key)
                raise
            logger.info("audio.deleted", record_id=record.id, key=key)
