"""Metadata store clients for the ``audio_files`` record type."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Protocol

import httpx
from opentelemetry import trace
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError

from src.common.db import get_session

from . import models
from .errors import MetadataReadError, MetadataWriteError, RecordNotFoundError

_tracer = trace.get_tracer(__name__)


@dataclass(frozen=True)
class AudioRecord:
    """One row of ``audio_files``."""

    id: str
    title: str
    file_url: str
    duration: int
    uploaded_by: str
    created_at: datetime

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "AudioRecord":
        created_at = row["created_at"]
        if isinstance(created_at, str):
            created_at = datetime.fromisoformat(created_at)
        return cls(
            id=str(row["id"]),
            title=row["title"],
            file_url=row["file_url"],
            duration=int(row["duration"]),
            uploaded_by=str(row["uploaded_by"]),
            created_at=_aware(created_at),
        )

    def is_owned_by(self, user_id: str | None) -> bool:
        return user_id is not None and self.uploaded_by == user_id


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


class MetadataStore(Protocol):
    """Operations the pipelines and views need from the metadata backend."""

    async def list_page(self, offset: int, limit: int) -> tuple[list[AudioRecord], int]:
        """Return records ``offset..offset+limit-1`` newest first and the total count."""

    async def get(self, record_id: str) -> AudioRecord:
        ...

    async def insert(
        self, *, title: str, file_url: str, duration: int, uploaded_by: str
    ) -> AudioRecord:
        ...

    async def update(self, record_id: str, changes: dict[str, Any]) -> AudioRecord:
        ...

    async def delete(self, record_id: str) -> None:
        ...


def _parse_total(content_range: str | None, fallback: int) -> int:
    """Read the total from a ``Content-Range`` header such as ``0-9/23``."""

    if not content_range or "/" not in content_range:
        return fallback
    total = content_range.rsplit("/", 1)[1]
    return int(total) if total.isdigit() else fallback


class HostedMetadataStore:
    """Client for the hosted backend's REST table endpoint."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        api_key: str,
        table: str = "audio_files",
        access_token: str | None = None,
    ) -> None:
        self._client = client
        self._api_key = api_key
        self._path = f"/rest/v1/{table}"
        self._access_token = access_token

    def _headers(self, **extra: str) -> dict[str, str]:
        headers = {
            "apikey": self._api_key,
            "Authorization": f"Bearer {self._access_token or self._api_key}",
        }
        headers.update(extra)
        return headers

    async def _send(
        self,
        method: str,
        *,
        error: type[MetadataReadError] | type[MetadataWriteError],
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
        json: Any = None,
        ok_statuses: tuple[int, ...] = (),
    ) -> httpx.Response:
        with _tracer.start_as_current_span(f"metadata.{method.lower()}"):
            try:
                response = await self._client.request(
                    method,
                    self._path,
                    params=params,
                    headers=self._headers(**(headers or {})),
                    json=json,
                )
            except httpx.HTTPError as exc:
                raise error(f"metadata store unreachable: {exc}") from exc
        if response.is_error and response.status_code not in ok_statuses:
            raise error(
                f"metadata store returned {response.status_code}: {response.text}"
            )
        return response

    async def list_page(self, offset: int, limit: int) -> tuple[list[AudioRecord], int]:
        response = await self._send(
            "GET",
            error=MetadataReadError,
            params={"select": "*", "order": "created_at.desc"},
            headers={
                "Range-Unit": "items",
                "Range": f"{offset}-{offset + limit - 1}",
                "Prefer": "count=exact",
            },
            # Past the last row the backend answers 416 with the total still set.
            ok_statuses=(416,),
        )
        rows = [] if response.status_code == 416 else response.json()
        records = [AudioRecord.from_row(row) for row in rows]
        total = _parse_total(response.headers.get("content-range"), len(records))
        return records, total

    async def get(self, record_id: str) -> AudioRecord:
        response = await self._send(
            "GET",
            error=MetadataReadError,
            params={"select": "*", "id": f"eq.{record_id}"},
        )
        rows = response.json()
        if not rows:
            raise RecordNotFoundError(f"audio file {record_id} not found")
        return AudioRecord.from_row(rows[0])

    async def insert(
        self, *, title: str, file_url: str, duration: int, uploaded_by: str
    ) -> AudioRecord:
        response = await self._send(
            "POST",
            error=MetadataWriteError,
            headers={"Prefer": "return=representation"},
            json={
                "title": title,
                "file_url": file_url,
                "duration": duration,
                "uploaded_by": uploaded_by,
            },
        )
        rows = response.json()
        if not rows:
            raise MetadataWriteError("insert returned no row")
        return AudioRecord.from_row(rows[0])

    async def update(self, record_id: str, changes: dict[str, Any]) -> AudioRecord:
        response = await self._send(
            "PATCH",
            error=MetadataWriteError,
            params={"id": f"eq.{record_id}"},
            headers={"Prefer": "return=representation"},
            json=changes,
        )
        rows = response.json()
        if not rows:
            raise MetadataWriteError(f"audio file {record_id} was not updated")
        return AudioRecord.from_row(rows[0])

    async def delete(self, record_id: str) -> None:
        response = await self._send(
            "DELETE",
            error=MetadataWriteError,
            params={"id": f"eq.{record_id}"},
            headers={"Prefer": "return=representation"},
        )
        if not response.json():
            raise MetadataWriteError(f"audio file {record_id} was not deleted")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_record(row: models.AudioFile) -> AudioRecord:
    return AudioRecord(
        id=row.id,
        title=row.title,
        file_url=row.file_url,
        duration=row.duration,
        uploaded_by=row.uploaded_by,
        created_at=_aware(row.created_at),
    )


class SqlMetadataStore:
    """Local metadata backend on the shared async SQLAlchemy engine."""

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock

    async def list_page(self, offset: int, limit: int) -> tuple[list[AudioRecord], int]:
        stmt = (
            select(models.AudioFile)
            .order_by(models.AudioFile.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        try:
            async with get_session() as session:
                rows = list(await session.scalars(stmt))
                total = await session.scalar(
                    select(func.count()).select_from(models.AudioFile)
                )
        except SQLAlchemyError as exc:
            raise MetadataReadError(str(exc)) from exc
        return [_to_record(row) for row in rows], int(total or 0)

    async def get(self, record_id: str) -> AudioRecord:
        try:
            async with get_session() as session:
                row = await session.get(models.AudioFile, record_id)
        except SQLAlchemyError as exc:
            raise MetadataReadError(str(exc)) from exc
        if row is None:
            raise RecordNotFoundError(f"audio file {record_id} not found")
        return _to_record(row)

    async def insert(
        self, *, title: str, file_url: str, duration: int, uploaded_by: str
    ) -> AudioRecord:
        row = models.AudioFile(
            id=str(uuid.uuid4()),
            title=title,
            file_url=file_url,
            duration=duration,
            uploaded_by=uploaded_by,
            created_at=self._clock(),
        )
        try:
            async with get_session() as session:
                session.add(row)
                await session.commit()
        except SQLAlchemyError as exc:
            raise MetadataWriteError(str(exc)) from exc
        return _to_record(row)

    async def update(self, record_id: str, changes: dict[str, Any]) -> AudioRecord:
        try:
            async with get_session() as session:
                row = await session.get(models.AudioFile, record_id)
                if row is None:
                    raise MetadataWriteError(f"audio file {record_id} was not updated")
                for key, value in changes.items():
                    setattr(row, key, value)
                await session.commit()
        except SQLAlchemyError as exc:
            raise MetadataWriteError(str(exc)) from exc
        return _to_record(row)

    async def delete(self, record_id: str) -> None:
        try:
            async with get_session() as session:
                result = await session.execute(
                    delete(models.AudioFile).where(models.AudioFile.id == record_id)
                )
                await session.commit()
        except SQLAlchemyError as exc:
            raise MetadataWriteError(str(exc)) from exc
        if not result.rowcount:
            raise MetadataWriteError(f"audio file {record_id} was not deleted")
