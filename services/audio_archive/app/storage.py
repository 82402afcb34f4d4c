"""Object store clients for the ``audio`` bucket."""

from __future__ import annotations

import asyncio
from pathlib import Path, PurePosixPath
from typing import Protocol
from urllib.parse import quote, unquote, urlsplit

import httpx
from opentelemetry import trace

from src.common.logging import get_logger

from .errors import InvalidUploadError, StorageDeleteError, StorageWriteError

logger = get_logger(__name__)
_tracer = trace.get_tracer(__name__)

CACHE_CONTROL_SECONDS = 3600


def object_key(filename: str) -> str:
    """Storage key for an uploaded file: its base name."""

    key = PurePosixPath(filename.replace("\\", "/")).name
    if key in {"", ".", ".."}:
        raise InvalidUploadError(f"Cannot store a file named {filename!r}")
    return key


def key_from_url(file_url: str) -> str:
    """Recover the storage key from a public retrieval URL."""

    return unquote(urlsplit(file_url).path.rsplit("/", 1)[-1])


class ObjectStore(Protocol):
    """Operations the pipelines need from the object backend."""

    async def upload(self, key: str, data: bytes, content_type: str) -> None:
        """Store ``data`` under ``key``; never overwrite an existing object."""

    def public_url(self, key: str) -> str:
        ...

    async def remove(self, keys: list[str]) -> list[str]:
        """Delete ``keys`` and return the ones that were actually removed."""


class HostedObjectStore:
    """Client for the hosted backend's storage API."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        api_key: str,
        bucket: str = "audio",
        access_token: str | None = None,
    ) -> None:
        self._client = client
        self._api_key = api_key
        self._bucket = bucket
        self._access_token = access_token

    def _headers(self, **extra: str) -> dict[str, str]:
        headers = {
            "apikey": self._api_key,
            "Authorization": f"Bearer {self._access_token or self._api_key}",
        }
        headers.update(extra)
        return headers

    async def upload(self, key: str, data: bytes, content_type: str) -> None:
        path = f"/storage/v1/object/{self._bucket}/{quote(key)}"
        with _tracer.start_as_current_span("storage.upload"):
            try:
                response = await self._client.post(
                    path,
                    content=data,
                    headers=self._headers(
                        **{
                            "content-type": content_type,
                            "cache-control": f"max-age={CACHE_CONTROL_SECONDS}",
                            "x-upsert": "false",
                        }
                    ),
                )
            except httpx.HTTPError as exc:
                raise StorageWriteError(f"object store unreachable: {exc}") from exc
        if response.is_error:
            raise StorageWriteError(
                f"upload of {key!r} rejected with {response.status_code}: {response.text}"
            )

    def public_url(self, key: str) -> str:
        base = str(self._client.base_url).rstrip("/")
        return f"{base}/storage/v1/object/public/{self._bucket}/{quote(key)}"

    async def remove(self, keys: list[str]) -> list[str]:
        with _tracer.start_as_current_span("storage.remove"):
            try:
                response = await self._client.request(
                    "DELETE",
                    f"/storage/v1/object/{self._bucket}",
                    json={"prefixes": keys},
                    headers=self._headers(),
                )
            except httpx.HTTPError as exc:
                raise StorageDeleteError(f"object store unreachable: {exc}") from exc
        if response.is_error:
            raise StorageDeleteError(
                f"removal of {keys!r} rejected with {response.status_code}: {response.text}"
            )
        return [item["name"] for item in response.json()]


class LocalObjectStore:
    """Object backend on the local filesystem, served under ``/storage``."""

    def __init__(self, root: Path, *, public_base_url: str, bucket: str = "audio") -> None:
        self._dir = Path(root) / bucket
        self._bucket = bucket
        self._public_base_url = public_base_url.rstrip("/")

    @property
    def directory(self) -> Path:
        return self._dir

    def ensure_dir(self) -> Path:
        self._dir.mkdir(parents=True, exist_ok=True)
        return self._dir

    def _write(self, key: str, data: bytes) -> None:
        self.ensure_dir()
        # "x" mode fails if the object exists, which is the no-overwrite rule.
        with (self._dir / key).open("xb") as out:
            out.write(data)

    async def upload(self, key: str, data: bytes, content_type: str) -> None:
        with _tracer.start_as_current_span("storage.upload"):
            try:
                await asyncio.to_thread(self._write, key, data)
            except FileExistsError as exc:
                raise StorageWriteError(f"object {key!r} already exists") from exc
            except OSError as exc:
                raise StorageWriteError(f"cannot write {key!r}: {exc}") from exc

    def public_url(self, key: str) -> str:
        return f"{self._public_base_url}/storage/{self._bucket}/{quote(key)}"

    def _unlink(self, keys: list[str]) -> list[str]:
        removed = []
        for key in keys:
            try:
                (self._dir / object_key(key)).unlink()
            except FileNotFoundError:
                logger.warning("storage.remove.missing", key=key)
                continue
            removed.append(key)
        return removed

    async def remove(self, keys: list[str]) -> list[str]:
        with _tracer.start_as_current_span("storage.remove"):
            try:
                return await asyncio.to_thread(self._unlink, keys)
            except (OSError, InvalidUploadError) as exc:
                raise StorageDeleteError(f"cannot remove {keys!r}: {exc}") from exc
