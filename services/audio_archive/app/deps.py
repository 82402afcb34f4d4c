from __future__ import annotations

import asyncio
from functools import lru_cache
from pathlib import Path
from typing import Literal

import httpx
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import model_validator
from pydantic_settings import BaseSettings

from src.common import db
from src.common.settings import SettingsMeta

from .pagination import DEFAULT_PAGE_SIZE
from .pipeline import AudioPipeline
from .records import HostedMetadataStore, MetadataStore, SqlMetadataStore
from .sessions import (
    HostedSessionProvider,
    Identity,
    LocalSessionProvider,
    SessionProvider,
)
from .storage import HostedObjectStore, LocalObjectStore, ObjectStore

LOCAL_JWT_SECRET = "local-development-jwt-secret-change-me"


class Settings(BaseSettings, metaclass=SettingsMeta):
    """Application settings."""

    backend: Literal["hosted", "local"] = "local"
    backend_url: str = "http://localhost:54321"
    backend_anon_key: str = ""
    backend_jwt_secret: str = LOCAL_JWT_SECRET
    storage_bucket: str = "audio"
    metadata_table: str = "audio_files"
    storage_dir: str = "data/storage"
    public_base_url: str = "http://localhost:8000"
    link_ttl_sec: int = 3600
    default_page_size: int = DEFAULT_PAGE_SIZE
    request_timeout: float = 30.0
    migrate_on_startup: bool = False

    model_config = {"env_file": ".env", "extra": "ignore"}

    @model_validator(mode="after")
    def _require_hosted_secret(self) -> Settings:
        if self.backend == "hosted" and self.backend_jwt_secret in ("", LOCAL_JWT_SECRET):
            raise ValueError("BACKEND_JWT_SECRET must be set when BACKEND=hosted")
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()


class Backend:
    """Clients for the configured backend, shared across requests."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.http: httpx.AsyncClient | None = None
        self.local_objects: LocalObjectStore | None = None
        self.sessions: SessionProvider
        if settings.backend == "hosted":
            self.http = httpx.AsyncClient(
                base_url=settings.backend_url, timeout=settings.request_timeout
            )
            self.sessions = HostedSessionProvider(
                self.http,
                api_key=settings.backend_anon_key,
                jwt_secret=settings.backend_jwt_secret,
            )
        else:
            self.local_objects = LocalObjectStore(
                Path(settings.storage_dir),
                public_base_url=settings.public_base_url,
                bucket=settings.storage_bucket,
            )
            self._local_records = SqlMetadataStore()
            self.sessions = LocalSessionProvider(
                jwt_secret=settings.backend_jwt_secret,
                link_ttl_sec=settings.link_ttl_sec,
            )

    @property
    def is_local(self) -> bool:
        return self.http is None

    def records(self, access_token: str | None = None) -> MetadataStore:
        if self.http is None:
            return self._local_records
        return HostedMetadataStore(
            self.http,
            api_key=self.settings.backend_anon_key,
            table=self.settings.metadata_table,
            access_token=access_token,
        )

    def objects(self, access_token: str | None = None) -> ObjectStore:
        if self.local_objects is not None:
            return self.local_objects
        assert self.http is not None
        return HostedObjectStore(
            self.http,
            api_key=self.settings.backend_anon_key,
            bucket=self.settings.storage_bucket,
            access_token=access_token,
        )

    async def start(self) -> None:
        if self.local_objects is not None:
            self.local_objects.ensure_dir()
            if self.settings.migrate_on_startup:
                await asyncio.to_thread(db.run_migrations)
            else:
                await db.create_all()

    async def close(self) -> None:
        if self.http is not None:
            await self.http.aclose()
        else:
            await db.dispose_engine()


_backend: Backend | None = None


def get_backend() -> Backend:
    global _backend
    if _backend is None:
        _backend = Backend(get_settings())
    return _backend


async def close_backend() -> None:
    global _backend
    if _backend is not None:
        await _backend.close()
    _backend = None


security = HTTPBearer(auto_error=False)


def get_access_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> str | None:
    return credentials.credentials if credentials else None


def get_identity(
    token: str | None = Depends(get_access_token),
    backend: Backend = Depends(get_backend),
) -> Identity | None:
    if not token:
        return None
    return backend.sessions.resolve(token)


def require_identity(identity: Identity | None = Depends(get_identity)) -> Identity:
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Sign in required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity


def get_pipeline(
    token: str | None = Depends(get_access_token),
    backend: Backend = Depends(get_backend),
) -> AudioPipeline:
    return AudioPipeline(backend.records(token), backend.objects(token))
