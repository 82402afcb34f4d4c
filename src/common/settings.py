"""Application settings loaded from environment variables."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings
from pydantic._internal._model_construction import ModelMetaclass


class SettingsMeta(ModelMetaclass):
    """Metaclass to allow overriding fields without type annotations."""

    def __new__(mcls, name, bases, namespace, **kwargs):  # type: ignore[override]
        annotations = dict(namespace.get("__annotations__", {}))
        for base in bases:
            for field, ann in getattr(base, "__annotations__", {}).items():
                if field in namespace and field not in annotations:
                    annotations[field] = ann
        namespace["__annotations__"] = annotations
        return super().__new__(mcls, name, bases, namespace, **kwargs)


class Settings(BaseSettings, metaclass=SettingsMeta):
    """Process-wide settings shared by every service."""

    # Defaults let tests import modules without a configured environment.
    database_url: str = Field(
        "sqlite+aiosqlite:///./audio_archive.db", alias="DATABASE_URL"
    )
    otel_exporter_otlp_endpoint: str | None = Field(
        default=None, alias="OTEL_EXPORTER_OTLP_ENDPOINT"
    )
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    model_config = {
        "env_file": ".env",
        "extra": "ignore",
        "case_sensitive": False,
        "populate_by_name": True,
    }


settings = Settings()
"""Singleton instance of :class:`Settings`."""
