"""Database models for the local metadata backend."""

from __future__ import annotations

from sqlalchemy import Column, DateTime, Integer, String, Text

from src.common.db import Base


class AudioFile(Base):
    __tablename__ = "audio_files"

    id = Column(String(36), primary_key=True)
    title = Column(String(255), nullable=False)
    file_url = Column(Text, nullable=False)
    duration = Column(Integer, nullable=False)
    uploaded_by = Column(String(64), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
