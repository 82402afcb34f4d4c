from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, EmailStr


class AudioFileResponse(BaseModel):
    id: str
    title: str
    file_url: str
    duration: int
    duration_label: str
    uploaded_by: str
    created_at: datetime
    uploaded_label: str
    can_edit: bool = False


class AudioPageResponse(BaseModel):
    items: list[AudioFileResponse]
    page: int
    page_size: int
    page_size_choices: list[int]
    total: int
    total_pages: int
    has_previous: bool
    has_next: bool
    first_index: int
    last_index: int


class ProbeResponse(BaseModel):
    filename: str
    content_type: str
    title: str
    duration: int
    duration_label: str


class LoginRequest(BaseModel):
    email: EmailStr


class MessageResponse(BaseModel):
    message: str


class SessionResponse(BaseModel):
    signed_in: bool
    id: str | None = None
    email: str | None = None
    display_name: str | None = None
