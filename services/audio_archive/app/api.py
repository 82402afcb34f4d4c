from __future__ import annotations

from fastapi import (
    APIRouter,
    Cookie,
    Depends,
    File,
    Form,
    HTTPException,
    Query,
    Response,
    UploadFile,
    status,
)
from fastapi.responses import FileResponse

from src.common.logging import get_logger

from . import deps, schemas
from .duration import format_duration
from .errors import (
    ArchiveError,
    DecodeError,
    InvalidUploadError,
    OwnershipError,
    RecordNotFoundError,
)
from .pagination import PAGE_SIZE_CHOICES, PAGE_SIZE_COOKIE, PageInfo, parse_page_size
from .pipeline import AudioPipeline, CandidateFile, PreparedAudio, prepare
from .records import AudioRecord
from .sessions import Identity
from .storage import object_key

logger = get_logger(__name__)

router = APIRouter()

PAGE_SIZE_COOKIE_MAX_AGE = 365 * 24 * 3600

_STATUS_BY_ERROR: tuple[tuple[type[ArchiveError], int, str | None], ...] = (
    (RecordNotFoundError, status.HTTP_404_NOT_FOUND, "Audio file not found"),
    (OwnershipError, status.HTTP_403_FORBIDDEN, "Only the owner can change this audio file"),
    (InvalidUploadError, status.HTTP_400_BAD_REQUEST, None),
    (DecodeError, status.HTTP_422_UNPROCESSABLE_ENTITY, None),
)


def _http_error(exc: ArchiveError, message: str) -> HTTPException:
    """Log a pipeline failure and turn it into a short user-facing error."""

    logger.exception(message, error_type=type(exc).__name__, error=str(exc))
    for error_type, status_code, detail in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            if detail is None:
                detail = str(exc) if isinstance(exc, InvalidUploadError) else message
            return HTTPException(status_code=status_code, detail=detail)
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=message)


def _record_out(record: AudioRecord, identity: Identity | None) -> schemas.AudioFileResponse:
    created = record.created_at
    return schemas.AudioFileResponse(
        id=record.id,
        title=record.title,
        file_url=record.file_url,
        duration=record.duration,
        duration_label=format_duration(record.duration),
        uploaded_by=record.uploaded_by,
        created_at=created,
        uploaded_label=f"{created:%B} {created.day}, {created.year}",
        can_edit=record.is_owned_by(identity.id if identity else None),
    )


async def _read_candidate(file: UploadFile) -> CandidateFile:
    data = await file.read()
    return CandidateFile(
        filename=file.filename or "",
        content_type=file.content_type or "",
        data=data,
    )


async def _prepare_or_fail(file: UploadFile) -> PreparedAudio:
    candidate = await _read_candidate(file)
    try:
        return await prepare(candidate)
    except ArchiveError as exc:
        raise _http_error(exc, "Failed to extract audio duration") from exc


@router.get("/audio", response_model=schemas.AudioPageResponse)
async def list_audio(
    response: Response,
    page: int = Query(1, ge=1),
    page_size: int | None = Query(None),
    stored_page_size: str | None = Cookie(None, alias=PAGE_SIZE_COOKIE),
    token: str | None = Depends(deps.get_access_token),
    identity: Identity | None = Depends(deps.get_identity),
    backend: deps.Backend = Depends(deps.get_backend),
) -> schemas.AudioPageResponse:
    settings = deps.get_settings()
    preferred = parse_page_size(stored_page_size, settings.default_page_size)
    size = preferred
    if page_size is not None:
        if page_size not in PAGE_SIZE_CHOICES:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"page_size must be one of {list(PAGE_SIZE_CHOICES)}",
            )
        size = page_size
        if size != preferred:
            page = 1
        response.set_cookie(
            PAGE_SIZE_COOKIE,
            str(size),
            max_age=PAGE_SIZE_COOKIE_MAX_AGE,
            samesite="lax",
        )
    try:
        records, total = await backend.records(token).list_page((page - 1) * size, size)
    except ArchiveError as exc:
        raise _http_error(exc, "Failed to load audio files") from exc
    info = PageInfo(page=page, page_size=size, total=total)
    return schemas.AudioPageResponse(
        items=[_record_out(record, identity) for record in records],
        page=info.page,
        page_size=info.page_size,
        page_size_choices=list(PAGE_SIZE_CHOICES),
        total=info.total,
        total_pages=info.total_pages,
        has_previous=info.has_previous,
        has_next=info.has_next,
        first_index=info.first_index,
        last_index=info.last_index,
    )


@router.post("/audio/probe", response_model=schemas.ProbeResponse)
async def probe_audio(
    file: UploadFile = File(...),
    identity: Identity = Depends(deps.require_identity),
) -> schemas.ProbeResponse:
    prepared = await _prepare_or_fail(file)
    candidate = prepared.candidate
    return schemas.ProbeResponse(
        filename=candidate.filename,
        content_type=candidate.content_type,
        title=candidate.suggested_title,
        duration=prepared.duration,
        duration_label=format_duration(prepared.duration),
    )


@router.post(
    "/audio",
    response_model=schemas.AudioFileResponse,
    status_code=status.HTTP_201_CREATED,
)
async def upload_audio(
    file: UploadFile = File(...),
    title: str | None = Form(None),
    identity: Identity = Depends(deps.require_identity),
    pipeline: AudioPipeline = Depends(deps.get_pipeline),
) -> schemas.AudioFileResponse:
    prepared = await _prepare_or_fail(file)
    try:
        record = await pipeline.upload(prepared, title, identity)
    except ArchiveError as exc:
        raise _http_error(exc, "Failed to upload audio file") from exc
    return _record_out(record, identity)


@router.get("/audio/{record_id}", response_model=schemas.AudioFileResponse)
async def get_audio(
    record_id: str,
    token: str | None = Depends(deps.get_access_token),
    identity: Identity | None = Depends(deps.get_identity),
    backend: deps.Backend = Depends(deps.get_backend),
) -> schemas.AudioFileResponse:
    try:
        record = await backend.records(token).get(record_id)
    except ArchiveError as exc:
        raise _http_error(exc, "Failed to load audio file") from exc
    return _record_out(record, identity)


@router.patch("/audio/{record_id}", response_model=schemas.AudioFileResponse)
async def update_audio(
    record_id: str,
    title: str = Form(...),
    file: UploadFile | None = File(None),
    identity: Identity = Depends(deps.require_identity),
    pipeline: AudioPipeline = Depends(deps.get_pipeline),
) -> schemas.AudioFileResponse:
    prepared = await _prepare_or_fail(file) if file is not None else None
    try:
        record = await pipeline.replace(record_id, title, identity, prepared)
    except ArchiveError as exc:
        raise _http_error(exc, "Failed to update audio file") from exc
    return _record_out(record, identity)


@router.delete("/audio/{record_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_audio(
    record_id: str,
    identity: Identity = Depends(deps.require_identity),
    pipeline: AudioPipeline = Depends(deps.get_pipeline),
) -> Response:
    try:
        await pipeline.delete(record_id, identity)
    except ArchiveError as exc:
        raise _http_error(exc, "Failed to delete audio file") from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/auth/login",
    response_model=schemas.MessageResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def login(
    data: schemas.LoginRequest,
    backend: deps.Backend = Depends(deps.get_backend),
) -> schemas.MessageResponse:
    redirect_to = f"{deps.get_settings().public_base_url.rstrip('/')}/upload"
    try:
        await backend.sessions.request_sign_in_link(str(data.email), redirect_to)
    except ArchiveError as exc:
        raise _http_error(exc, "Failed to send login link") from exc
    return schemas.MessageResponse(message="Check your email for the login link!")


@router.post("/auth/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    token: str | None = Depends(deps.get_access_token),
    identity: Identity = Depends(deps.require_identity),
    backend: deps.Backend = Depends(deps.get_backend),
) -> Response:
    assert token is not None
    try:
        await backend.sessions.sign_out(token)
    except ArchiveError as exc:
        raise _http_error(exc, "Failed to sign out") from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/auth/session", response_model=schemas.SessionResponse)
def get_session_info(
    identity: Identity | None = Depends(deps.get_identity),
) -> schemas.SessionResponse:
    if identity is None:
        return schemas.SessionResponse(signed_in=False)
    return schemas.SessionResponse(
        signed_in=True,
        id=identity.id,
        email=identity.email,
        display_name=identity.display_name,
    )


@router.get("/storage/{bucket}/{key}")
async def download_asset(
    bucket: str,
    key: str,
    backend: deps.Backend = Depends(deps.get_backend),
) -> FileResponse:
    local = backend.local_objects
    if local is None or bucket != backend.settings.storage_bucket:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")
    try:
        path = local.directory / object_key(key)
    except ArchiveError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")
    if not path.is_file():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")
    return FileResponse(path)
