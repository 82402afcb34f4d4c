import json
from typing import Callable

import httpx
import jwt
import pytest
from pydantic import ValidationError

from services.audio_archive.app import deps
from services.audio_archive.app.errors import (
    AuthError,
    MetadataReadError,
    MetadataWriteError,
    RecordNotFoundError,
    StorageDeleteError,
    StorageWriteError,
)
from services.audio_archive.app.records import HostedMetadataStore
from services.audio_archive.app.sessions import (
    HostedSessionProvider,
    LocalSessionProvider,
)
from services.audio_archive.app.storage import HostedObjectStore, key_from_url

BASE_URL = "https://project.backend.test"
ROW = {
    "id": "7f0c",
    "title": "Morning",
    "file_url": f"{BASE_URL}/storage/v1/object/public/audio/morning.mp3",
    "duration": 61,
    "uploaded_by": "user-1",
    "created_at": "2024-05-01T10:00:00.123456+00:00",
}


def _client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))


@pytest.mark.anyio
@pytest.mark.parametrize("anyio_backend", ["asyncio"])
async def test_list_page_requests_one_range_with_count(anyio_backend: str) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(206, json=[ROW], headers={"Content-Range": "20-20/21"})

    async with _client(handler) as client:
        store = HostedMetadataStore(client, api_key="anon", access_token="user-token")
        records, total = await store.list_page(20, 10)

    assert total == 21
    assert records[0].title == "Morning"
    assert records[0].created_at.tzinfo is not None
    request = seen[0]
    assert request.url.path == "/rest/v1/audio_files"
    assert request.url.params["order"] == "created_at.desc"
    assert request.headers["Range"] == "20-29"
    assert request.headers["Prefer"] == "count=exact"
    assert request.headers["Authorization"] == "Bearer user-token"
    assert request.headers["apikey"] == "anon"


@pytest.mark.anyio
@pytest.mark.parametrize("anyio_backend", ["asyncio"])
async def test_list_page_past_the_end_is_empty(anyio_backend: str) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(416, json={}, headers={"Content-Range": "*/23"})

    async with _client(handler) as client:
        records, total = await HostedMetadataStore(client, api_key="anon").list_page(30, 10)

    assert records == []
    assert total == 23


@pytest.mark.anyio
@pytest.mark.parametrize("anyio_backend", ["asyncio"])
async def test_get_and_write_errors(anyio_backend: str) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200, json=[])
        if request.method == "POST":
            return httpx.Response(409, json={"message": "duplicate key"})
        return httpx.Response(200, json=[])

    async with _client(handler) as client:
        store = HostedMetadataStore(client, api_key="anon")
        with pytest.raises(RecordNotFoundError):
            await store.get("missing")
        with pytest.raises(MetadataWriteError):
            await store.insert(title="t", file_url="u", duration=1, uploaded_by="x")
        with pytest.raises(MetadataWriteError):
            await store.update("missing", {"title": "t"})
        with pytest.raises(MetadataWriteError):
            await store.delete("missing")


@pytest.mark.anyio
@pytest.mark.parametrize("anyio_backend", ["asyncio"])
async def test_insert_and_update_return_the_row(anyio_backend: str) -> None:
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        assert request.headers["Prefer"] == "return=representation"
        if request.method == "PATCH":
            assert request.url.params["id"] == "eq.7f0c"
        return httpx.Response(201, json=[ROW])

    async with _client(handler) as client:
        store = HostedMetadataStore(client, api_key="anon")
        created = await store.insert(
            title="Morning", file_url=ROW["file_url"], duration=61, uploaded_by="user-1"
        )
        await store.update(created.id, {"title": "Morning"})

    assert bodies[0] == {
        "title": "Morning",
        "file_url": ROW["file_url"],
        "duration": 61,
        "uploaded_by": "user-1",
    }
    assert bodies[1] == {"title": "Morning"}


@pytest.mark.anyio
@pytest.mark.parametrize("anyio_backend", ["asyncio"])
async def test_unreachable_metadata_store(anyio_backend: str) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with _client(handler) as client:
        with pytest.raises(MetadataReadError):
            await HostedMetadataStore(client, api_key="anon").list_page(0, 10)


@pytest.mark.anyio
@pytest.mark.parametrize("anyio_backend", ["asyncio"])
async def test_upload_refuses_to_overwrite(anyio_backend: str) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if len(seen) == 1:
            return httpx.Response(200, json={"Key": "audio/my song.mp3"})
        return httpx.Response(409, json={"error": "Duplicate"})

    async with _client(handler) as client:
        store = HostedObjectStore(client, api_key="anon", access_token="user-token")
        await store.upload("my song.mp3", b"ID3data", "audio/mpeg")
        with pytest.raises(StorageWriteError):
            await store.upload("my song.mp3", b"ID3data", "audio/mpeg")
        url = store.public_url("my song.mp3")

    first = seen[0]
    assert first.method == "POST"
    assert first.url.raw_path == b"/storage/v1/object/audio/my%20song.mp3"
    assert first.headers["x-upsert"] == "false"
    assert first.headers["cache-control"] == "max-age=3600"
    assert first.headers["content-type"] == "audio/mpeg"
    assert first.content == b"ID3data"
    assert url == f"{BASE_URL}/storage/v1/object/public/audio/my%20song.mp3"
    assert key_from_url(url) == "my song.mp3"


@pytest.mark.anyio
@pytest.mark.parametrize("anyio_backend", ["asyncio"])
async def test_remove_sends_prefixes(anyio_backend: str) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if len(seen) == 1:
            return httpx.Response(200, json=[{"name": "old.mp3"}])
        return httpx.Response(500, json={"error": "internal"})

    async with _client(handler) as client:
        store = HostedObjectStore(client, api_key="anon")
        assert await store.remove(["old.mp3"]) == ["old.mp3"]
        with pytest.raises(StorageDeleteError):
            await store.remove(["old.mp3"])

    assert seen[0].method == "DELETE"
    assert seen[0].url.path == "/storage/v1/object/audio"
    assert json.loads(seen[0].content) == {"prefixes": ["old.mp3"]}


@pytest.mark.anyio
@pytest.mark.parametrize("anyio_backend", ["asyncio"])
async def test_sign_in_link_and_sign_out(anyio_backend: str) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.path == "/auth/v1/otp" and len(seen) > 1:
            return httpx.Response(429, json={"msg": "rate limited"})
        return httpx.Response(200, json={})

    async with _client(handler) as client:
        provider = HostedSessionProvider(client, api_key="anon", jwt_secret="s" * 32)
        await provider.request_sign_in_link("a@example.com", "https://app.test/upload")
        with pytest.raises(AuthError):
            await provider.request_sign_in_link("a@example.com", "https://app.test/upload")
        await provider.sign_out("user-token")

    otp = seen[0]
    assert otp.url.params["redirect_to"] == "https://app.test/upload"
    assert json.loads(otp.content) == {"email": "a@example.com", "create_user": True}
    assert seen[-1].url.path == "/auth/v1/logout"
    assert seen[-1].headers["Authorization"] == "Bearer user-token"


def test_resolve_identity_from_backend_token() -> None:
    secret = "s" * 32
    token = jwt.encode(
        {"sub": "user-1", "email": "dj@example.com", "aud": "authenticated"},
        secret,
        algorithm="HS256",
    )
    provider = HostedSessionProvider(
        httpx.AsyncClient(base_url=BASE_URL), api_key="anon", jwt_secret=secret
    )

    identity = provider.resolve(token)

    assert identity is not None
    assert identity.id == "user-1"
    assert identity.display_name == "DJ"
    assert provider.resolve(token + "x") is None
    assert provider.resolve(jwt.encode({"sub": "u"}, "other" * 8, algorithm="HS256")) is None


@pytest.mark.anyio
@pytest.mark.parametrize("anyio_backend", ["asyncio"])
async def test_local_provider_outbox_link_carries_a_valid_token(anyio_backend: str) -> None:
    provider = LocalSessionProvider(jwt_secret="local" * 8, link_ttl_sec=60)

    await provider.request_sign_in_link("Ann@Example.com", "http://localhost:8000/upload")

    email, link = provider.outbox[0]
    assert email == "Ann@Example.com"
    assert link.startswith("http://localhost:8000/upload#access_token=")
    token = link.split("access_token=", 1)[1].split("&", 1)[0]
    identity = provider.resolve(token)
    assert identity is not None
    assert identity.id == LocalSessionProvider.user_id_for("ann@example.com")


@pytest.mark.anyio
@pytest.mark.parametrize("anyio_backend", ["asyncio"])
async def test_local_provider_outbox_keeps_only_recent_links(anyio_backend: str) -> None:
    provider = LocalSessionProvider(jwt_secret="local" * 8, outbox_limit=3)

    for index in range(50):
        await provider.request_sign_in_link(f"user{index}@example.com", "http://app.test/upload")

    assert len(provider.outbox) == 3
    assert [email for email, _ in provider.outbox] == [
        "user47@example.com",
        "user48@example.com",
        "user49@example.com",
    ]


def test_hosted_backend_requires_its_own_jwt_secret(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("BACKEND_JWT_SECRET", raising=False)

    with pytest.raises(ValidationError):
        deps.Settings(backend="hosted")
    with pytest.raises(ValidationError):
        deps.Settings(backend="hosted", backend_jwt_secret="")

    settings = deps.Settings(backend="hosted", backend_jwt_secret="s" * 32)
    assert settings.backend_jwt_secret == "s" * 32
    assert deps.Settings(backend="local").backend_jwt_secret == deps.LOCAL_JWT_SECRET
