"""Session provider: identities from bearer tokens and passwordless sign-in."""

from __future__ import annotations

import uuid
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Protocol

import httpx
import jwt

from src.common.logging import get_logger

from .errors import AuthError

logger = get_logger(__name__)

TOKEN_AUDIENCE = "authenticated"
TOKEN_ALGORITHM = "HS256"
OUTBOX_LIMIT = 100


@dataclass(frozen=True)
class Identity:
    id: str
    email: str

    @property
    def display_name(self) -> str:
        return self.email.split("@")[0].upper()


def decode_access_token(token: str, secret: str) -> Identity | None:
    """Return the identity carried by ``token`` or ``None`` if it is not valid."""

    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[TOKEN_ALGORITHM],
            audience=TOKEN_AUDIENCE,
        )
    except jwt.PyJWTError as exc:
        logger.info("session.token_rejected", reason=str(exc))
        return None
    subject = payload.get("sub")
    if not subject:
        return None
    return Identity(id=str(subject), email=str(payload.get("email") or ""))


class SessionProvider(Protocol):
    def resolve(self, token: str) -> Identity | None:
        ...

    async def request_sign_in_link(self, email: str, redirect_to: str) -> None:
        ...

    async def sign_out(self, token: str) -> None:
        ...


class HostedSessionProvider:
    """Delegates sign-in and sign-out to the hosted backend's auth API."""

    def __init__(self, client: httpx.AsyncClient, *, api_key: str, jwt_secret: str) -> None:
        self._client = client
        self._api_key = api_key
        self._jwt_secret = jwt_secret

    def resolve(self, token: str) -> Identity | None:
        return decode_access_token(token, self._jwt_secret)

    async def request_sign_in_link(self, email: str, redirect_to: str) -> None:
        try:
            response = await self._client.post(
                "/auth/v1/otp",
                params={"redirect_to": redirect_to},
                json={"email": email, "create_user": True},
                headers={"apikey": self._api_key},
            )
        except httpx.HTTPError as exc:
            raise AuthError(f"auth service unreachable: {exc}") from exc
        if response.is_error:
            raise AuthError(
                f"sign-in link rejected with {response.status_code}: {response.text}"
            )

    async def sign_out(self, token: str) -> None:
        try:
            response = await self._client.post(
                "/auth/v1/logout",
                headers={"apikey": self._api_key, "Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as exc:
            raise AuthError(f"auth service unreachable: {exc}") from exc
        if response.is_error:
            raise AuthError(f"sign-out rejected with {response.status_code}")


class LocalSessionProvider:
    """Mints its own tokens and drops sign-in links into an outbox.

    Intended for local development: the link is logged instead of mailed.
    Only the most recent links are kept.
    """

    def __init__(
        self, *, jwt_secret: str, link_ttl_sec: int = 3600, outbox_limit: int = OUTBOX_LIMIT
    ) -> None:
        self._jwt_secret = jwt_secret
        self._link_ttl_sec = link_ttl_sec
        self.outbox: deque[tuple[str, str]] = deque(maxlen=outbox_limit)

    @staticmethod
    def user_id_for(email: str) -> str:
        return str(uuid.uuid5(uuid.NAMESPACE_URL, f"mailto:{email.lower()}"))

    def mint_token(self, email: str) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": self.user_id_for(email),
            "email": email,
            "aud": TOKEN_AUDIENCE,
            "iat": now,
            "exp": now + timedelta(seconds=self._link_ttl_sec),
        }
        return jwt.encode(payload, self._jwt_secret, algorithm=TOKEN_ALGORITHM)

    def resolve(self, token: str) -> Identity | None:
        return decode_access_token(token, self._jwt_secret)

    async def request_sign_in_link(self, email: str, redirect_to: str) -> None:
        token = self.mint_token(email)
        link = (
            f"{redirect_to}#access_token={token}"
            f"&token_type=bearer&expires_in={self._link_ttl_sec}"
        )
        self.outbox.append((email, link))
        logger.info("auth.sign_in_link", email=email, link=link)

    async def sign_out(self, token: str) -> None:
        # Tokens are stateless here; they simply expire.
        return None
