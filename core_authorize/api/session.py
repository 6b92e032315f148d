"""Session provider reading the signed session token set by the login UI.

Auth sources (in order):
    - ``Authorization: Bearer <JWT>``
    - ``sck_session`` cookie (``SESSION_COOKIE_NAME``)

Only tokens with ``typ=session`` are accepted. Anything missing, malformed,
expired or of another type is treated as an anonymous caller.
"""

from typing import Any, Dict, Mapping, Optional
from datetime import datetime, timedelta, timezone
import uuid

import jwt
from loguru import logger

from ..constants import (
    AUTHORIZE_ISSUER,
    ACCESS_TOKEN_LIFETIME_SECONDS,
    JWT_ALGORITHM,
    JWT_SECRET_KEY,
    SESSION_COOKIE_NAME,
)
from ..models import Subject, utcnow
from ..tokens import TYP_SESSION, TokenClaims


def get_session_token(cookies: Mapping[str, str], headers: Mapping[str, str]) -> Optional[str]:
    authz = (headers.get("authorization") or "").strip()
    if authz.lower().startswith("bearer "):
        return authz.split(" ", 1)[1].strip() or None
    return cookies.get(SESSION_COOKIE_NAME) or None


def create_session_token(
    subject: Subject,
    client_id: str = AUTHORIZE_ISSUER,
    lifetime: int = ACCESS_TOKEN_LIFETIME_SECONDS,
    secret: str = JWT_SECRET_KEY,
    algorithm: str = JWT_ALGORITHM,
) -> str:
    """Sign a session token for ``subject``. Used by the login UI once the user is authenticated."""
    now = utcnow()
    authenticated_at = subject.authenticated_at or now
    expires_at = subject.expires_at or now + timedelta(seconds=lifetime)
    claims: Dict[str, Any] = dict(subject.claims)
    claims.update(
        sub=subject.subject_id,
        cid=client_id,
        typ=TYP_SESSION,
        iss=AUTHORIZE_ISSUER,
        iat=int(now.timestamp()),
        exp=int(expires_at.timestamp()),
        jti=uuid.uuid4().hex,
        auth_time=int(authenticated_at.timestamp()),
        idp=subject.identity_provider,
        tnt=subject.tenant,
    )
    return TokenClaims(**claims).encode(secret, algorithm)


class JwtSessionProvider:

    def __init__(
        self,
        cookies: Mapping[str, str],
        headers: Mapping[str, str],
        secret: str = JWT_SECRET_KEY,
        algorithm: str = JWT_ALGORITHM,
    ):
        self.token = get_session_token(cookies, headers)
        self.secret = secret
        self.algorithm = algorithm

    def current(self) -> Optional[Subject]:
        if not self.token:
            return None
        try:
            claims = TokenClaims.decode(self.token, self.secret, self.algorithm)
        except jwt.InvalidTokenError as e:
            logger.debug("Ignoring invalid session token", error=str(e))
            return None

        if claims.typ != TYP_SESSION:
            logger.debug("Ignoring non-session token", typ=claims.typ)
            return None

        return Subject(
            subject_id=claims.sub,
            claims=dict(claims.model_extra or {}),
            identity_provider=claims.idp,
            tenant=claims.tnt,
            authenticated_at=_from_timestamp(claims.auth_time),
            expires_at=_from_timestamp(claims.exp),
        )


def _from_timestamp(value: Optional[int]) -> Optional[datetime]:
    return datetime.fromtimestamp(value, tz=timezone.utc) if value is not None else None
