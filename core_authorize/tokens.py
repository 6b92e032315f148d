"""Reference token issuer backed by PyJWT.

Authorization codes, access tokens and identity tokens are all HMAC signed
JWTs. Authorization codes are self-contained: they carry the redirect URI,
the PKCE challenge and the nonce so a token endpoint can verify the exchange
without server-side state.

Identity tokens bind the artefacts they are delivered with through ``c_hash``
and ``at_hash``: the left-most half of the hash of the ASCII value, base64url
encoded without padding, using the hash that matches the signing algorithm.
"""

from typing import Any, Callable, Dict, List, Optional, Tuple
from datetime import datetime, timedelta
import base64
import hashlib
import uuid

import jwt
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from .constants import (
    ACCESS_TOKEN_LIFETIME_SECONDS,
    AUTH_CODE_LIFETIME_SECONDS,
    AUTHORIZE_ISSUER,
    IDENTITY_TOKEN_LIFETIME_SECONDS,
    JWT_ALGORITHM,
    JWT_SECRET_KEY,
    STANDARD_IDENTITY_SCOPES,
)
from .models import ID_TOKEN, AuthorizeRequest, Subject, utcnow

TYP_CODE = "code"
TYP_ACCESS = "access"
TYP_ID = "id"
TYP_SESSION = "session"

_HASHES = {"HS256": hashlib.sha256, "HS384": hashlib.sha384, "HS512": hashlib.sha512}


def calc_code_challenge(verifier: str, method: str = "S256") -> str:
    """Compute a PKCE code challenge from ``verifier`` (RFC 7636)."""
    if method == "plain":
        return verifier
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode().rstrip("=")


def left_half_hash(value: str, algorithm: str = JWT_ALGORITHM) -> str:
    """``at_hash`` / ``c_hash`` value for ``value`` under the signing ``algorithm``."""
    digest = _HASHES.get(algorithm, hashlib.sha256)(value.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest[: len(digest) // 2]).decode().rstrip("=")


class TokenClaims(BaseModel):
    """Registered and private claims of tokens minted by :class:`JwtTokenIssuer`.

    Identity claims released in an identity token (``name``, ``email``...) are
    kept as extra fields.
    """

    model_config = ConfigDict(extra="allow")

    sub: str = Field(..., description="Subject (end-user identifier)")
    cid: str = Field(..., description="Client ID")
    typ: str = Field(..., description="Token type (code, access, id, session)")
    iss: Optional[str] = Field(None, description="Issuer")
    aud: Optional[str] = Field(None, description="Intended audience")
    iat: Optional[int] = Field(None, description="Issued at time as UNIX timestamp")
    exp: Optional[int] = Field(None, description="Expiration time as UNIX timestamp")
    jti: Optional[str] = Field(None, description="Unique token identifier")
    scp: Optional[str] = Field(None, description="Granted scopes, space separated")

    # Authorization code binding
    rdu: Optional[str] = Field(None, description="Redirect URI the code was issued to")
    cch: Optional[str] = Field(None, description="Code challenge for PKCE")
    ccm: Optional[str] = Field(None, description="Code challenge method (S256, plain)")

    # OpenID Connect
    nonce: Optional[str] = Field(None, description="OpenID Connect nonce")
    auth_time: Optional[int] = Field(None, description="Time of end-user authentication")
    at_hash: Optional[str] = Field(None, description="Access token hash")
    c_hash: Optional[str] = Field(None, description="Authorization code hash")

    # Session tokens
    idp: Optional[str] = Field(None, description="Identity provider that authenticated the subject")
    tnt: Optional[str] = Field(None, description="Tenant of the subject")

    def model_dump(self, **kwargs) -> dict:
        kwargs.setdefault("exclude_none", True)
        return super().model_dump(**kwargs)

    def encode(self, secret: str = JWT_SECRET_KEY, algorithm: str = JWT_ALGORITHM) -> str:
        return jwt.encode(self.model_dump(), secret, algorithm=algorithm)

    @classmethod
    def decode(
        cls,
        token: str,
        secret: str = JWT_SECRET_KEY,
        algorithm: str = JWT_ALGORITHM,
        audience: Optional[str] = None,
    ) -> "TokenClaims":
        """Verify the signature and expiry of ``token`` and return its claims.

        Raises:
            jwt.InvalidTokenError: if the token is malformed, tampered with or expired.
        """
        payload = jwt.decode(
            token,
            secret,
            algorithms=[algorithm],
            audience=audience,
            options={
                "verify_signature": True,
                "verify_exp": True,
                "verify_iat": True,
                "verify_aud": audience is not None,
            },
        )
        return cls(**payload)


class JwtTokenIssuer:
    """Mints codes and tokens for a completed authorize request."""

    def __init__(
        self,
        secret: str = JWT_SECRET_KEY,
        algorithm: str = JWT_ALGORITHM,
        issuer: str = AUTHORIZE_ISSUER,
        code_lifetime: int = AUTH_CODE_LIFETIME_SECONDS,
        access_token_lifetime: int = ACCESS_TOKEN_LIFETIME_SECONDS,
        identity_token_lifetime: int = IDENTITY_TOKEN_LIFETIME_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.secret = secret
        self.algorithm = algorithm
        self.issuer = issuer
        self.code_lifetime = code_lifetime
        self.access_token_lifetime = access_token_lifetime
        self.identity_token_lifetime = identity_token_lifetime
        self.clock = clock

    def issue_code(self, request: AuthorizeRequest, subject: Subject, scopes: Tuple[str, ...]) -> str:
        claims = self._claims(TYP_CODE, request, subject, self.code_lifetime)
        claims.update(
            aud=request.client_id,
            scp=" ".join(scopes),
            rdu=request.redirect_uri,
            cch=request.code_challenge,
            ccm=request.code_challenge_method,
            nonce=request.nonce,
        )
        code = self._encode(claims)
        logger.debug("Issued authorization code", client_id=request.client_id, code=code[:4] + "...")
        return code

    def issue_access_token(
        self, request: AuthorizeRequest, subject: Subject, scopes: Tuple[str, ...]
    ) -> Tuple[str, int]:
        claims = self._claims(TYP_ACCESS, request, subject, self.access_token_lifetime)
        claims.update(aud=self.issuer, scp=" ".join(scopes))
        token = self._encode(claims)
        logger.debug("Issued access token", client_id=request.client_id, access_token=token[:4] + "...")
        return token, self.access_token_lifetime

    def issue_identity_token(
        self,
        request: AuthorizeRequest,
        subject: Subject,
        scopes: Tuple[str, ...],
        *,
        code: Optional[str] = None,
        access_token: Optional[str] = None,
    ) -> str:
        claims = self._claims(TYP_ID, request, subject, self.identity_token_lifetime)
        claims.update(aud=request.client_id, nonce=request.nonce)
        if subject.authenticated_at is not None:
            claims["auth_time"] = int(subject.authenticated_at.timestamp())
        if code:
            claims["c_hash"] = left_half_hash(code, self.algorithm)
        if access_token:
            claims["at_hash"] = left_half_hash(access_token, self.algorithm)

        # with no access token the client has no userinfo call to make
        if request.response_type == ID_TOKEN:
            for name, value in self.identity_claims(subject, scopes).items():
                claims.setdefault(name, value)

        token = self._encode(claims)
        logger.debug("Issued identity token", client_id=request.client_id, id_token=token[:4] + "...")
        return token

    @staticmethod
    def identity_claims(subject: Subject, scopes: Tuple[str, ...]) -> Dict[str, Any]:
        """Subject claims released by the granted identity scopes."""
        released: List[str] = []
        for scope in scopes:
            if scope in STANDARD_IDENTITY_SCOPES:
                released.extend(STANDARD_IDENTITY_SCOPES[scope][1])
        return {name: subject.claims[name] for name in released if name in subject.claims and name != "sub"}

    def decode(self, token: str, audience: Optional[str] = None) -> TokenClaims:
        return TokenClaims.decode(token, self.secret, self.algorithm, audience=audience)

    def _claims(self, typ: str, request: AuthorizeRequest, subject: Subject, lifetime: int) -> Dict[str, Any]:
        now = self.clock()
        return {
            "sub": subject.subject_id,
            "cid": request.client_id,
            "typ": typ,
            "iss": self.issuer,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=lifetime)).timestamp()),
            "jti": uuid.uuid4().hex,
        }

    def _encode(self, claims: Dict[str, Any]) -> str:
        return TokenClaims(**claims).encode(self.secret, self.algorithm)
