"""Authorization endpoint data model.

Pydantic models shared by every stage of the authorize pipeline:

- :class:`Client` and :class:`Scope` are read-only registrations owned by the
  client and scope stores.
- :class:`Subject` is the authenticated end-user reported by the session.
- :class:`AuthorizeRequest` is the immutable, validated form of a raw request.
- :class:`ConsentDecision` is what the consent UI hands back.
- :class:`InteractionState` is the persisted continuation of a suspended
  request, keyed by an unguessable correlation identifier.
- :class:`SignInRequest` / :class:`ConsentRequest` are the payloads handed to
  the login and consent UIs.

Scope collections are kept as tuples in request order (deduplicated) so that
wire output is deterministic, but every comparison is done on sets.

Example:
    .. code-block:: python

        client = Client(
            client_id="client1",
            allowed_flows={Flow.IMPLICIT},
            allowed_scopes={"openid", "profile"},
            redirect_uris={"https://client1/callback"},
            require_consent=False,
        )
        assert client.permits_response_type("id_token token")
"""

from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


CODE = "code"
TOKEN = "token"
ID_TOKEN = "id_token"

# canonical order used when normalising a space-delimited response_type
RESPONSE_TYPE_ORDER = (CODE, ID_TOKEN, TOKEN)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ResponseMode(str, Enum):
    """How authorize response parameters are delivered to the redirect URI."""

    QUERY = "query"
    FRAGMENT = "fragment"
    FORM_POST = "form_post"


class Flow(str, Enum):
    """OAuth/OIDC flows a client may be registered for."""

    AUTHORIZATION_CODE = "authorization_code"
    IMPLICIT = "implicit"
    HYBRID = "hybrid"


FLOW_RESPONSE_TYPES: Dict[Flow, FrozenSet[str]] = {
    Flow.AUTHORIZATION_CODE: frozenset({"code"}),
    Flow.IMPLICIT: frozenset({"token", "id_token", "id_token token"}),
    Flow.HYBRID: frozenset({"code id_token", "code token", "code id_token token"}),
}

SUPPORTED_RESPONSE_TYPES: FrozenSet[str] = frozenset().union(*FLOW_RESPONSE_TYPES.values())


def normalize_response_type(value: Optional[str]) -> Optional[str]:
    """Return the canonical form of a space-delimited response_type, or None if unsupported.

    ``"token id_token"`` and ``"id_token token"`` both normalise to ``"id_token token"``.
    Repeated or unknown members make the value unsupported.
    """
    if not value:
        return None
    parts = value.split()
    if len(parts) != len(set(parts)) or any(p not in RESPONSE_TYPE_ORDER for p in parts):
        return None
    canonical = " ".join(p for p in RESPONSE_TYPE_ORDER if p in parts)
    return canonical if canonical in SUPPORTED_RESPONSE_TYPES else None


def default_response_mode(response_types: Iterable[str]) -> ResponseMode:
    """Tokens are never placed in the query string; a pure code response uses it."""
    if TOKEN in response_types or ID_TOKEN in response_types:
        return ResponseMode.FRAGMENT
    return ResponseMode.QUERY


class Prompt(str, Enum):
    NONE = "none"
    LOGIN = "login"
    CONSENT = "consent"
    SELECT_ACCOUNT = "select_account"


class Display(str, Enum):
    PAGE = "page"
    POPUP = "popup"
    TOUCH = "touch"
    WAP = "wap"


class ScopeType(str, Enum):
    IDENTITY = "identity"
    RESOURCE = "resource"


class Scope(BaseModel):
    """A registered scope as returned by the scope store."""

    model_config = ConfigDict(frozen=True)

    name: str
    type: ScopeType = ScopeType.RESOURCE
    display_name: Optional[str] = None
    description: Optional[str] = None
    # False means the scope is implicitly granted and never disclosed on the consent screen
    show_in_consent: bool = True
    claims: Tuple[str, ...] = ()


class Client(BaseModel):
    """Client registration. Read-only for the duration of a request."""

    model_config = ConfigDict(frozen=True)

    client_id: str
    client_name: Optional[str] = None
    enabled: bool = True
    allowed_scopes: FrozenSet[str] = frozenset()
    redirect_uris: FrozenSet[str] = frozenset()
    allowed_flows: FrozenSet[Flow] = frozenset({Flow.AUTHORIZATION_CODE})
    # explicit response types override the flow derived set when given
    allowed_response_types: FrozenSet[str] = frozenset()
    require_consent: bool = True
    allow_remember_consent: bool = True
    require_pkce: bool = False

    def permitted_response_types(self) -> FrozenSet[str]:
        if self.allowed_response_types:
            return frozenset(filter(None, (normalize_response_type(rt) for rt in self.allowed_response_types)))
        permitted: set = set()
        for flow in self.allowed_flows:
            permitted |= FLOW_RESPONSE_TYPES[flow]
        return frozenset(permitted)

    def permits_response_type(self, response_type: str) -> bool:
        return normalize_response_type(response_type) in self.permitted_response_types()

    def is_redirect_uri_registered(self, redirect_uri: Optional[str]) -> bool:
        """Exact, case-sensitive string comparison. No prefix or wildcard matching."""
        return bool(redirect_uri) and redirect_uri in self.redirect_uris


class Subject(BaseModel):
    """The authenticated end-user as reported by the session provider."""

    model_config = ConfigDict(frozen=True)

    subject_id: str
    claims: Dict[str, Any] = Field(default_factory=dict)
    identity_provider: Optional[str] = None
    tenant: Optional[str] = None
    authenticated_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.expires_at is not None and self.expires_at <= (now or utcnow())

    def authenticated_within(self, max_age: int, now: Optional[datetime] = None) -> bool:
        if self.authenticated_at is None:
            return False
        return ((now or utcnow()) - self.authenticated_at).total_seconds() <= max_age


class ErrorContext(BaseModel):
    """Where a redirectable error goes: the trusted redirect URI, its encoding and the echoed state."""

    model_config = ConfigDict(frozen=True)

    redirect_uri: str
    response_mode: ResponseMode
    state: Optional[str] = None


class AuthorizeRequest(BaseModel):
    """A validated authorization request.

    Invariants established by the validator:
        - ``redirect_uri`` exactly matches one registered for ``client_id``.
        - ``scopes`` is non-empty, deduplicated and a subset of the client's allowed scopes.
        - ``nonce`` is present whenever an identity token is requested.
        - ``response_mode`` is never ``query`` when a token or identity token is requested.
    """

    model_config = ConfigDict(frozen=True)

    client_id: str
    response_type: str
    scopes: Tuple[str, ...]
    redirect_uri: str
    response_mode: ResponseMode
    state: Optional[str] = None
    nonce: Optional[str] = None
    prompt: FrozenSet[Prompt] = frozenset()
    display: Optional[Display] = None
    ui_locales: Optional[str] = None
    max_age: Optional[int] = None
    login_hint: Optional[str] = None
    acr_values: Tuple[str, ...] = ()
    idp: Optional[str] = None
    tenant: Optional[str] = None
    code_challenge: Optional[str] = None
    code_challenge_method: Optional[str] = None
    custom_parameters: Dict[str, str] = Field(default_factory=dict)

    @property
    def response_types(self) -> FrozenSet[str]:
        return frozenset(self.response_type.split())

    @property
    def wants_code(self) -> bool:
        return CODE in self.response_types

    @property
    def wants_access_token(self) -> bool:
        return TOKEN in self.response_types

    @property
    def wants_identity_token(self) -> bool:
        return ID_TOKEN in self.response_types

    @property
    def scope_set(self) -> FrozenSet[str]:
        return frozenset(self.scopes)

    def ordered(self, scopes: Iterable[str]) -> Tuple[str, ...]:
        """Return ``scopes`` in request order; this is the canonical wire order."""
        wanted = set(scopes)
        return tuple(s for s in self.scopes if s in wanted)

    def error_context(self) -> ErrorContext:
        return ErrorContext(redirect_uri=self.redirect_uri, response_mode=self.response_mode, state=self.state)


class ConsentDecision(BaseModel):
    """The end-user's answer on the consent screen."""

    model_config = ConfigDict(frozen=True)

    subject_id: str
    client_id: str
    scopes_consented: FrozenSet[str] = frozenset()
    remember: bool = False
    created_at: datetime = Field(default_factory=utcnow)


class LoginOutcome(BaseModel):
    """Verdict handed back by the login UI when the interaction completes."""

    model_config = ConfigDict(frozen=True)

    success: bool
    subject: Optional[Subject] = None
    error: Optional[str] = None
    error_description: Optional[str] = None

    @classmethod
    def succeeded(cls, subject: Subject) -> "LoginOutcome":
        return cls(success=True, subject=subject)

    @classmethod
    def failed(cls, error: str = "access_denied", error_description: Optional[str] = None) -> "LoginOutcome":
        return cls(success=False, error=error, error_description=error_description)


class InteractionStage(str, Enum):
    LOGIN = "login"
    CONSENT = "consent"


class InteractionState(BaseModel):
    """Continuation of a suspended authorize request.

    Persisted by the interaction store under ``correlation_id`` and consumed exactly once.
    """

    correlation_id: str
    stage: InteractionStage
    request: AuthorizeRequest
    subject: Optional[Subject] = None
    consented_scopes: Optional[Tuple[str, ...]] = None
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.expires_at is not None and self.expires_at <= (now or utcnow())


class SignInRequest(BaseModel):
    """Everything the login UI needs to authenticate the user for a suspended request."""

    model_config = ConfigDict(frozen=True)

    correlation_id: str
    client_id: str
    display: Optional[Display] = None
    ui_locales: Optional[str] = None
    login_hint: Optional[str] = None
    idp: Optional[str] = None
    tenant: Optional[str] = None
    acr_values: Tuple[str, ...] = ()
    prompt: FrozenSet[Prompt] = frozenset()
    max_age: Optional[int] = None
    custom_parameters: Dict[str, str] = Field(default_factory=dict)


class ConsentScope(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    type: ScopeType = ScopeType.RESOURCE
    display_name: Optional[str] = None
    description: Optional[str] = None


class ConsentRequest(BaseModel):
    """Everything the consent UI needs to render the consent screen."""

    model_config = ConfigDict(frozen=True)

    correlation_id: str
    client_id: str
    client_name: Optional[str] = None
    subject_id: str
    display: Optional[Display] = None
    ui_locales: Optional[str] = None
    scopes_requested: Tuple[str, ...] = ()
    scopes_to_show: List[ConsentScope] = Field(default_factory=list)
    allow_remember: bool = True
