"""Collaborator contracts consumed by the authorize engine.

The engine depends on nothing but these protocols. Storage technology, UI
rendering and token signing live behind them, so the whole pipeline runs
against the in-memory fakes in :mod:`core_authorize.memory`.
"""

from typing import Iterable, List, Optional, Protocol, Tuple, runtime_checkable

from .models import (
    AuthorizeRequest,
    Client,
    ConsentDecision,
    ConsentRequest,
    InteractionState,
    Scope,
    SignInRequest,
    Subject,
)


@runtime_checkable
class ClientStore(Protocol):
    def find(self, client_id: str) -> Optional[Client]:
        """Return the client registration, or None when unknown."""
        ...


@runtime_checkable
class ScopeStore(Protocol):
    def resolve(self, names: Iterable[str]) -> List[Scope]:
        """Return the registered scopes for ``names``.

        Raises:
            UnknownScopeError: if any name is not registered.
        """
        ...


@runtime_checkable
class SessionProvider(Protocol):
    def current(self) -> Optional[Subject]:
        """Return the subject of the caller's session, or None when anonymous."""
        ...


@runtime_checkable
class LoginCollaborator(Protocol):
    def begin_login(self, sign_in: SignInRequest) -> None:
        """Notified when a request is suspended pending end-user authentication."""
        ...


@runtime_checkable
class ConsentCollaborator(Protocol):
    def begin_consent(self, consent: ConsentRequest) -> None:
        """Notified when a request is suspended pending end-user consent."""
        ...


@runtime_checkable
class ConsentStore(Protocol):
    def lookup(self, subject_id: str, client_id: str) -> Optional[ConsentDecision]:
        ...

    def save(self, decision: ConsentDecision) -> None:
        ...


@runtime_checkable
class InteractionStore(Protocol):
    """Keyed storage for suspended requests. Expiry is the store's policy."""

    def put(self, state: InteractionState) -> None:
        ...

    def get(self, correlation_id: str) -> Optional[InteractionState]:
        """Return the state, or None when it never existed, expired or was consumed."""
        ...

    def delete(self, correlation_id: str) -> bool:
        """Remove the state. Returns False when nothing was removed."""
        ...


@runtime_checkable
class TokenIssuer(Protocol):
    def issue_code(self, request: AuthorizeRequest, subject: Subject, scopes: Tuple[str, ...]) -> str:
        ...

    def issue_access_token(
        self, request: AuthorizeRequest, subject: Subject, scopes: Tuple[str, ...]
    ) -> Tuple[str, int]:
        """Return the access token and its lifetime in seconds."""
        ...

    def issue_identity_token(
        self,
        request: AuthorizeRequest,
        subject: Subject,
        scopes: Tuple[str, ...],
        *,
        code: Optional[str] = None,
        access_token: Optional[str] = None,
    ) -> str:
        ...
