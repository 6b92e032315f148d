"""In-memory collaborators for tests and local development.

None of these are meant for production. The interaction store serialises
every state to JSON on ``put`` and parses it on ``get`` so a resume behaves as
if it ran on a different worker: nothing but the correlation identifier is
carried over.
"""

from typing import Dict, Iterable, List, Optional, Tuple
import threading
import time

from loguru import logger

from .constants import INTERACTION_TTL_SECONDS, STANDARD_IDENTITY_SCOPES
from .exceptions import UnknownScopeError
from .models import (
    Client,
    ConsentDecision,
    ConsentRequest,
    InteractionState,
    Scope,
    ScopeType,
    SignInRequest,
    Subject,
)


def standard_identity_scopes() -> List[Scope]:
    """The OpenID Connect identity scopes (openid, profile, email, address, phone)."""
    return [
        Scope(name=name, type=ScopeType.IDENTITY, display_name=display_name, claims=tuple(claims))
        for name, (display_name, claims) in STANDARD_IDENTITY_SCOPES.items()
    ]


class InMemoryClientStore:
    def __init__(self, clients: Iterable[Client] = ()):
        self._clients: Dict[str, Client] = {c.client_id: c for c in clients}

    def add(self, client: Client) -> None:
        self._clients[client.client_id] = client

    def find(self, client_id: str) -> Optional[Client]:
        return self._clients.get(client_id)


class InMemoryScopeStore:
    def __init__(self, scopes: Iterable[Scope] = ()):
        self._scopes: Dict[str, Scope] = {s.name: s for s in scopes}

    @classmethod
    def with_standard_scopes(cls, *extra: Scope) -> "InMemoryScopeStore":
        return cls([*standard_identity_scopes(), *extra])

    def resolve(self, names: Iterable[str]) -> List[Scope]:
        names = list(names)
        unknown = [n for n in names if n not in self._scopes]
        if unknown:
            raise UnknownScopeError(unknown)
        return [self._scopes[n] for n in names]


class StaticSessionProvider:
    """Session provider returning a fixed subject (or None for an anonymous caller)."""

    def __init__(self, subject: Optional[Subject] = None):
        self.subject = subject

    def current(self) -> Optional[Subject]:
        return self.subject


class InMemoryConsentStore:
    def __init__(self):
        self._decisions: Dict[Tuple[str, str], ConsentDecision] = {}
        self._lock = threading.Lock()

    def lookup(self, subject_id: str, client_id: str) -> Optional[ConsentDecision]:
        with self._lock:
            return self._decisions.get((subject_id, client_id))

    def save(self, decision: ConsentDecision) -> None:
        with self._lock:
            self._decisions[(decision.subject_id, decision.client_id)] = decision
        logger.debug(
            "Remembered consent decision",
            subject_id=decision.subject_id,
            client_id=decision.client_id,
            scopes=sorted(decision.scopes_consented),
        )


class InMemoryInteractionStore:
    """TTL bound interaction state store.

    Entries older than ``ttl`` seconds are treated as absent. ``delete`` is
    atomic, so of two concurrent consumers of the same correlation identifier
    exactly one sees True.
    """

    def __init__(self, ttl: int = INTERACTION_TTL_SECONDS, clock=time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, Tuple[float, str]] = {}
        self._lock = threading.Lock()

    def put(self, state: InteractionState) -> None:
        with self._lock:
            self._purge()
            self._entries[state.correlation_id] = (self._clock() + self.ttl, state.model_dump_json())

    def get(self, correlation_id: str) -> Optional[InteractionState]:
        with self._lock:
            entry = self._entries.get(correlation_id)
            if entry is None:
                return None
            expires, payload = entry
            if expires <= self._clock():
                del self._entries[correlation_id]
                logger.debug("Interaction state expired", correlation_id=correlation_id[:4] + "...")
                return None
        return InteractionState.model_validate_json(payload)

    def delete(self, correlation_id: str) -> bool:
        with self._lock:
            return self._entries.pop(correlation_id, None) is not None

    def size(self) -> int:
        with self._lock:
            self._purge()
            return len(self._entries)

    def _purge(self) -> None:
        now = self._clock()
        for key in [k for k, (expires, _) in self._entries.items() if expires <= now]:
            del self._entries[key]


class RecordingLoginCollaborator:
    """Keeps every sign-in request it is handed; the UI itself is out of process."""

    def __init__(self):
        self.requests: List[SignInRequest] = []

    @property
    def called(self) -> bool:
        return bool(self.requests)

    @property
    def last(self) -> Optional[SignInRequest]:
        return self.requests[-1] if self.requests else None

    def begin_login(self, sign_in: SignInRequest) -> None:
        self.requests.append(sign_in)


class RecordingConsentCollaborator:
    def __init__(self):
        self.requests: List[ConsentRequest] = []

    @property
    def called(self) -> bool:
        return bool(self.requests)

    @property
    def last(self) -> Optional[ConsentRequest]:
        return self.requests[-1] if self.requests else None

    def begin_consent(self, consent: ConsentRequest) -> None:
        self.requests.append(consent)
