from datetime import timedelta

import pytest

from core_authorize.memory import (
    InMemoryClientStore,
    InMemoryConsentStore,
    InMemoryInteractionStore,
    InMemoryScopeStore,
    RecordingConsentCollaborator,
    RecordingLoginCollaborator,
    StaticSessionProvider,
)
from core_authorize.models import Client, Flow, Scope, ScopeType, Subject, utcnow
from core_authorize.orchestrator import AuthorizeOrchestrator
from core_authorize.tokens import JwtTokenIssuer

TEST_SECRET = "test-secret-key-for-authorize-tests-0123456789-abcdefghijklmnopqrstuvwxyz"

CLIENT1_CALLBACK = "https://client1/callback"
CLIENT2_CALLBACK = "https://client2/callback"
CLIENT3_CALLBACK = "https://client3/callback"


def make_params(**overrides) -> dict:
    """Authorize parameters for client1's implicit id_token request, with overrides (None removes)."""
    params = {
        "client_id": "client1",
        "response_type": "id_token",
        "redirect_uri": CLIENT1_CALLBACK,
        "scope": "openid profile",
        "state": "123_state",
        "nonce": "nonce_1",
    }
    params.update(overrides)
    return {k: v for k, v in params.items() if v is not None}


@pytest.fixture
def client1() -> Client:
    return Client(
        client_id="client1",
        client_name="Implicit Client",
        allowed_flows={Flow.IMPLICIT},
        allowed_scopes={"openid", "profile"},
        redirect_uris={CLIENT1_CALLBACK},
        require_consent=False,
    )


@pytest.fixture
def client2() -> Client:
    return Client(
        client_id="client2",
        client_name="Consent Client",
        allowed_flows={Flow.IMPLICIT},
        allowed_scopes={"openid", "profile", "api1", "api2", "audit"},
        redirect_uris={CLIENT2_CALLBACK},
        require_consent=True,
    )


@pytest.fixture
def client3() -> Client:
    """Authorization code and hybrid client requiring PKCE."""
    return Client(
        client_id="client3",
        client_name="Code Client",
        allowed_flows={Flow.AUTHORIZATION_CODE, Flow.HYBRID},
        allowed_scopes={"openid", "email", "api1"},
        redirect_uris={CLIENT3_CALLBACK, "https://client3/other?tenant=acme"},
        require_consent=False,
        require_pkce=True,
    )


@pytest.fixture
def resource_scopes():
    return [
        Scope(name="api1", type=ScopeType.RESOURCE, display_name="API 1"),
        Scope(name="api2", type=ScopeType.RESOURCE, display_name="API 2"),
        # granted with any consent, never shown
        Scope(name="audit", type=ScopeType.RESOURCE, show_in_consent=False),
    ]


@pytest.fixture
def clients(client1, client2, client3) -> InMemoryClientStore:
    return InMemoryClientStore([client1, client2, client3])


@pytest.fixture
def scopes(resource_scopes) -> InMemoryScopeStore:
    return InMemoryScopeStore.with_standard_scopes(*resource_scopes)


@pytest.fixture
def consents() -> InMemoryConsentStore:
    return InMemoryConsentStore()


@pytest.fixture
def interactions() -> InMemoryInteractionStore:
    return InMemoryInteractionStore(ttl=600)


@pytest.fixture
def login_ui() -> RecordingLoginCollaborator:
    return RecordingLoginCollaborator()


@pytest.fixture
def consent_ui() -> RecordingConsentCollaborator:
    return RecordingConsentCollaborator()


@pytest.fixture
def issuer() -> JwtTokenIssuer:
    return JwtTokenIssuer(secret=TEST_SECRET)


@pytest.fixture
def bob() -> Subject:
    now = utcnow()
    return Subject(
        subject_id="bob",
        claims={"name": "Bob Smith", "email": "bob@example.com", "email_verified": True},
        identity_provider="local",
        tenant="acme",
        authenticated_at=now - timedelta(minutes=5),
        expires_at=now + timedelta(hours=1),
    )


@pytest.fixture
def anonymous() -> StaticSessionProvider:
    return StaticSessionProvider()


@pytest.fixture
def bob_session(bob) -> StaticSessionProvider:
    return StaticSessionProvider(bob)


@pytest.fixture
def orchestrator(clients, scopes, consents, interactions, issuer, login_ui, consent_ui) -> AuthorizeOrchestrator:
    return AuthorizeOrchestrator(
        clients=clients,
        scopes=scopes,
        consents=consents,
        interactions=interactions,
        issuer=issuer,
        login=login_ui,
        consent=consent_ui,
    )
