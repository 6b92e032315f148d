from datetime import timedelta
from unittest import mock
from urllib.parse import urlparse

import pytest

from core_authorize.memory import InMemoryInteractionStore, StaticSessionProvider
from core_authorize.models import ConsentDecision, LoginOutcome, ResponseMode, utcnow
from core_authorize.orchestrator import AuthorizeOrchestrator
from core_authorize.results import LocalErrorResult, RedirectResult, RequireConsentResult, RequireLoginResult

from conftest import CLIENT1_CALLBACK, CLIENT2_CALLBACK, CLIENT3_CALLBACK, make_params

CHALLENGE = "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"


def client2_params(**overrides) -> dict:
    overrides.setdefault("client_id", "client2")
    overrides.setdefault("redirect_uri", CLIENT2_CALLBACK)
    overrides.setdefault("response_type", "id_token token")
    overrides.setdefault("scope", "openid api1 api2")
    return make_params(**overrides)


def consent(scopes, remember=False) -> ConsentDecision:
    return ConsentDecision(subject_id="bob", client_id="client2", scopes_consented=frozenset(scopes), remember=remember)


def _authority_and_path(uri: str) -> str:
    parsed = urlparse(uri)
    return f"{parsed.scheme}://{parsed.netloc}{parsed.path}"


def test_login_then_redirect_with_identity_token(orchestrator, anonymous, bob, login_ui, issuer):
    result = orchestrator.authorize(make_params(), anonymous)

    assert isinstance(result, RequireLoginResult)
    assert login_ui.last.correlation_id == result.correlation_id

    final = orchestrator.resume_login(result.correlation_id, LoginOutcome.succeeded(bob))

    assert isinstance(final, RedirectResult)
    assert final.redirect_uri == CLIENT1_CALLBACK
    assert final.response_mode == ResponseMode.FRAGMENT
    assert [name for name, _ in final.parameters] == ["id_token", "state"]
    assert final.get("state") == "123_state"

    claims = issuer.decode(final.get("id_token"), audience="client1")
    assert claims.sub == "bob"
    assert claims.nonce == "nonce_1"


def test_consent_then_redirect_with_consented_scopes(orchestrator, bob_session, consent_ui):
    result = orchestrator.authorize(client2_params(), bob_session)

    assert isinstance(result, RequireConsentResult)
    assert set(result.scopes_to_show) == {"openid", "api1", "api2"}
    assert consent_ui.last.correlation_id == result.correlation_id

    final = orchestrator.resume_consent(result.correlation_id, consent({"openid", "api2"}))

    assert isinstance(final, RedirectResult)
    assert not final.is_error
    assert set(final.get("scope").split()) == {"openid", "api2"}
    assert final.get("token_type") == "Bearer"
    assert final.get("state") == "123_state"


def test_unregistered_redirect_uri_is_local(orchestrator, bob_session):
    result = orchestrator.authorize(make_params(redirect_uri="https://attacker/callback"), bob_session)
    assert result == LocalErrorResult(error="invalid_redirect_uri", error_description=result.error_description)
    assert result.reason == "invalid_redirect_uri"


def test_unknown_client_is_local(orchestrator, bob_session):
    result = orchestrator.authorize(make_params(client_id="ghost"), bob_session)
    assert isinstance(result, LocalErrorResult)
    assert result.error == "invalid_client"


def test_full_login_and_consent_flow(orchestrator, anonymous, bob, consents):
    login = orchestrator.authorize(client2_params(), anonymous)
    assert isinstance(login, RequireLoginResult)

    consent_result = orchestrator.resume_login(login.correlation_id, LoginOutcome.succeeded(bob))
    assert isinstance(consent_result, RequireConsentResult)
    assert consent_result.consent.subject_id == "bob"

    final = orchestrator.resume_consent(consent_result.correlation_id, consent({"openid", "api1"}, remember=True))
    assert final.get("scope") == "openid api1"
    assert consents.lookup("bob", "client2").scopes_consented == frozenset({"openid", "api1"})


def test_remembered_consent_skips_prompt_until_scope_added(orchestrator, bob_session):
    first = orchestrator.authorize(client2_params(scope="openid api1"), bob_session)
    orchestrator.resume_consent(first.correlation_id, consent({"openid", "api1"}, remember=True))

    again = orchestrator.authorize(client2_params(scope="api1 openid"), bob_session)
    assert isinstance(again, RedirectResult)
    assert again.get("scope") == "api1 openid"

    broader = orchestrator.authorize(client2_params(scope="openid api1 api2"), bob_session)
    assert isinstance(broader, RequireConsentResult)


def test_narrowed_consent_reported_for_id_token(orchestrator, bob_session):
    result = orchestrator.authorize(client2_params(response_type="id_token", scope="openid profile"), bob_session)

    final = orchestrator.resume_consent(result.correlation_id, consent({"openid"}))

    assert final.get("scope") == "openid"
    assert final.get("id_token")


@pytest.mark.parametrize("overrides", [{"prompt": "login"}, {"prompt": "select_account"}, {"max_age": "60"}])
def test_stale_session_cannot_complete_reauthentication(orchestrator, bob_session, bob, overrides):
    result = orchestrator.authorize(make_params(**overrides), bob_session)
    assert isinstance(result, RequireLoginResult)

    # same session the request was suspended with
    outcome = orchestrator.resume_login(result.correlation_id, LoginOutcome.succeeded(bob))

    assert isinstance(outcome, LocalErrorResult)
    assert outcome.error == "access_denied"


def test_fresh_login_completes_reauthentication(orchestrator, bob_session, bob):
    result = orchestrator.authorize(make_params(prompt="login", max_age="60"), bob_session)

    fresh = bob.model_copy(update={"authenticated_at": utcnow()})
    outcome = orchestrator.resume_login(result.correlation_id, LoginOutcome.succeeded(fresh))

    assert isinstance(outcome, RedirectResult)
    assert outcome.get("id_token")


def test_correlation_id_is_single_use(orchestrator, anonymous, bob):
    result = orchestrator.authorize(make_params(), anonymous)

    first = orchestrator.resume_login(result.correlation_id, LoginOutcome.succeeded(bob))
    second = orchestrator.resume_login(result.correlation_id, LoginOutcome.succeeded(bob))

    assert isinstance(first, RedirectResult)
    assert isinstance(second, LocalErrorResult)
    assert second.error == "invalid_request"


def test_consent_correlation_id_is_single_use(orchestrator, bob_session):
    result = orchestrator.authorize(client2_params(), bob_session)
    orchestrator.resume_consent(result.correlation_id, consent({"openid"}))
    replay = orchestrator.resume_consent(result.correlation_id, consent({"openid"}))
    assert replay == LocalErrorResult(error="invalid_request", error_description=replay.error_description)


def test_concurrent_consumer_losing_delete_fails(orchestrator, anonymous, bob, interactions):
    result = orchestrator.authorize(make_params(), anonymous)

    # another worker consumed the state between our get and delete
    with mock.patch.object(interactions, "delete", return_value=False):
        outcome = orchestrator.resume_login(result.correlation_id, LoginOutcome.succeeded(bob))

    assert isinstance(outcome, LocalErrorResult)
    assert outcome.error == "invalid_request"


def test_unknown_correlation_id(orchestrator, bob):
    assert orchestrator.resume_login("nope", LoginOutcome.succeeded(bob)).error == "invalid_request"
    assert orchestrator.resume_consent("", consent({"openid"})).error == "invalid_request"


def test_expired_interaction_fails_like_unknown(clients, scopes, consents, issuer, anonymous, bob):
    now = [1000.0]
    interactions = InMemoryInteractionStore(ttl=60, clock=lambda: now[0])
    orchestrator = AuthorizeOrchestrator(
        clients=clients, scopes=scopes, consents=consents, interactions=interactions, issuer=issuer
    )
    result = orchestrator.authorize(make_params(), anonymous)

    now[0] += 61
    outcome = orchestrator.resume_login(result.correlation_id, LoginOutcome.succeeded(bob))
    assert isinstance(outcome, LocalErrorResult)
    assert outcome.error == "invalid_request"


def test_expired_state_by_timestamp(clients, scopes, consents, interactions, issuer, anonymous, bob):
    clock = mock.Mock(return_value=utcnow())
    orchestrator = AuthorizeOrchestrator(
        clients=clients,
        scopes=scopes,
        consents=consents,
        interactions=interactions,
        issuer=issuer,
        interaction_ttl=60,
        clock=clock,
    )
    result = orchestrator.authorize(make_params(), anonymous)

    clock.return_value = utcnow() + timedelta(seconds=120)
    assert orchestrator.resume_login(result.correlation_id, LoginOutcome.succeeded(bob)).error == "invalid_request"


def test_wrong_stage_is_redirected_and_state_kept(orchestrator, anonymous, bob, interactions):
    result = orchestrator.authorize(make_params(), anonymous)

    wrong = orchestrator.resume_consent(result.correlation_id, consent({"openid"}))
    assert isinstance(wrong, RedirectResult)
    assert wrong.get("error") == "invalid_request"
    assert wrong.get("state") == "123_state"

    right = orchestrator.resume_login(result.correlation_id, LoginOutcome.succeeded(bob))
    assert isinstance(right, RedirectResult)
    assert not right.is_error


def test_login_failure_is_local(orchestrator, anonymous):
    result = orchestrator.authorize(make_params(), anonymous)
    outcome = orchestrator.resume_login(result.correlation_id, LoginOutcome.failed())
    assert outcome == LocalErrorResult(error="access_denied", error_description="Login failed")


def test_client_removed_while_user_away(orchestrator, anonymous, bob, clients, client1):
    result = orchestrator.authorize(make_params(), anonymous)
    clients.add(client1.model_copy(update={"redirect_uris": frozenset({"https://client1/new"})}))

    outcome = orchestrator.resume_login(result.correlation_id, LoginOutcome.succeeded(bob))
    assert isinstance(outcome, LocalErrorResult)
    assert outcome.error == "invalid_redirect_uri"


def test_consent_denied_is_redirected(orchestrator, bob_session):
    result = orchestrator.authorize(client2_params(state="deny-me"), bob_session)
    final = orchestrator.resume_consent(result.correlation_id, consent(set()))

    assert final.get("error") == "access_denied"
    assert final.get("state") == "deny-me"
    assert final.redirect_uri == CLIENT2_CALLBACK


def test_prompt_none_never_creates_interaction(orchestrator, anonymous, bob_session, interactions, login_ui):
    login = orchestrator.authorize(make_params(prompt="none"), anonymous)
    consent_needed = orchestrator.authorize(client2_params(prompt="none"), bob_session)

    assert login.get("error") == "login_required"
    assert consent_needed.get("error") == "consent_required"
    assert interactions.size() == 0
    assert not login_ui.called


def test_issuer_failure_redirects_server_error(clients, scopes, consents, interactions, bob_session):
    issuer = mock.Mock()
    issuer.issue_identity_token.side_effect = RuntimeError("signing key unavailable")
    orchestrator = AuthorizeOrchestrator(
        clients=clients, scopes=scopes, consents=consents, interactions=interactions, issuer=issuer
    )

    result = orchestrator.authorize(make_params(state="keep me"), bob_session)

    assert isinstance(result, RedirectResult)
    assert result.parameters[0] == ("error", "server_error")
    assert result.get("state") == "keep me"


def test_unexpected_collaborator_error_after_validation(clients, scopes, interactions, issuer, bob_session):
    consents = mock.Mock()
    consents.lookup.side_effect = KeyError("boom")
    orchestrator = AuthorizeOrchestrator(
        clients=clients, scopes=scopes, consents=consents, interactions=interactions, issuer=issuer
    )
    result = orchestrator.authorize(client2_params(), bob_session)
    assert result.get("error") == "server_error"


def test_code_flow_uses_query(orchestrator, bob_session):
    result = orchestrator.authorize(
        make_params(
            client_id="client3",
            redirect_uri=CLIENT3_CALLBACK,
            response_type="code",
            scope="openid api1",
            nonce=None,
            code_challenge=CHALLENGE,
            code_challenge_method="S256",
        ),
        bob_session,
    )
    assert result.response_mode == ResponseMode.QUERY
    assert [name for name, _ in result.parameters] == ["code", "state"]


@pytest.mark.parametrize("response_type", ["code id_token", "code token", "code id_token token"])
def test_hybrid_responses_use_fragment(orchestrator, bob_session, response_type):
    result = orchestrator.authorize(
        make_params(
            client_id="client3",
            redirect_uri=CLIENT3_CALLBACK,
            response_type=response_type,
            scope="openid api1",
            code_challenge=CHALLENGE,
        ),
        bob_session,
    )
    assert isinstance(result, RedirectResult)
    assert not result.is_error
    assert result.response_mode == ResponseMode.FRAGMENT
    assert result.parameters[0][0] == "code"


@pytest.mark.parametrize(
    "params",
    [
        make_params(),
        make_params(response_type="bogus"),
        make_params(scope="openid email"),
        make_params(prompt="none", state="§ odd & state="),
        client2_params(),
        client2_params(response_type="token", scope="api1 api2"),
    ],
)
def test_state_echo_and_redirect_target(orchestrator, bob_session, params):
    result = orchestrator.authorize(params, bob_session)

    if isinstance(result, RequireConsentResult):
        result = orchestrator.resume_consent(result.correlation_id, consent({"openid", "api1"}))

    assert isinstance(result, RedirectResult)
    assert result.get("state") == params["state"]
    assert _authority_and_path(result.redirect_uri) == _authority_and_path(params["redirect_uri"])
    if {"token", "id_token"} & set(params["response_type"].split()):
        assert result.response_mode == ResponseMode.FRAGMENT


def test_granted_scopes_subset_of_requested(orchestrator, bob_session):
    result = orchestrator.authorize(client2_params(scope="openid api1"), bob_session)
    final = orchestrator.resume_consent(result.correlation_id, consent({"openid", "api1", "api2", "profile"}))
    assert set(final.get("scope").split()) <= {"openid", "api1"}


def test_session_without_login_collaborator(clients, scopes, consents, interactions, issuer):
    orchestrator = AuthorizeOrchestrator(
        clients=clients, scopes=scopes, consents=consents, interactions=interactions, issuer=issuer
    )
    result = orchestrator.authorize(make_params(), StaticSessionProvider())
    assert isinstance(result, RequireLoginResult)
