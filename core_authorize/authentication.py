"""End-user authentication gate.

Decides whether the caller's session satisfies the validated request. If it
does not, the request is suspended: its continuation is stored under a fresh
correlation identifier and a :class:`RequireLoginResult` tells the hosting
layer to send the browser to the login UI.

A session does not satisfy a request when:
    - there is no session, or it has expired
    - ``acr_values`` asked for an identity provider (``idp:``) or tenant
      (``tenant:``) other than the session's
    - ``max_age`` is exceeded
    - ``prompt`` contains ``login`` or ``select_account``

With ``prompt=none`` the gate never suspends and fails with ``login_required``.

On resume, a re-authentication ``prompt`` requires a sign-in made after the
request was suspended, and ``max_age`` is checked again against the resume time.
"""

from typing import Callable, Optional, Union
from dataclasses import dataclass
from datetime import datetime, timedelta
import secrets

from loguru import logger

from .constants import INTERACTION_TTL_SECONDS
from .exceptions import ACCESS_DENIED, LOGIN_REQUIRED, InteractionError, PolicyError, UpstreamError
from .interfaces import InteractionStore, LoginCollaborator, SessionProvider
from .models import (
    AuthorizeRequest,
    InteractionStage,
    InteractionState,
    LoginOutcome,
    Prompt,
    SignInRequest,
    Subject,
    utcnow,
)
from .results import RequireLoginResult

REAUTHENTICATE_PROMPTS = frozenset({Prompt.LOGIN, Prompt.SELECT_ACCOUNT})


def new_correlation_id() -> str:
    return secrets.token_urlsafe(32)


@dataclass(frozen=True)
class Authenticated:
    subject: Subject


class AuthenticationGate:

    def __init__(
        self,
        interactions: InteractionStore,
        login: Optional[LoginCollaborator] = None,
        ttl: int = INTERACTION_TTL_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.interactions = interactions
        self.login = login
        self.ttl = ttl
        self.clock = clock

    def evaluate(self, request: AuthorizeRequest, session: SessionProvider) -> Union[Authenticated, RequireLoginResult]:
        try:
            subject = session.current() if session is not None else None
        except Exception as e:
            logger.error("Session lookup failed", client_id=request.client_id, error=str(e))
            raise UpstreamError("Session lookup failed") from e

        reason = self.login_reason(request, subject)
        if reason is None:
            logger.debug("Session satisfies request", client_id=request.client_id, subject_id=subject.subject_id)
            return Authenticated(subject)

        if Prompt.NONE in request.prompt:
            logger.debug("Login required but prompt=none", client_id=request.client_id, reason=reason)
            raise PolicyError(reason, error=LOGIN_REQUIRED)

        return self.require_login(request, reason)

    def login_reason(
        self,
        request: AuthorizeRequest,
        subject: Optional[Subject],
        *,
        honor_prompt: bool = True,
    ) -> Optional[str]:
        """Return why ``subject`` cannot be used for ``request``, or None if it can."""
        now = self.clock()
        if subject is None:
            return "No authenticated session"
        if subject.is_expired(now):
            return "Session expired"
        if request.idp and subject.identity_provider != request.idp:
            return "Session identity provider does not match requested idp"
        if request.tenant and subject.tenant != request.tenant:
            return "Session tenant does not match requested tenant"
        if not honor_prompt:
            return None
        if request.max_age is not None and not subject.authenticated_within(request.max_age, now):
            return "Authentication older than max_age"
        if request.prompt & REAUTHENTICATE_PROMPTS:
            return "Re-authentication requested by prompt"
        return None

    def freshness_reason(self, state: InteractionState, subject: Subject) -> Optional[str]:
        """Check that a resumed login honours ``prompt`` and ``max_age``.

        A re-authentication prompt needs a login that happened after the request
        was suspended. ``max_age`` is met by such a login, or by an authentication
        still within ``max_age`` at resume time.
        """
        request = state.request
        reauthenticate = bool(request.prompt & REAUTHENTICATE_PROMPTS)
        if not reauthenticate and request.max_age is None:
            return None

        # session tokens carry auth_time in whole seconds
        started = state.created_at.replace(microsecond=0)
        fresh = subject.authenticated_at is not None and subject.authenticated_at >= started
        if fresh:
            return None
        if reauthenticate:
            return "No authentication since the request was suspended"
        if not subject.authenticated_within(request.max_age, self.clock()):
            return "Authentication older than max_age"
        return None

    def require_login(self, request: AuthorizeRequest, reason: str) -> RequireLoginResult:
        now = self.clock()
        state = InteractionState(
            correlation_id=new_correlation_id(),
            stage=InteractionStage.LOGIN,
            request=request,
            created_at=now,
            expires_at=now + timedelta(seconds=self.ttl),
        )
        try:
            self.interactions.put(state)
        except Exception as e:
            logger.error("Failed to persist interaction state", client_id=request.client_id, error=str(e))
            raise UpstreamError("Failed to persist interaction state") from e

        sign_in = SignInRequest(
            correlation_id=state.correlation_id,
            client_id=request.client_id,
            display=request.display,
            ui_locales=request.ui_locales,
            login_hint=request.login_hint,
            idp=request.idp,
            tenant=request.tenant,
            acr_values=request.acr_values,
            prompt=request.prompt,
            max_age=request.max_age,
            custom_parameters=request.custom_parameters,
        )
        if self.login is not None:
            self.login.begin_login(sign_in)

        logger.info(
            "Authorization suspended pending login",
            client_id=request.client_id,
            correlation_id=state.correlation_id[:4] + "...",
            reason=reason,
        )
        return RequireLoginResult(correlation_id=state.correlation_id, sign_in=sign_in)

    def resume(self, state: InteractionState, outcome: LoginOutcome) -> Subject:
        """Apply the login UI's verdict to a suspended request.

        Failures are rendered locally; the login UI already had the user's attention.
        """
        request = state.request
        if outcome is None or not outcome.success or outcome.subject is None:
            description = (outcome.error_description if outcome else None) or "Login failed"
            logger.info("Login interaction failed", client_id=request.client_id, error_description=description)
            raise InteractionError(description, error=(outcome.error if outcome else None) or ACCESS_DENIED, local=True)

        reason = self.login_reason(request, outcome.subject, honor_prompt=False)
        if reason is None:
            reason = self.freshness_reason(state, outcome.subject)
        if reason is not None:
            logger.warning(
                "Authenticated subject does not satisfy request",
                client_id=request.client_id,
                subject_id=outcome.subject.subject_id,
                reason=reason,
            )
            raise InteractionError(reason, error=ACCESS_DENIED, local=True)

        logger.debug("Login interaction completed", client_id=request.client_id, subject_id=outcome.subject.subject_id)
        return outcome.subject
