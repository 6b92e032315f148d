"""Authorize pipeline orchestration.

One authorize request moves through a fixed sequence of stages::

    validating -> authenticating -> consenting -> composing -> done

Either stage of the middle pair can suspend the request. The continuation is
persisted in the :class:`InteractionStore` and the pipeline returns a
:class:`RequireLoginResult` or :class:`RequireConsentResult`. When the login or
consent UI finishes it calls :meth:`AuthorizeOrchestrator.resume_login` or
:meth:`AuthorizeOrchestrator.resume_consent` with the correlation identifier,
and the pipeline continues from the next stage.

Any failure halts the pipeline and is turned into exactly one error result by
the :class:`ErrorComposer`; no partial success is ever produced.

Example:
    .. code-block:: python

        orchestrator = AuthorizeOrchestrator(
            clients=InMemoryClientStore([client]),
            scopes=InMemoryScopeStore.with_standard_scopes(),
            consents=InMemoryConsentStore(),
            interactions=InMemoryInteractionStore(),
            issuer=JwtTokenIssuer(),
        )
        result = orchestrator.authorize(request.query_params, session)
"""

from typing import Any, Callable, Mapping, Optional, Tuple
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from loguru import logger

from .authentication import Authenticated, AuthenticationGate
from .composer import ResponseComposer
from .consent import ConsentGate, Consented
from .constants import INTERACTION_TTL_SECONDS
from .errors import ErrorComposer
from .exceptions import (
    INVALID_REDIRECT_URI,
    AuthorizeException,
    ClientError,
    InteractionError,
    UpstreamError,
)
from .interfaces import (
    ClientStore,
    ConsentCollaborator,
    ConsentStore,
    InteractionStore,
    LoginCollaborator,
    ScopeStore,
    SessionProvider,
    TokenIssuer,
)
from .models import (
    AuthorizeRequest,
    Client,
    ConsentDecision,
    InteractionStage,
    InteractionState,
    LoginOutcome,
    Subject,
    utcnow,
)
from .results import AuthorizeResult
from .validator import RequestValidator


class AuthorizeStage(str, Enum):
    VALIDATING = "validating"
    AUTHENTICATING = "authenticating"
    CONSENTING = "consenting"
    COMPOSING = "composing"
    DONE = "done"


@dataclass
class _Pipeline:
    """Mutable working state of one pass through the stages."""

    stage: AuthorizeStage
    raw_params: Mapping[str, Any] = field(default_factory=dict)
    session: Optional[SessionProvider] = None
    request: Optional[AuthorizeRequest] = None
    client: Optional[Client] = None
    subject: Optional[Subject] = None
    granted: Tuple[str, ...] = ()
    result: Optional[AuthorizeResult] = None


class AuthorizeOrchestrator:

    def __init__(
        self,
        *,
        clients: ClientStore,
        scopes: ScopeStore,
        consents: ConsentStore,
        interactions: InteractionStore,
        issuer: TokenIssuer,
        login: Optional[LoginCollaborator] = None,
        consent: Optional[ConsentCollaborator] = None,
        interaction_ttl: int = INTERACTION_TTL_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.clients = clients
        self.interactions = interactions
        self.clock = clock
        self.validator = RequestValidator(clients, scopes)
        self.authentication = AuthenticationGate(interactions, login, ttl=interaction_ttl, clock=clock)
        self.consent = ConsentGate(scopes, consents, interactions, consent, ttl=interaction_ttl, clock=clock)
        self.composer = ResponseComposer(issuer)
        self.error_composer = ErrorComposer()

    def authorize(self, raw_params: Mapping[str, Any], session: Optional[SessionProvider]) -> AuthorizeResult:
        """Run a fresh authorize request through the pipeline."""
        return self._run(_Pipeline(stage=AuthorizeStage.VALIDATING, raw_params=raw_params, session=session))

    def resume_login(self, correlation_id: str, outcome: LoginOutcome) -> AuthorizeResult:
        """Continue a request suspended for login with the login UI's verdict."""
        pipeline = _Pipeline(stage=AuthorizeStage.CONSENTING)
        try:
            state = self._consume(correlation_id, InteractionStage.LOGIN)
            pipeline.request = state.request
            pipeline.client = self._trusted_client(state.request)
            pipeline.subject = self.authentication.resume(state, outcome)
        except Exception as e:
            return self._fail(e, pipeline.request)
        return self._run(pipeline)

    def resume_consent(self, correlation_id: str, decision: ConsentDecision) -> AuthorizeResult:
        """Continue a request suspended for consent with the end-user's decision."""
        pipeline = _Pipeline(stage=AuthorizeStage.COMPOSING)
        try:
            state = self._consume(correlation_id, InteractionStage.CONSENT)
            pipeline.request = state.request
            pipeline.subject = state.subject
            pipeline.client = self._trusted_client(state.request)
            pipeline.granted = self.consent.resume(state, pipeline.client, decision)
        except Exception as e:
            return self._fail(e, pipeline.request)
        return self._run(pipeline)

    def _run(self, pipeline: _Pipeline) -> AuthorizeResult:
        steps = {
            AuthorizeStage.VALIDATING: self._validate,
            AuthorizeStage.AUTHENTICATING: self._authenticate,
            AuthorizeStage.CONSENTING: self._consent,
            AuthorizeStage.COMPOSING: self._compose,
        }
        try:
            while pipeline.stage != AuthorizeStage.DONE:
                pipeline.stage = steps[pipeline.stage](pipeline)
        except Exception as e:
            return self._fail(e, pipeline.request)
        return pipeline.result

    def _validate(self, pipeline: _Pipeline) -> AuthorizeStage:
        pipeline.request, pipeline.client = self.validator.validate_with_client(pipeline.raw_params)
        return AuthorizeStage.AUTHENTICATING

    def _authenticate(self, pipeline: _Pipeline) -> AuthorizeStage:
        outcome = self.authentication.evaluate(pipeline.request, pipeline.session)
        if not isinstance(outcome, Authenticated):
            pipeline.result = outcome
            return AuthorizeStage.DONE
        pipeline.subject = outcome.subject
        return AuthorizeStage.CONSENTING

    def _consent(self, pipeline: _Pipeline) -> AuthorizeStage:
        outcome = self.consent.evaluate(pipeline.request, pipeline.client, pipeline.subject)
        if not isinstance(outcome, Consented):
            pipeline.result = outcome
            return AuthorizeStage.DONE
        pipeline.granted = outcome.scopes
        return AuthorizeStage.COMPOSING

    def _compose(self, pipeline: _Pipeline) -> AuthorizeStage:
        pipeline.result = self.composer.compose(pipeline.request, pipeline.subject, pipeline.granted)
        return AuthorizeStage.DONE

    def _consume(self, correlation_id: str, stage: InteractionStage) -> InteractionState:
        """Fetch and remove the interaction state. A correlation id is usable exactly once."""
        if not correlation_id:
            raise InteractionError("Missing correlation_id", local=True)

        try:
            state = self.interactions.get(correlation_id)
        except Exception as e:
            logger.error("Interaction store lookup failed", error=str(e))
            raise UpstreamError("Interaction lookup failed", local=True) from e

        if state is None or state.is_expired(self.clock()):
            logger.warning("Unknown or expired interaction", correlation_id=correlation_id[:4] + "...")
            raise InteractionError("Unknown or expired interaction", local=True)

        if state.stage != stage:
            logger.warning(
                "Interaction resumed at the wrong stage",
                client_id=state.request.client_id,
                expected=stage.value,
                actual=state.stage.value,
            )
            raise InteractionError(
                f"Interaction is not awaiting {stage.value}",
                context=state.request.error_context(),
            )

        try:
            removed = self.interactions.delete(correlation_id)
        except Exception as e:
            logger.error("Interaction store delete failed", error=str(e))
            raise UpstreamError("Interaction lookup failed", local=True) from e
        if not removed:
            logger.warning("Interaction already completed", correlation_id=correlation_id[:4] + "...")
            raise InteractionError("Interaction already completed", local=True)
        return state

    def _trusted_client(self, request: AuthorizeRequest) -> Client:
        """Re-read the client; the registration may have changed while the user was away."""
        try:
            client = self.clients.find(request.client_id)
        except Exception as e:
            logger.error("Client store lookup failed", client_id=request.client_id, error=str(e))
            raise UpstreamError("Client lookup failed", local=True) from e

        if client is None or not client.enabled:
            raise ClientError("Unknown client")
        if not client.is_redirect_uri_registered(request.redirect_uri):
            raise ClientError("redirect_uri not registered for this client", error=INVALID_REDIRECT_URI)
        return client

    def _fail(self, exc: Exception, request: Optional[AuthorizeRequest]) -> AuthorizeResult:
        context = request.error_context() if request is not None else None
        if isinstance(exc, AuthorizeException):
            exc.with_context(context)
        else:
            logger.exception("Unexpected failure in authorize pipeline")
            exc = UpstreamError("Internal server error", context=context)
        return self.error_composer.compose(exc)
