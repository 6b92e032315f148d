"""End-user consent gate.

Consent is required when the client is registered with ``require_consent`` and
no remembered decision for this subject/client pair covers every requested
scope, or when the request carries ``prompt=consent``.

A remembered decision is never broadened: if a later request asks for a scope
the remembered decision does not include, the user is asked again, and when
the new decision is remembered it replaces the old one with exactly what was
granted.
"""

from typing import Callable, FrozenSet, List, Optional, Tuple, Union
from dataclasses import dataclass
from datetime import datetime, timedelta

from loguru import logger

from .authentication import new_correlation_id
from .constants import INTERACTION_TTL_SECONDS, OPENID_SCOPE
from .exceptions import ACCESS_DENIED, CONSENT_REQUIRED, InteractionError, PolicyError, UpstreamError
from .interfaces import ConsentCollaborator, ConsentStore, InteractionStore, ScopeStore
from .models import (
    AuthorizeRequest,
    Client,
    ConsentDecision,
    ConsentRequest,
    ConsentScope,
    InteractionStage,
    InteractionState,
    Prompt,
    Scope,
    Subject,
    utcnow,
)
from .results import RequireConsentResult


@dataclass(frozen=True)
class Consented:
    scopes: Tuple[str, ...]


class ConsentGate:

    def __init__(
        self,
        scopes: ScopeStore,
        consents: ConsentStore,
        interactions: InteractionStore,
        consent_ui: Optional[ConsentCollaborator] = None,
        ttl: int = INTERACTION_TTL_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.scopes = scopes
        self.consents = consents
        self.interactions = interactions
        self.consent_ui = consent_ui
        self.ttl = ttl
        self.clock = clock

    def evaluate(
        self, request: AuthorizeRequest, client: Client, subject: Subject
    ) -> Union[Consented, RequireConsentResult]:
        if not self.is_consent_required(request, client, subject):
            return Consented(request.scopes)

        if Prompt.NONE in request.prompt:
            logger.debug("Consent required but prompt=none", client_id=client.client_id)
            raise PolicyError("Consent required", error=CONSENT_REQUIRED)

        return self.require_consent(request, client, subject)

    def is_consent_required(self, request: AuthorizeRequest, client: Client, subject: Subject) -> bool:
        if Prompt.CONSENT in request.prompt:
            return True
        if not client.require_consent:
            return False

        try:
            remembered = self.consents.lookup(subject.subject_id, client.client_id)
        except Exception as e:
            logger.error("Consent store lookup failed", client_id=client.client_id, error=str(e))
            raise UpstreamError("Consent lookup failed") from e

        if remembered is not None and request.scope_set <= remembered.scopes_consented:
            logger.debug(
                "Remembered consent covers request",
                client_id=client.client_id,
                subject_id=subject.subject_id,
            )
            return False
        return True

    def require_consent(self, request: AuthorizeRequest, client: Client, subject: Subject) -> RequireConsentResult:
        shown = [s for s in self._resolve(request) if s.show_in_consent]

        now = self.clock()
        state = InteractionState(
            correlation_id=new_correlation_id(),
            stage=InteractionStage.CONSENT,
            request=request,
            subject=subject,
            created_at=now,
            expires_at=now + timedelta(seconds=self.ttl),
        )
        try:
            self.interactions.put(state)
        except Exception as e:
            logger.error("Failed to persist interaction state", client_id=client.client_id, error=str(e))
            raise UpstreamError("Failed to persist interaction state") from e

        consent = ConsentRequest(
            correlation_id=state.correlation_id,
            client_id=client.client_id,
            client_name=client.client_name,
            subject_id=subject.subject_id,
            display=request.display,
            ui_locales=request.ui_locales,
            scopes_requested=request.scopes,
            scopes_to_show=[
                ConsentScope(name=s.name, type=s.type, display_name=s.display_name, description=s.description)
                for s in shown
            ],
            allow_remember=client.allow_remember_consent,
        )
        if self.consent_ui is not None:
            self.consent_ui.begin_consent(consent)

        logger.info(
            "Authorization suspended pending consent",
            client_id=client.client_id,
            subject_id=subject.subject_id,
            correlation_id=state.correlation_id[:4] + "...",
            scopes_to_show=[s.name for s in shown],
        )
        return RequireConsentResult(
            correlation_id=state.correlation_id,
            scopes_to_show=tuple(s.name for s in shown),
            consent=consent,
        )

    def resume(self, state: InteractionState, client: Client, decision: ConsentDecision) -> Tuple[str, ...]:
        """Return the granted scopes, in request order, for a completed consent interaction."""
        request = state.request
        subject = state.subject
        if subject is None:
            raise InteractionError("Interaction has no authenticated subject")
        if decision is None:
            raise InteractionError("Missing consent decision")
        if decision.subject_id != subject.subject_id or decision.client_id != request.client_id:
            logger.warning(
                "Consent decision does not match pending request",
                client_id=request.client_id,
                decision_client_id=decision.client_id,
            )
            raise InteractionError("Consent decision does not match the pending request")

        consented = decision.scopes_consented & request.scope_set
        if not consented:
            logger.info("User denied consent", client_id=client.client_id, subject_id=subject.subject_id)
            raise PolicyError("The user denied the request", error=ACCESS_DENIED)

        granted = request.ordered(consented | self._implicit_scopes(request))
        if request.wants_identity_token and OPENID_SCOPE not in granted:
            raise PolicyError("openid scope was not consented", error=ACCESS_DENIED)

        if decision.remember and client.allow_remember_consent:
            try:
                self.consents.save(
                    ConsentDecision(
                        subject_id=subject.subject_id,
                        client_id=client.client_id,
                        scopes_consented=frozenset(granted),
                        remember=True,
                        created_at=self.clock(),
                    )
                )
            except Exception as e:
                logger.error("Failed to save consent decision", client_id=client.client_id, error=str(e))
                raise UpstreamError("Failed to save consent decision") from e

        logger.debug(
            "Consent interaction completed",
            client_id=client.client_id,
            subject_id=subject.subject_id,
            granted=list(granted),
        )
        return granted

    def _resolve(self, request: AuthorizeRequest) -> List[Scope]:
        try:
            return self.scopes.resolve(request.scopes)
        except Exception as e:
            logger.error("Scope store lookup failed", client_id=request.client_id, error=str(e))
            raise UpstreamError("Scope lookup failed") from e

    def _implicit_scopes(self, request: AuthorizeRequest) -> FrozenSet[str]:
        """Requested scopes that are never disclosed and therefore granted without consent."""
        return frozenset(s.name for s in self._resolve(request) if not s.show_in_consent)
