"""Successful authorize response composition.

Parameters are emitted in a fixed order so the redirect is deterministic::

    code, access_token, token_type, expires_in, id_token, scope, state

``scope`` is the granted set in request order and is only present when an
access token is issued. The identity token is issued last so it can bind the
code and access token it travels with.
"""

from typing import List, Tuple

from loguru import logger

from .exceptions import UpstreamError
from .interfaces import TokenIssuer
from .models import AuthorizeRequest, Subject
from .results import RedirectResult

TOKEN_TYPE_BEARER = "Bearer"


class ResponseComposer:

    def __init__(self, issuer: TokenIssuer):
        self.issuer = issuer

    def compose(self, request: AuthorizeRequest, subject: Subject, granted: Tuple[str, ...]) -> RedirectResult:
        granted = request.ordered(granted)
        parameters: List[Tuple[str, str]] = []

        try:
            code = None
            access_token = None
            if request.wants_code:
                code = self.issuer.issue_code(request, subject, granted)
                parameters.append(("code", code))

            if request.wants_access_token:
                access_token, expires_in = self.issuer.issue_access_token(request, subject, granted)
                parameters.append(("access_token", access_token))
                parameters.append(("token_type", TOKEN_TYPE_BEARER))
                parameters.append(("expires_in", str(expires_in)))

            if request.wants_identity_token:
                id_token = self.issuer.issue_identity_token(
                    request, subject, granted, code=code, access_token=access_token
                )
                parameters.append(("id_token", id_token))
        except Exception as e:
            logger.error("Token issuance failed", client_id=request.client_id, error=str(e))
            raise UpstreamError("Token issuance failed", context=request.error_context()) from e

        # code-only responses leave scope to the token endpoint
        if request.wants_access_token or request.wants_identity_token:
            parameters.append(("scope", " ".join(granted)))
        if request.state is not None:
            parameters.append(("state", request.state))

        logger.info(
            "Authorization granted",
            client_id=request.client_id,
            subject_id=subject.subject_id,
            response_type=request.response_type,
            response_mode=request.response_mode.value,
            scopes=list(granted),
        )
        return RedirectResult(
            redirect_uri=request.redirect_uri,
            response_mode=request.response_mode,
            parameters=tuple(parameters),
        )
