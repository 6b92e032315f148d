"""Authorization endpoint error taxonomy.

Every failure the authorize pipeline can produce is an :class:`AuthorizeException`
carrying the OAuth ``error`` code and an optional ``error_description``.

Whether an error may be delivered back to the client depends only on the
:class:`ErrorContext` attached to it. The context exists once the redirect URI
has been confirmed against the client registration; errors without one are
rendered locally by the hosting layer.

Categories:
    - :class:`ClientError`: unknown client or untrusted redirect URI. Never redirected.
    - :class:`RequestError`: malformed or inconsistent request parameters.
    - :class:`PolicyError`: scope, flow or consent policy rejected the request.
    - :class:`InteractionError`: unknown, expired or replayed correlation identifier.
    - :class:`UpstreamError`: a collaborator (token issuer, store) failed.
"""

from typing import Optional

from .models import ErrorContext

INVALID_REQUEST = "invalid_request"
INVALID_CLIENT = "invalid_client"
INVALID_REDIRECT_URI = "invalid_redirect_uri"
UNAUTHORIZED_CLIENT = "unauthorized_client"
INVALID_SCOPE = "invalid_scope"
UNSUPPORTED_RESPONSE_TYPE = "unsupported_response_type"
ACCESS_DENIED = "access_denied"
LOGIN_REQUIRED = "login_required"
CONSENT_REQUIRED = "consent_required"
SERVER_ERROR = "server_error"


class AuthorizeException(Exception):

    error: str = INVALID_REQUEST
    # errors that must never reach a client controlled redirect target
    local: bool = False

    def __init__(
        self,
        description: Optional[str] = None,
        *,
        error: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        local: Optional[bool] = None,
    ):
        if error:
            self.error = error
        if local is not None:
            self.local = local
        self.description = description
        self.context = context
        super().__init__(f"{self.error}: {description}" if description else self.error)

    @property
    def redirectable(self) -> bool:
        return self.context is not None and not self.local

    def with_context(self, context: Optional[ErrorContext]) -> "AuthorizeException":
        """Attach the trusted redirect context unless one is already present."""
        if self.context is None and not self.local:
            self.context = context
        return self


class ClientError(AuthorizeException):
    """The client or its redirect URI cannot be trusted."""

    error = INVALID_CLIENT
    local = True


class RequestError(AuthorizeException):
    error = INVALID_REQUEST


class PolicyError(AuthorizeException):
    error = INVALID_SCOPE


class InteractionError(AuthorizeException):
    error = INVALID_REQUEST


class UpstreamError(AuthorizeException):
    error = SERVER_ERROR


class UnknownScopeError(Exception):
    """Raised by a ScopeStore when asked to resolve scope names it does not know."""

    def __init__(self, names):
        self.names = sorted(names)
        super().__init__(f"Unknown scope(s): {' '.join(self.names)}")
