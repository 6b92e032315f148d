"""Authorize pipeline outcomes.

The engine never produces raw URLs or HTTP responses. Each call into the
orchestrator returns exactly one of these models and the hosting layer turns it
into a redirect, a rendered page or an error page.

.. code-block:: python

    result = orchestrator.authorize(params, session)
    if isinstance(result, RedirectResult):
        url = build_redirect_url(result)   # hosting layer
    elif isinstance(result, RequireLoginResult):
        ...  # send the browser to the login UI with result.correlation_id

``kind`` is a literal discriminator for :data:`AuthorizeResult`.
"""

from typing import Annotated, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from .models import ConsentRequest, ResponseMode, SignInRequest


class RedirectResult(BaseModel):
    """Success or client-redirectable error, delivered to ``redirect_uri``."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["redirect"] = "redirect"
    redirect_uri: str
    response_mode: ResponseMode
    parameters: Tuple[Tuple[str, str], ...] = ()

    @property
    def params(self) -> dict:
        return dict(self.parameters)

    @property
    def is_error(self) -> bool:
        return "error" in self.params

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.params.get(name, default)


class LocalErrorResult(BaseModel):
    """Error that must be rendered by the authorization server itself."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["local_error"] = "local_error"
    error: str
    error_description: Optional[str] = None

    @property
    def reason(self) -> str:
        return self.error


class RequireLoginResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["require_login"] = "require_login"
    correlation_id: str
    sign_in: SignInRequest


class RequireConsentResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["require_consent"] = "require_consent"
    correlation_id: str
    scopes_to_show: Tuple[str, ...] = ()
    consent: ConsentRequest


AuthorizeResult = Annotated[
    Union[RedirectResult, LocalErrorResult, RequireLoginResult, RequireConsentResult],
    Field(discriminator="kind"),
]
