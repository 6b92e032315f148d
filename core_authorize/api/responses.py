"""Translation of authorize results into HTTP responses.

    =====================  ==============================================
    Result                 HTTP response
    =====================  ==============================================
    Redirect (query)       302, parameters appended to the query string
    Redirect (fragment)    302, parameters in the URL fragment
    Redirect (form_post)   200, auto-submitting HTML form
    RequireLogin           302 to the login UI with the correlation id
    RequireConsent         302 to the consent UI with the correlation id
    LocalError             400 JSON body (500 for server_error)
    =====================  ==============================================

Every response carries no-cache headers; authorize responses contain
credentials and must never be replayed from a cache.
"""

from typing import Dict, Iterable, Optional, Tuple
from urllib.parse import urlencode
import html

from fastapi import Response
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse

from ..constants import CLIENT_HOST, CONSENT_PATH, LOGIN_PATH
from ..exceptions import SERVER_ERROR
from ..models import ResponseMode
from ..results import (
    AuthorizeResult,
    LocalErrorResult,
    RedirectResult,
    RequireConsentResult,
    RequireLoginResult,
)

NO_CACHE_HEADERS: Dict[str, str] = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}

FORM_POST_TEMPLATE = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>Submit This Form</title></head>
<body onload="javascript:document.forms[0].submit()">
<form method="post" action="{action}">
{inputs}
<noscript><button type="submit">Continue</button></noscript>
</form>
</body>
</html>
"""


def build_redirect_url(result: RedirectResult) -> str:
    """Append the result parameters to the redirect URI in its response mode.

    Query parameters already present on the registered redirect URI are kept.
    """
    encoded = urlencode(result.parameters)
    if result.response_mode == ResponseMode.FRAGMENT:
        return f"{result.redirect_uri}#{encoded}" if encoded else result.redirect_uri
    if not encoded:
        return result.redirect_uri
    separator = "&" if "?" in result.redirect_uri else "?"
    return f"{result.redirect_uri}{separator}{encoded}"


def render_form_post(result: RedirectResult) -> str:
    inputs = "\n".join(
        f'<input type="hidden" name="{html.escape(name)}" value="{html.escape(value)}"/>'
        for name, value in result.parameters
    )
    return FORM_POST_TEMPLATE.format(action=html.escape(result.redirect_uri), inputs=inputs)


def ui_url(path: str, params: Iterable[Tuple[str, Optional[str]]] = (), host: Optional[str] = None) -> str:
    """Absolute login/consent UI URL rooted at ``CLIENT_HOST`` (relative when unset)."""
    base = (CLIENT_HOST if host is None else host).strip().rstrip("/")
    if not path.startswith("/"):
        path = "/" + path
    query = urlencode([(k, v) for k, v in params if v])
    return f"{base}{path}?{query}" if query else f"{base}{path}"


def login_url(result: RequireLoginResult, host: Optional[str] = None) -> str:
    sign_in = result.sign_in
    params = [
        ("correlation_id", result.correlation_id),
        ("client_id", sign_in.client_id),
        ("display", sign_in.display.value if sign_in.display else None),
        ("ui_locales", sign_in.ui_locales),
        ("login_hint", sign_in.login_hint),
        ("idp", sign_in.idp),
        ("tenant", sign_in.tenant),
        ("acr_values", " ".join(sign_in.acr_values)),
        ("prompt", " ".join(sorted(p.value for p in sign_in.prompt))),
    ]
    return ui_url(LOGIN_PATH, params, host)


def consent_url(result: RequireConsentResult, host: Optional[str] = None) -> str:
    consent = result.consent
    params = [
        ("correlation_id", result.correlation_id),
        ("client_id", consent.client_id),
        ("display", consent.display.value if consent.display else None),
        ("ui_locales", consent.ui_locales),
    ]
    return ui_url(CONSENT_PATH, params, host)


def to_response(result: AuthorizeResult) -> Response:
    if isinstance(result, RedirectResult):
        if result.response_mode == ResponseMode.FORM_POST:
            return HTMLResponse(render_form_post(result), headers=NO_CACHE_HEADERS)
        return RedirectResponse(build_redirect_url(result), status_code=302, headers=NO_CACHE_HEADERS)

    if isinstance(result, RequireLoginResult):
        return RedirectResponse(login_url(result), status_code=302, headers=NO_CACHE_HEADERS)

    if isinstance(result, RequireConsentResult):
        return RedirectResponse(consent_url(result), status_code=302, headers=NO_CACHE_HEADERS)

    return local_error_response(result)


def local_error_response(result: LocalErrorResult) -> JSONResponse:
    body = {"error": result.error}
    if result.error_description:
        body["error_description"] = result.error_description
    return JSONResponse(
        content=body,
        status_code=500 if result.error == SERVER_ERROR else 400,
        headers=NO_CACHE_HEADERS,
    )
