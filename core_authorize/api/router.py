"""Authorize endpoint routes.

Routes:
    GET  /auth/v1/authorize                   start an authorization request (query)
    POST /auth/v1/authorize                   start an authorization request (form)
    GET  /auth/v1/authorize/callback/login    login UI hands back control
    POST /auth/v1/authorize/callback/consent  consent UI posts the end-user's decision

The login UI returns the browser to the login callback with ``correlation_id``
once it has established the session cookie, or with ``error`` (and optionally
``error_description``) when the user could not be authenticated.

The consent form posts ``correlation_id``, ``client_id``, the consented
``scope`` values (repeated or space separated), ``remember`` and ``deny``.
"""

from typing import Dict, List, Tuple

from fastapi import APIRouter, Request, Response
from loguru import logger

from ..constants import AUTHORIZE_PATH, CONSENT_CALLBACK_PATH, LOGIN_CALLBACK_PATH
from ..exceptions import ACCESS_DENIED, INVALID_REQUEST
from ..models import ConsentDecision, LoginOutcome
from ..orchestrator import AuthorizeOrchestrator
from ..results import LocalErrorResult
from .responses import local_error_response, to_response
from .session import JwtSessionProvider

TRUTHY = ("1", "true", "yes", "on")


def get_orchestrator(request: Request) -> AuthorizeOrchestrator:
    return request.app.state.orchestrator


def _multi_params(items: List[Tuple[str, str]]) -> Dict[str, List[str]]:
    """Group repeated parameters so the validator can reject duplicates."""
    params: Dict[str, List[str]] = {}
    for name, value in items:
        params.setdefault(name, []).append(value)
    return params


def _is_true(value) -> bool:
    return str(value or "").strip().lower() in TRUTHY


async def authorize(request: Request) -> Response:
    items = list(request.query_params.multi_items())
    if request.method == "POST":
        form = await request.form()
        items.extend((k, v) for k, v in form.multi_items() if isinstance(v, str))

    session = JwtSessionProvider(request.cookies, request.headers)
    result = get_orchestrator(request).authorize(_multi_params(items), session)
    logger.debug("Authorize result", kind=result.kind)
    return to_response(result)


async def login_callback(request: Request) -> Response:
    correlation_id = request.query_params.get("correlation_id", "")
    error = request.query_params.get("error")

    if error:
        outcome = LoginOutcome.failed(error, request.query_params.get("error_description"))
    else:
        subject = JwtSessionProvider(request.cookies, request.headers).current()
        if subject is None:
            outcome = LoginOutcome.failed(ACCESS_DENIED, "No authenticated session")
        else:
            outcome = LoginOutcome.succeeded(subject)

    result = get_orchestrator(request).resume_login(correlation_id, outcome)
    logger.debug("Login callback result", kind=result.kind)
    return to_response(result)


async def consent_callback(request: Request) -> Response:
    form = await request.form()
    correlation_id = str(form.get("correlation_id") or "")
    client_id = str(form.get("client_id") or "")
    if not correlation_id or not client_id:
        return local_error_response(
            LocalErrorResult(error=INVALID_REQUEST, error_description="Missing correlation_id or client_id")
        )

    subject = JwtSessionProvider(request.cookies, request.headers).current()
    if subject is None:
        return local_error_response(
            LocalErrorResult(error=ACCESS_DENIED, error_description="No authenticated session")
        )

    scopes = set()
    if not _is_true(form.get("deny")):
        for value in form.getlist("scope"):
            if isinstance(value, str):
                scopes.update(value.split())

    decision = ConsentDecision(
        subject_id=subject.subject_id,
        client_id=client_id,
        scopes_consented=frozenset(scopes),
        remember=_is_true(form.get("remember")),
    )
    result = get_orchestrator(request).resume_consent(correlation_id, decision)
    logger.debug("Consent callback result", kind=result.kind)
    return to_response(result)


def get_authorize_router() -> APIRouter:
    router = APIRouter()
    router.add_api_route(AUTHORIZE_PATH, authorize, methods=["GET", "POST"], response_class=Response)
    router.add_api_route(LOGIN_CALLBACK_PATH, login_callback, methods=["GET"], response_class=Response)
    router.add_api_route(CONSENT_CALLBACK_PATH, consent_callback, methods=["POST"], response_class=Response)
    return router
