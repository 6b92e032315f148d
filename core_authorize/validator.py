"""Authorize request validation.

Turns raw request parameters into an immutable :class:`AuthorizeRequest` or
raises an :class:`AuthorizeException`.

Order of checks (first failure wins):

    ======================  =============================  ===========
    Check                   Error                          Redirected
    ======================  =============================  ===========
    client_id               invalid_request/invalid_client no
    redirect_uri            invalid_redirect_uri           no
    duplicate parameters    invalid_request                yes
    response_type           unsupported_response_type      yes
    response_mode           invalid_request                yes
    client flow policy      unauthorized_client            yes
    scope                   invalid_scope                  yes
    nonce                   invalid_request                yes
    prompt/display/max_age  invalid_request                yes
    PKCE                    invalid_request                yes
    ======================  =============================  ===========

Nothing is delivered to a redirect URI before the client exists and the
redirect URI matches its registration exactly.
"""

from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Set, Tuple

from loguru import logger

from .constants import (
    ACR_IDP_PREFIX,
    ACR_TENANT_PREFIX,
    ACR_VALUES,
    CLIENT_ID,
    CODE_CHALLENGE,
    CODE_CHALLENGE_METHOD,
    DISPLAY,
    KNOWN_PARAMETERS,
    LOGIN_HINT,
    MAX_ACR_VALUES_LENGTH,
    MAX_MAX_AGE_LENGTH,
    MAX_AGE,
    MAX_CLIENT_ID_LENGTH,
    MAX_CODE_CHALLENGE_LENGTH,
    MAX_LOGIN_HINT_LENGTH,
    MAX_NONCE_LENGTH,
    MAX_REDIRECT_URI_LENGTH,
    MAX_SCOPE_LENGTH,
    MAX_STATE_LENGTH,
    MAX_UI_LOCALES_LENGTH,
    MIN_CODE_CHALLENGE_LENGTH,
    NONCE,
    OPENID_SCOPE,
    PKCE_UNRESERVED,
    PROMPT,
    REDIRECT_URI,
    RESPONSE_MODE,
    RESPONSE_TYPE,
    SCOPE,
    STATE,
    UI_LOCALES,
)
from .exceptions import (
    INVALID_CLIENT,
    INVALID_REDIRECT_URI,
    INVALID_SCOPE,
    UNAUTHORIZED_CLIENT,
    UNSUPPORTED_RESPONSE_TYPE,
    AuthorizeException,
    ClientError,
    PolicyError,
    RequestError,
    UnknownScopeError,
    UpstreamError,
)
from .interfaces import ClientStore, ScopeStore
from .models import (
    ID_TOKEN,
    TOKEN,
    AuthorizeRequest,
    Client,
    Display,
    ErrorContext,
    Prompt,
    ResponseMode,
    ScopeType,
    default_response_mode,
    normalize_response_type,
)

PKCE_METHODS = ("S256", "plain")


def _flatten(raw_params: Mapping[str, Any]) -> Tuple[Dict[str, str], Set[str]]:
    """Collapse multi-valued parameters, remembering which ones were repeated."""
    params: Dict[str, str] = {}
    duplicates: Set[str] = set()
    for name, value in (raw_params or {}).items():
        if isinstance(value, (list, tuple)):
            values = [v for v in value if v is not None]
            if not values:
                continue
            if len(values) > 1:
                duplicates.add(name)
            value = values[0]
        if value is None:
            continue
        params[name] = str(value)
    return params, duplicates


def _value(params: Dict[str, str], name: str) -> Optional[str]:
    value = (params.get(name) or "").strip()
    return value or None


def _fallback_response_mode(params: Dict[str, str]) -> ResponseMode:
    """Response mode used to deliver errors raised before response_type/response_mode are validated."""
    words = set((params.get(RESPONSE_TYPE) or "").split())
    mode = default_response_mode(words)
    try:
        requested = ResponseMode(_value(params, RESPONSE_MODE) or mode.value)
    except ValueError:
        return mode
    if requested == ResponseMode.QUERY and mode == ResponseMode.FRAGMENT:
        return mode
    return requested


def parse_acr_values(value: Optional[str]) -> Tuple[Tuple[str, ...], Optional[str], Optional[str]]:
    """Split acr_values into (remaining acr values, idp, tenant).

    ``"acr_1 acr_2 tenant:acme idp:google"`` -> ``(("acr_1", "acr_2"), "google", "acme")``
    """
    acr: List[str] = []
    idp = tenant = None
    for item in (value or "").split():
        if item.startswith(ACR_IDP_PREFIX) and len(item) > len(ACR_IDP_PREFIX):
            idp = item[len(ACR_IDP_PREFIX) :]
        elif item.startswith(ACR_TENANT_PREFIX) and len(item) > len(ACR_TENANT_PREFIX):
            tenant = item[len(ACR_TENANT_PREFIX) :]
        elif item not in acr:
            acr.append(item)
    return tuple(acr), idp, tenant


class RequestValidator:
    """Validates raw authorize parameters against the client registration."""

    def __init__(self, clients: ClientStore, scopes: ScopeStore):
        self.clients = clients
        self.scopes = scopes

    def validate(self, raw_params: Mapping[str, Any]) -> AuthorizeRequest:
        request, _ = self.validate_with_client(raw_params)
        return request

    def validate_with_client(self, raw_params: Mapping[str, Any]) -> Tuple[AuthorizeRequest, Client]:
        params, duplicates = _flatten(raw_params)

        client = self._validate_client(params, duplicates)
        redirect_uri = self._validate_redirect_uri(params, duplicates, client)

        # the redirect URI is trusted from here on; state is echoed exactly as received
        context = ErrorContext(
            redirect_uri=redirect_uri,
            response_mode=_fallback_response_mode(params),
            state=params.get(STATE) or None,
        )
        try:
            request = self._validate_request(params, duplicates, client, redirect_uri)
        except AuthorizeException as e:
            logger.debug(
                "Authorization request rejected",
                client_id=client.client_id,
                error=e.error,
                error_description=e.description,
            )
            raise e.with_context(context)

        logger.debug(
            "Validated authorization request",
            client_id=request.client_id,
            response_type=request.response_type,
            response_mode=request.response_mode.value,
            scopes=list(request.scopes),
            has_state=request.state is not None,
            has_code_challenge=bool(request.code_challenge),
        )
        return request, client

    def _validate_client(self, params: Dict[str, str], duplicates: Set[str]) -> Client:
        client_id = _value(params, CLIENT_ID)
        if not client_id:
            raise ClientError("Missing required parameter: client_id", error="invalid_request")
        if CLIENT_ID in duplicates or len(client_id) > MAX_CLIENT_ID_LENGTH:
            raise ClientError("Invalid client_id", error="invalid_request")

        try:
            client = self.clients.find(client_id)
        except Exception as e:
            logger.error("Client store lookup failed", client_id=client_id, error=str(e))
            raise UpstreamError("Client lookup failed") from e

        if client is None or not client.enabled:
            logger.warning("Unknown or disabled client attempted authorization", client_id=client_id)
            raise ClientError("Unknown client", error=INVALID_CLIENT)
        return client

    def _validate_redirect_uri(self, params: Dict[str, str], duplicates: Set[str], client: Client) -> str:
        redirect_uri = _value(params, REDIRECT_URI)
        if not redirect_uri:
            raise ClientError("Missing required parameter: redirect_uri", error="invalid_request")
        if REDIRECT_URI in duplicates or len(redirect_uri) > MAX_REDIRECT_URI_LENGTH:
            raise ClientError("Invalid redirect_uri", error="invalid_request")
        if not client.is_redirect_uri_registered(redirect_uri):
            logger.warning(
                "redirect_uri not registered for client",
                client_id=client.client_id,
                redirect_uri=redirect_uri,
            )
            raise ClientError("redirect_uri not registered for this client", error=INVALID_REDIRECT_URI)
        return redirect_uri

    def _validate_request(
        self,
        params: Dict[str, str],
        duplicates: Set[str],
        client: Client,
        redirect_uri: str,
    ) -> AuthorizeRequest:
        if duplicates:
            raise RequestError(f"Duplicate parameter(s): {' '.join(sorted(duplicates))}")

        state = params.get(STATE) or None
        if state is not None and len(state) > MAX_STATE_LENGTH:
            raise RequestError("Invalid state parameter format")

        raw_response_type = _value(params, RESPONSE_TYPE)
        if not raw_response_type:
            raise RequestError("Missing required parameter: response_type")
        response_type = normalize_response_type(raw_response_type)
        if not response_type:
            raise RequestError(f"Unsupported response_type: {raw_response_type}", error=UNSUPPORTED_RESPONSE_TYPE)
        response_types = frozenset(response_type.split())

        response_mode = self._validate_response_mode(params, response_types)

        if not client.permits_response_type(response_type):
            raise PolicyError(
                f"response_type '{response_type}' is not allowed for this client",
                error=UNAUTHORIZED_CLIENT,
            )

        scopes = self._validate_scopes(params, client, response_type, response_types)

        nonce = _value(params, NONCE)
        if nonce is not None and len(nonce) > MAX_NONCE_LENGTH:
            raise RequestError("Invalid nonce parameter format")
        if ID_TOKEN in response_types and not nonce:
            raise RequestError("Missing required parameter: nonce")

        prompt = self._validate_prompt(params)
        display = self._validate_display(params)
        max_age = self._validate_max_age(params)

        ui_locales = _value(params, UI_LOCALES)
        if ui_locales and len(ui_locales) > MAX_UI_LOCALES_LENGTH:
            raise RequestError("Invalid ui_locales parameter format")

        login_hint = _value(params, LOGIN_HINT)
        if login_hint and (len(login_hint) > MAX_LOGIN_HINT_LENGTH or not login_hint.isprintable()):
            raise RequestError("Invalid login_hint parameter format")

        raw_acr = _value(params, ACR_VALUES)
        if raw_acr and len(raw_acr) > MAX_ACR_VALUES_LENGTH:
            raise RequestError("Invalid acr_values parameter format")
        acr_values, idp, tenant = parse_acr_values(raw_acr)

        code_challenge, code_challenge_method = self._validate_pkce(params, client, response_types)

        custom_parameters = {k: v for k, v in params.items() if k not in KNOWN_PARAMETERS}

        return AuthorizeRequest(
            client_id=client.client_id,
            response_type=response_type,
            scopes=scopes,
            redirect_uri=redirect_uri,
            response_mode=response_mode,
            state=state,
            nonce=nonce,
            prompt=prompt,
            display=display,
            ui_locales=ui_locales,
            max_age=max_age,
            login_hint=login_hint,
            acr_values=acr_values,
            idp=idp,
            tenant=tenant,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
            custom_parameters=custom_parameters,
        )

    def _validate_response_mode(self, params: Dict[str, str], response_types: FrozenSet[str]) -> ResponseMode:
        default = default_response_mode(response_types)
        raw = _value(params, RESPONSE_MODE)
        if not raw:
            return default
        try:
            mode = ResponseMode(raw)
        except ValueError:
            raise RequestError(f"Unsupported response_mode: {raw}")
        if mode == ResponseMode.QUERY and (TOKEN in response_types or ID_TOKEN in response_types):
            raise RequestError("response_mode 'query' is not allowed when tokens are returned")
        return mode

    def _validate_scopes(
        self,
        params: Dict[str, str],
        client: Client,
        response_type: str,
        response_types: FrozenSet[str],
    ) -> Tuple[str, ...]:
        raw = _value(params, SCOPE)
        if not raw:
            raise PolicyError("Missing required parameter: scope", error=INVALID_SCOPE)
        if len(raw) > MAX_SCOPE_LENGTH:
            raise RequestError("Invalid scope parameter format")

        scopes = tuple(dict.fromkeys(raw.split()))

        not_allowed = [s for s in scopes if s not in client.allowed_scopes]
        if not_allowed:
            raise PolicyError(f"Scope(s) not allowed for this client: {' '.join(not_allowed)}", error=INVALID_SCOPE)

        try:
            resolved = self.scopes.resolve(scopes)
        except UnknownScopeError as e:
            raise PolicyError(str(e), error=INVALID_SCOPE)
        except Exception as e:
            logger.error("Scope store lookup failed", client_id=client.client_id, error=str(e))
            raise UpstreamError("Scope lookup failed") from e

        if ID_TOKEN in response_types and OPENID_SCOPE not in scopes:
            raise PolicyError("openid scope is required when requesting an id_token", error=INVALID_SCOPE)

        if response_type == ID_TOKEN and any(s.type == ScopeType.RESOURCE for s in resolved):
            raise PolicyError("response_type 'id_token' must not request resource scopes", error=INVALID_SCOPE)

        if response_type == TOKEN and not any(s.type == ScopeType.RESOURCE for s in resolved):
            raise PolicyError("response_type 'token' requires at least one resource scope", error=INVALID_SCOPE)

        return scopes

    def _validate_prompt(self, params: Dict[str, str]) -> FrozenSet[Prompt]:
        raw = _value(params, PROMPT)
        if not raw:
            return frozenset()
        prompt = set()
        for value in raw.split():
            try:
                prompt.add(Prompt(value))
            except ValueError:
                raise RequestError(f"Unsupported prompt value: {value}")
        if Prompt.NONE in prompt and len(prompt) > 1:
            raise RequestError("prompt 'none' must not be combined with other values")
        return frozenset(prompt)

    def _validate_display(self, params: Dict[str, str]) -> Optional[Display]:
        raw = _value(params, DISPLAY)
        if not raw:
            return None
        try:
            return Display(raw)
        except ValueError:
            raise RequestError(f"Unsupported display value: {raw}")

    def _validate_max_age(self, params: Dict[str, str]) -> Optional[int]:
        raw = _value(params, MAX_AGE)
        if raw is None:
            return None
        if len(raw) > MAX_MAX_AGE_LENGTH or not (raw.isascii() and raw.isdigit()):
            raise RequestError("Invalid max_age parameter format")
        return int(raw)

    def _validate_pkce(
        self, params: Dict[str, str], client: Client, response_types: FrozenSet[str]
    ) -> Tuple[Optional[str], Optional[str]]:
        code_challenge = _value(params, CODE_CHALLENGE)
        method = _value(params, CODE_CHALLENGE_METHOD)

        if not code_challenge:
            if method:
                raise RequestError("code_challenge_method supplied without code_challenge")
            if client.require_pkce and "code" in response_types:
                raise RequestError("code_challenge required for this client")
            return None, None

        if (
            len(code_challenge) < MIN_CODE_CHALLENGE_LENGTH
            or len(code_challenge) > MAX_CODE_CHALLENGE_LENGTH
            or not all(c.isalnum() or c in PKCE_UNRESERVED for c in code_challenge)
        ):
            raise RequestError("Invalid code_challenge parameter format")

        # RFC 7636 4.3: plain when absent
        method = method or "plain"
        if method not in PKCE_METHODS:
            raise RequestError(f"Unsupported code_challenge_method: {method}")
        return code_challenge, method
