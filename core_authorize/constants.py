import os
from typing import Set


def _int_env(name: str, default: int, minimum: int, maximum: int) -> int:
    try:
        value = int(os.getenv(name, str(default)))
    except (ValueError, TypeError):
        return default
    if value < minimum or value > maximum:
        return default
    return value


AUTHORIZE_ISSUER = os.getenv("AUTHORIZE_ISSUER", "sck-core-authorize")

# JWT Configuration
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "your-secret-key-here")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
# Validate algorithm is supported
SUPPORTED_ALGORITHMS = ["HS256", "HS384", "HS512"]
if JWT_ALGORITHM not in SUPPORTED_ALGORITHMS:
    JWT_ALGORITHM = "HS256"

AUTH_CODE_LIFETIME_SECONDS = _int_env("AUTH_CODE_LIFETIME_SECONDS", 300, 30, 600)
ACCESS_TOKEN_LIFETIME_SECONDS = _int_env("ACCESS_TOKEN_LIFETIME_SECONDS", 3600, 60, 86400)
IDENTITY_TOKEN_LIFETIME_SECONDS = _int_env("IDENTITY_TOKEN_LIFETIME_SECONDS", 300, 60, 3600)

# How long a suspended login/consent interaction may wait for the browser to come back
INTERACTION_TTL_SECONDS = _int_env("INTERACTION_TTL_SECONDS", 600, 30, 86400)

SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "sck_session")

# Login and consent UI (external collaborators)
CLIENT_HOST = os.getenv("CLIENT_HOST", "")
LOGIN_PATH = os.getenv("LOGIN_PATH", "/login")
CONSENT_PATH = os.getenv("CONSENT_PATH", "/consent")

AUTHORIZE_PATH = "/auth/v1/authorize"
LOGIN_CALLBACK_PATH = "/auth/v1/authorize/callback/login"
CONSENT_CALLBACK_PATH = "/auth/v1/authorize/callback/consent"

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = os.getenv("LOG_FORMAT", "text").lower()

# Authorize request parameter names
CLIENT_ID = "client_id"
RESPONSE_TYPE = "response_type"
REDIRECT_URI = "redirect_uri"
SCOPE = "scope"
STATE = "state"
NONCE = "nonce"
RESPONSE_MODE = "response_mode"
PROMPT = "prompt"
DISPLAY = "display"
UI_LOCALES = "ui_locales"
MAX_AGE = "max_age"
LOGIN_HINT = "login_hint"
ACR_VALUES = "acr_values"
CODE_CHALLENGE = "code_challenge"
CODE_CHALLENGE_METHOD = "code_challenge_method"

KNOWN_PARAMETERS: Set[str] = {
    CLIENT_ID,
    RESPONSE_TYPE,
    REDIRECT_URI,
    SCOPE,
    STATE,
    NONCE,
    RESPONSE_MODE,
    PROMPT,
    DISPLAY,
    UI_LOCALES,
    MAX_AGE,
    LOGIN_HINT,
    ACR_VALUES,
    CODE_CHALLENGE,
    CODE_CHALLENGE_METHOD,
}

# acr_values entries carrying authentication hints
ACR_IDP_PREFIX = "idp:"
ACR_TENANT_PREFIX = "tenant:"

# Input length restrictions
MAX_CLIENT_ID_LENGTH = 100
MAX_SCOPE_LENGTH = 300
MAX_REDIRECT_URI_LENGTH = 400
MAX_STATE_LENGTH = 2000
MAX_NONCE_LENGTH = 300
MAX_UI_LOCALES_LENGTH = 100
MAX_LOGIN_HINT_LENGTH = 100
MAX_ACR_VALUES_LENGTH = 300
MAX_MAX_AGE_LENGTH = 10
MIN_CODE_CHALLENGE_LENGTH = 43
MAX_CODE_CHALLENGE_LENGTH = 128

PKCE_UNRESERVED = "-._~"

# Standard OpenID Connect identity scopes
OPENID_SCOPE = "openid"
STANDARD_IDENTITY_SCOPES = {
    "openid": ("Your user identifier", ["sub"]),
    "profile": ("User profile", ["name", "family_name", "given_name", "preferred_username", "updated_at"]),
    "email": ("Your email address", ["email", "email_verified"]),
    "address": ("Your postal address", ["address"]),
    "phone": ("Your phone number", ["phone_number", "phone_number_verified"]),
}
