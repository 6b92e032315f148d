"""Simple Cloud Kit Core Authorize Package.

The core_authorize package implements the OAuth 2.0 / OpenID Connect
authorization endpoint for the Simple Cloud Kit (SCK) ecosystem. It validates
authorization requests, drives the end-user through login and consent, and
produces the redirect carrying the authorization code and/or tokens back to
the client.

Key Components:
    - **Engine**: Storage and transport independent authorize pipeline
    - **Collaborator Protocols**: Client, scope, consent, interaction and token contracts
    - **In-Memory Collaborators**: Test and local development implementations
    - **Token Issuer**: PyJWT backed codes, access tokens and identity tokens
    - **Hosting Adapter**: FastAPI routes translating results into HTTP responses

Architecture:
    A request passes through four stages. Authentication and consent may
    suspend it; the browser then visits the login or consent UI and comes back
    through a callback carrying only the correlation identifier::

        RequestValidator -> AuthenticationGate -> ConsentGate -> ResponseComposer
                                  |                    |
                            RequireLogin         RequireConsent
                                  |                    |
                            resume_login         resume_consent

    Every failure is turned into a single result by the ErrorComposer: a
    redirect back to the client once its redirect URI is trusted, a locally
    rendered error otherwise.

Modules:
    - **models.py**: Client, Scope, Subject, AuthorizeRequest and interaction models
    - **results.py**: Redirect, LocalError, RequireLogin and RequireConsent results
    - **exceptions.py**: Error taxonomy and OAuth error codes
    - **interfaces.py**: Collaborator protocols
    - **validator.py**: Raw parameter validation
    - **authentication.py**: Session evaluation and login suspension
    - **consent.py**: Consent evaluation, suspension and remembered consent
    - **composer.py** / **errors.py**: Success and error response composition
    - **orchestrator.py**: Stage sequencing and interaction resumption
    - **memory.py**: In-memory collaborators
    - **tokens.py**: JWT token issuer
    - **logging_config.py**: loguru sink configuration
    - **api/**: FastAPI application, routes and session provider

Usage Examples:

    **Engine**:

    .. code-block:: python

        from core_authorize.orchestrator import AuthorizeOrchestrator
        from core_authorize.memory import (
            InMemoryClientStore,
            InMemoryConsentStore,
            InMemoryInteractionStore,
            InMemoryScopeStore,
            StaticSessionProvider,
        )
        from core_authorize.tokens import JwtTokenIssuer

        orchestrator = AuthorizeOrchestrator(
            clients=InMemoryClientStore([client]),
            scopes=InMemoryScopeStore.with_standard_scopes(),
            consents=InMemoryConsentStore(),
            interactions=InMemoryInteractionStore(),
            issuer=JwtTokenIssuer(),
        )
        result = orchestrator.authorize(params, StaticSessionProvider(subject))

    **Development Server**:

    .. code-block:: bash

        uvicorn core_authorize.api.fast_api:get_app --factory
"""

__version__ = "0.1.0"
