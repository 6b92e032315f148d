"""Error response composition.

An :class:`AuthorizeException` becomes a client redirect only when it carries
a trusted :class:`ErrorContext` and is not marked local; everything else is
rendered by the authorization server.
"""

from typing import List, Tuple, Union

from loguru import logger

from .exceptions import SERVER_ERROR, AuthorizeException
from .results import LocalErrorResult, RedirectResult


class ErrorComposer:

    def compose(self, exc: Exception) -> Union[RedirectResult, LocalErrorResult]:
        if not isinstance(exc, AuthorizeException):
            logger.error("Unexpected error in authorize pipeline", error=str(exc))
            return LocalErrorResult(error=SERVER_ERROR, error_description="Internal server error")

        if not exc.redirectable:
            logger.info("Rendering local authorize error", error=exc.error, error_description=exc.description)
            return LocalErrorResult(error=exc.error, error_description=exc.description)

        context = exc.context
        parameters: List[Tuple[str, str]] = [("error", exc.error)]
        if exc.description:
            parameters.append(("error_description", exc.description))
        if context.state is not None:
            parameters.append(("state", context.state))

        logger.info(
            "Redirecting authorize error to client",
            error=exc.error,
            redirect_uri=context.redirect_uri,
            response_mode=context.response_mode.value,
        )
        return RedirectResult(
            redirect_uri=context.redirect_uri,
            response_mode=context.response_mode,
            parameters=tuple(parameters),
        )
