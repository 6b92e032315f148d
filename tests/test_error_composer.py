from core_authorize.errors import ErrorComposer
from core_authorize.exceptions import ClientError, InteractionError, PolicyError, RequestError
from core_authorize.models import ErrorContext, ResponseMode
from core_authorize.results import LocalErrorResult, RedirectResult

CONTEXT = ErrorContext(redirect_uri="https://client1/callback", response_mode=ResponseMode.FRAGMENT, state="s 1")


def test_redirectable_error():
    result = ErrorComposer().compose(PolicyError("nope", error="access_denied", context=CONTEXT))

    assert isinstance(result, RedirectResult)
    assert result.is_error
    assert result.parameters == (("error", "access_denied"), ("error_description", "nope"), ("state", "s 1"))
    assert result.response_mode == ResponseMode.FRAGMENT


def test_error_without_description_or_state():
    context = CONTEXT.model_copy(update={"state": None, "response_mode": ResponseMode.QUERY})
    result = ErrorComposer().compose(RequestError(context=context))
    assert result.parameters == (("error", "invalid_request"),)
    assert result.response_mode == ResponseMode.QUERY


def test_error_without_context_is_local():
    result = ErrorComposer().compose(RequestError("bad"))
    assert result == LocalErrorResult(error="invalid_request", error_description="bad")


def test_client_error_is_never_redirected():
    exc = ClientError("Unknown client").with_context(CONTEXT)
    assert exc.context is None
    assert isinstance(ErrorComposer().compose(exc), LocalErrorResult)


def test_local_error_ignores_context():
    exc = InteractionError("gone", context=CONTEXT, local=True)
    assert isinstance(ErrorComposer().compose(exc), LocalErrorResult)


def test_unexpected_exception_is_local_server_error():
    result = ErrorComposer().compose(KeyError("boom"))
    assert result.error == "server_error"
