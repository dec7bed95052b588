class HandlerError(Exception):
    """The wrapper cannot start: the original handler is not configured."""


class HandlerLoadError(Exception):
    """The original handler module could not be imported or resolved."""


class NullRejectionError(Exception):
    """An asynchronous handler failed without providing a reason."""

    def __init__(self, message: str = "handler rejected with an empty reason"):
        super().__init__(message)


class CompletionTimeoutError(Exception):
    """The handler never signalled completion before the invocation deadline."""


class LifecycleError(RuntimeError):
    pass
