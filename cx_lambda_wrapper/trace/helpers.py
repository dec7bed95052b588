from functools import wraps

from cx_lambda_wrapper.errors import CompletionTimeoutError
from cx_lambda_wrapper.trace.normalizer import (
    Completion,
    CompletionSignal,
    InvocationNormalizer,
)
from cx_lambda_wrapper.typing.context import LambdaContext


def remaining_time_seconds(lambda_context) -> float | None:
    get_remaining = getattr(lambda_context, "get_remaining_time_in_millis", None)
    if not callable(get_remaining):
        return None
    try:
        remaining = get_remaining()
    except Exception:
        return None
    if not isinstance(remaining, (int, float)) or remaining <= 0:
        return None
    return remaining / 1000


def run_to_completion(normalizer: InvocationNormalizer, normalized, event, context):
    """
    Invoke a normalized handler and block until its completion signal.

    Returns the resolved value or raises the failure, the way the Python
    runtime expects a handler to behave.
    """
    completion = Completion()
    pending = normalized(event, context, completion)
    if pending is not None:
        normalizer.drive(pending)

    signal = completion.wait(remaining_time_seconds(context))
    if signal is None:
        completion.reject(
            CompletionTimeoutError("handler did not signal completion in time")
        )
        signal = completion.signal
    return _unwrap(signal)


def _unwrap(signal: CompletionSignal):
    if signal.failed:
        raise signal.error
    return signal.value


def instrument_handler(**kwargs):
    """
    Decorate a Lambda handler function so each invocation is traced and
    normalized into a single result.

    Accepts all keyword arguments of ``InvocationNormalizer``:

    :param config: LambdaInstrumentationConfig (payload limit, hooks, extractor)
    :param tracer_provider: TracerProvider, defaults to the global one
    :param meter_provider: MeterProvider, defaults to the global one
    :param flush_timeout_millis: bound of the flush run before returning
    :return: The decorated handler function, callable as ``(event, context)``.
    """

    def decorator(func):
        normalizer = InvocationNormalizer(**kwargs)
        normalized = normalizer.wrap(func)

        @wraps(func)
        def wrapper(event: dict, context: LambdaContext):
            return run_to_completion(normalizer, normalized, event, context)

        return wrapper

    return decorator
