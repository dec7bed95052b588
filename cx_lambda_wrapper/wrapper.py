import logging
from collections.abc import Callable
from typing import Any

from cx_lambda_wrapper.config import WrapperConfig
from cx_lambda_wrapper.errors import HandlerLoadError
from cx_lambda_wrapper.loader import HandlerLoader
from cx_lambda_wrapper.trace.helpers import run_to_completion
from cx_lambda_wrapper.trace.normalizer import (
    Callback,
    InvocationNormalizer,
    clear_wait_flag,
    default_instrumentation_config,
)
from cx_lambda_wrapper.trace.provider import TelemetryLifecycle

logger = logging.getLogger(__name__)


class LambdaWrapper:
    """
    The handler the platform invokes in place of the user's one.

    ``wrapper(event, context)`` follows the Python runtime contract and
    returns the handler's value or raises its error.
    ``wrapper.invoke(event, context, callback)`` is the callback-shaped
    entry point producing one ``callback(error, value)`` call before it
    returns, also for handlers returning an awaitable.
    """

    def __init__(
        self,
        loader: HandlerLoader,
        lifecycle: TelemetryLifecycle,
        config: WrapperConfig | None = None,
    ):
        config = config or WrapperConfig()
        self._loader = loader
        self._lifecycle = lifecycle

        instrumentation_config = lifecycle.overrides.apply(
            "configure_lambda_instrumentation",
            default_instrumentation_config(config.payload_size_limit),
        )
        self._normalizer = InvocationNormalizer(
            instrumentation_config,
            flush_timeout_millis=config.export_timeout_millis,
            flusher=lifecycle.flush,
        )
        self._normalized: Callable | None = None

    @property
    def normalizer(self) -> InvocationNormalizer:
        return self._normalizer

    def invoke(self, event: Any, context: Any, callback: Callback):
        logger.debug("Redirecting invocation to %s", self._loader.path)
        try:
            original = self._loader.load()
        except HandlerLoadError as exc:
            clear_wait_flag(context)
            callback(exc, None)
            return None

        if self._normalized is None:
            self._normalized = self._normalizer.wrap(original)
        pending = self._normalized(event, context, callback)
        if pending is not None:
            # an awaitable handler settles on the normalizer loop
            self._normalizer.drive(pending)
        return None

    def __call__(self, event: Any, context: Any) -> Any:
        return run_to_completion(self._normalizer, self.invoke, event, context)
