import asyncio
import enum
import functools
import inspect
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from opentelemetry import context as context_api
from opentelemetry.context import Context
from opentelemetry.metrics import MeterProvider, get_meter
from opentelemetry.semconv._incubating.attributes.faas_attributes import FAAS_TRIGGER
from opentelemetry.semconv._incubating.metrics.faas_metrics import (
    FAAS_COLDSTARTS,
    FAAS_ERRORS,
    FAAS_INVOCATIONS,
    FAAS_INVOKE_DURATION,
)
from opentelemetry.semconv.attributes.http_attributes import (
    HTTP_RESPONSE_STATUS_CODE,
)
from opentelemetry.trace import (
    Span,
    Status,
    StatusCode,
    TracerProvider,
    get_tracer,
    set_span_in_context,
)

from cx_lambda_wrapper import constants
from cx_lambda_wrapper.errors import NullRejectionError
from cx_lambda_wrapper.trace.export import flush
from cx_lambda_wrapper.trace.propagation import extract_context
from cx_lambda_wrapper.utils import (
    ColdStartTracker,
    DataSourceAttributeMapper,
    limit_payload,
    set_handler_attributes,
)
from cx_lambda_wrapper.version import __version__

logger = logging.getLogger(__name__)

Callback = Callable[[BaseException | None, Any], Any]


class CompletionState(enum.Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    REJECTED = "rejected"


@dataclass(frozen=True)
class CompletionSignal:
    error: BaseException | None = None
    value: Any = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class Completion:
    """
    Single-fire completion channel.

    Called Node-style as ``completion(error, value)``, or through
    ``resolve``/``reject``. Only the first call settles the channel and
    reaches ``callback``; later calls are ignored and return False.
    """

    def __init__(self, callback: Callback | None = None):
        self._callback = callback
        self._lock = threading.Lock()
        self._settled = threading.Event()
        self._state = CompletionState.PENDING
        self._signal: CompletionSignal | None = None

    def __call__(
        self, error: BaseException | None = None, value: Any = None
    ) -> bool:
        if error is not None:
            return self.reject(error)
        return self.resolve(value)

    @property
    def state(self) -> CompletionState:
        return self._state

    @property
    def signal(self) -> CompletionSignal | None:
        return self._signal

    @property
    def done(self) -> bool:
        return self._state is not CompletionState.PENDING

    def resolve(self, value: Any = None) -> bool:
        return self._settle(CompletionState.RESOLVED, CompletionSignal(value=value))

    def reject(self, reason: BaseException | None) -> bool:
        if reason is None:
            reason = NullRejectionError()
        return self._settle(CompletionState.REJECTED, CompletionSignal(error=reason))

    def wait(self, timeout: float | None = None) -> CompletionSignal | None:
        self._settled.wait(timeout)
        return self._signal

    def _settle(self, state: CompletionState, signal: CompletionSignal) -> bool:
        with self._lock:
            if self._state is not CompletionState.PENDING:
                logger.debug(
                    "Ignoring %s completion, invocation already %s",
                    state.value,
                    self._state.value,
                )
                return False
            self._state = state
            self._signal = signal

        try:
            if self._callback is not None:
                self._callback(signal.error, signal.value)
        finally:
            self._settled.set()
        return True


RequestHook = Callable[[Span, Any, Any], None]
ResponseHook = Callable[[Span, BaseException | None, Any], None]


@dataclass(frozen=True)
class LambdaInstrumentationConfig:
    payload_size_limit: int = constants.DEFAULT_PAYLOAD_SIZE_LIMIT
    event_context_extractor: Callable[[Any, Any], Context] = extract_context
    request_hook: RequestHook | None = None
    response_hook: ResponseHook | None = None


def _record_request_payload(
    span: Span, event: Any, lambda_context: Any, limit: int
):
    data = limit_payload(event, limit)
    if data is not None:
        span.set_attribute(constants.RPC_REQUEST_PAYLOAD, data)


def _record_response_payload(
    span: Span, error: BaseException | None, value: Any, limit: int
):
    if error is not None:
        return
    data = limit_payload(value, limit)
    if data is not None:
        span.set_attribute(constants.RPC_RESPONSE_PAYLOAD, data)


def default_instrumentation_config(
    payload_size_limit: int = constants.DEFAULT_PAYLOAD_SIZE_LIMIT,
) -> LambdaInstrumentationConfig:
    return LambdaInstrumentationConfig(
        payload_size_limit=payload_size_limit,
        request_hook=functools.partial(
            _record_request_payload, limit=payload_size_limit
        ),
        response_hook=functools.partial(
            _record_response_payload, limit=payload_size_limit
        ),
    )


def accepts_callback(handler: Callable) -> bool:
    """A handler requiring a third positional argument completes through it."""
    try:
        signature = inspect.signature(handler)
    except (TypeError, ValueError):
        return False

    required = [
        param
        for param in signature.parameters.values()
        if param.kind
        in (
            inspect.Parameter.POSITIONAL_ONLY,
            inspect.Parameter.POSITIONAL_OR_KEYWORD,
        )
        and param.default is inspect.Parameter.empty
    ]
    return len(required) >= 3


def clear_wait_flag(lambda_context: Any) -> None:
    try:
        lambda_context.callback_waits_for_empty_event_loop = False
    except (AttributeError, TypeError):
        logger.debug("Lambda context does not accept the wait flag")


def _settle_from_future(completion: Completion, future: asyncio.Future) -> None:
    try:
        if future.cancelled():
            completion.reject(None)
            return
        exc = future.exception()
        if exc is not None:
            completion.reject(exc)
            return
        completion.resolve(future.result())
    except Exception as exc:
        # a fault while resolving still settles the invocation once
        completion.reject(exc)


class InvocationNormalizer:
    """
    Wraps an original Lambda handler so that every invocation yields exactly
    one completion signal, whatever the handler's completion style:

    - an awaitable return value is settled on the event loop,
    - a handler taking ``(event, context, callback)`` completes through the
      callback and its return value is discarded,
    - a plain ``(event, context)`` handler completes with its return value.

    Each invocation runs inside a span parented on the extracted upstream
    context. Before the outward callback fires the span is ended, the
    providers are flushed and ``callback_waits_for_empty_event_loop`` is
    cleared.
    """

    def __init__(
        self,
        config: LambdaInstrumentationConfig | None = None,
        tracer_provider: TracerProvider | None = None,
        meter_provider: MeterProvider | None = None,
        flush_timeout_millis: int = constants.DEFAULT_EXPORT_TIMEOUT_MILLIS,
        flusher: Callable[[], None] | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ):
        self._config = config or default_instrumentation_config()
        self._tracer_provider = tracer_provider
        self._flusher = flusher or functools.partial(
            flush, flush_timeout_millis, tracer_provider, meter_provider
        )
        self._loop = loop
        self._cold_start = ColdStartTracker()

        meter = get_meter(__name__, __version__, meter_provider)
        self._invocations = meter.create_counter(
            FAAS_INVOCATIONS, unit="{invocation}", description="Invocations"
        )
        self._errors = meter.create_counter(
            FAAS_ERRORS, unit="{error}", description="Failed invocations"
        )
        self._coldstarts = meter.create_counter(
            FAAS_COLDSTARTS, unit="{coldstart}", description="Cold starts"
        )
        self._duration = meter.create_histogram(
            FAAS_INVOKE_DURATION, unit="s", description="Invocation duration"
        )

    @property
    def config(self) -> LambdaInstrumentationConfig:
        return self._config

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None or self._loop.is_closed():
            self._loop = asyncio.new_event_loop()
        return self._loop

    def drive(self, pending: asyncio.Future) -> None:
        """Run the loop until a deferred invocation has settled."""
        if pending.done():
            # the done callbacks may still be scheduled
            self.loop.run_until_complete(asyncio.sleep(0))
            return
        self.loop.run_until_complete(asyncio.wait({pending}))

    def wrap(self, original: Callable) -> Callable:
        with_callback = accepts_callback(original)

        @functools.wraps(original)
        def normalized(
            event: Any, lambda_context: Any, callback: Callback | None = None
        ):
            return self._invoke(
                original, with_callback, event, lambda_context, callback
            )

        return normalized

    def _invoke(
        self,
        original: Callable,
        with_callback: bool,
        event: Any,
        lambda_context: Any,
        callback: Callback | None,
    ) -> asyncio.Future | None:
        start = time.perf_counter()
        parent = self._extract(event, lambda_context)
        mapper = DataSourceAttributeMapper(event)
        cold_start = self._cold_start.check()

        tracer = get_tracer(__name__, __version__, self._tracer_provider)
        span = tracer.start_span(
            self._span_name(original, lambda_context),
            context=parent,
            kind=mapper.span_kind,
        )
        if span.is_recording():
            set_handler_attributes(event, lambda_context, span, cold_start)
        self._run_hook(self._config.request_hook, span, event, lambda_context)

        metric_attributes = {FAAS_TRIGGER: mapper.faas_trigger.value}
        if cold_start:
            self._coldstarts.add(1, metric_attributes)

        completion = Completion(
            functools.partial(
                self._finish,
                span,
                lambda_context,
                callback,
                start,
                metric_attributes,
            )
        )

        token = context_api.attach(set_span_in_context(span, parent))
        try:
            try:
                if with_callback:
                    result = original(event, lambda_context, completion)
                else:
                    result = original(event, lambda_context)
            except Exception as exc:
                completion.reject(exc)
                return None

            if inspect.isawaitable(result):
                return self._defer(result, completion)

            if not with_callback:
                completion.resolve(result)
            return None
        finally:
            context_api.detach(token)

    def _defer(
        self, awaitable: Any, completion: Completion
    ) -> asyncio.Future | None:
        try:
            pending = asyncio.ensure_future(awaitable, loop=self.loop)
        except Exception as exc:
            completion.reject(exc)
            return None
        pending.add_done_callback(
            functools.partial(_settle_from_future, completion)
        )
        return pending

    def _finish(
        self,
        span: Span,
        lambda_context: Any,
        callback: Callback | None,
        start: float,
        metric_attributes: dict,
        error: BaseException | None,
        value: Any,
    ) -> None:
        try:
            self._end_span(span, error, value)
            self._invocations.add(1, metric_attributes)
            if error is not None:
                self._errors.add(1, metric_attributes)
            self._duration.record(time.perf_counter() - start, metric_attributes)
        except Exception:
            logger.exception("Failed to record the invocation")

        self._flusher()

        clear_wait_flag(lambda_context)
        if callback is not None:
            callback(error, value)

    def _end_span(self, span: Span, error: BaseException | None, value: Any) -> None:
        if error is not None:
            span.record_exception(error)
            span.set_status(
                Status(StatusCode.ERROR, f"{type(error).__name__}: {error}")
            )
        else:
            span.set_status(Status(StatusCode.OK))
            if isinstance(value, dict) and isinstance(value.get("statusCode"), int):
                span.set_attribute(HTTP_RESPONSE_STATUS_CODE, value["statusCode"])
        self._run_hook(self._config.response_hook, span, error, value)
        span.end()

    def _extract(self, event: Any, lambda_context: Any) -> Context:
        try:
            return self._config.event_context_extractor(event, lambda_context)
        except Exception:
            logger.debug("Custom event context extractor failed", exc_info=True)
            return Context()

    @staticmethod
    def _span_name(original: Callable, lambda_context: Any) -> str:
        name = getattr(lambda_context, "function_name", None)
        if isinstance(name, str) and name:
            return name
        return f"{original.__module__}.{getattr(original, '__qualname__', 'handler')}"

    @staticmethod
    def _run_hook(hook: Callable | None, span: Span, *args) -> None:
        if hook is None or not span.is_recording():
            return
        try:
            hook(span, *args)
        except Exception:
            logger.debug("Instrumentation hook %r failed", hook, exc_info=True)
