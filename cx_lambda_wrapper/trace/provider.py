import enum
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass

from opentelemetry import metrics, propagate, trace
from opentelemetry.sdk.extension.aws.resource import AwsLambdaResourceDetector
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import MetricReader
from opentelemetry.sdk.resources import (
    OTELResourceDetector,
    ProcessResourceDetector,
    Resource,
    get_aggregated_resources,
)
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    ConsoleSpanExporter,
    SimpleSpanProcessor,
    SpanExporter,
)
from opentelemetry.trace import SpanKind

from cx_lambda_wrapper import constants
from cx_lambda_wrapper.config import WrapperConfig
from cx_lambda_wrapper.errors import LifecycleError
from cx_lambda_wrapper.instrumentation import (
    InstrumentationSet,
    build_instrumentations,
)
from cx_lambda_wrapper.overrides import TelemetryOverrides
from cx_lambda_wrapper.trace.export import (
    FreezeSafeBatchSpanProcessor,
    create_metric_exporter,
    create_metric_reader,
    create_span_exporter,
    flush,
)
from cx_lambda_wrapper.version import __version__

logger = logging.getLogger(__name__)


class LifecycleState(enum.IntEnum):
    UNINITIALIZED = 0
    PLUGINS_REGISTERED = 1
    PROVIDER_STARTING = 2
    PROVIDER_REGISTERED = 3
    WARMED_UP = 4


@dataclass(frozen=True)
class ProviderHandle:
    tracer_provider: TracerProvider
    meter_provider: MeterProvider
    resource: Resource


def detect_resource() -> Resource:
    return get_aggregated_resources(
        [AwsLambdaResourceDetector(), OTELResourceDetector(), ProcessResourceDetector()]
    )


class TelemetryLifecycle:
    """
    Owns the process-wide telemetry pipeline.

    ``UNINITIALIZED -> PLUGINS_REGISTERED -> PROVIDER_STARTING ->
    PROVIDER_REGISTERED (-> WARMED_UP)``. There is no shutdown: the sandbox
    may be frozen or killed at any point, so the providers are only flushed.

    The exporters default to OTLP/gRPC towards the local collector and can be
    injected for other destinations.
    """

    def __init__(
        self,
        config: WrapperConfig,
        overrides: TelemetryOverrides | None = None,
        span_exporter: SpanExporter | None = None,
        metric_reader: MetricReader | None = None,
        resource_factory: Callable[[], Resource] = detect_resource,
    ):
        self._config = config
        self._overrides = overrides or TelemetryOverrides()
        self._span_exporter = span_exporter
        self._metric_reader = metric_reader
        self._resource_factory = resource_factory

        self._lock = threading.Lock()
        self._state = LifecycleState.UNINITIALIZED
        self._instrumentations = InstrumentationSet()
        self._handle: ProviderHandle | None = None
        self._thread: threading.Thread | None = None

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def handle(self) -> ProviderHandle | None:
        return self._handle

    @property
    def instrumentations(self) -> InstrumentationSet:
        return self._instrumentations

    @property
    def overrides(self) -> TelemetryOverrides:
        return self._overrides

    def _transition(self, expected: LifecycleState, target: LifecycleState) -> None:
        with self._lock:
            if self._state is not expected:
                raise LifecycleError(
                    f"Cannot move to {target.name} from {self._state.name}"
                )
            self._state = target

    def register_plugins(
        self, instrumentations: InstrumentationSet | None = None
    ) -> InstrumentationSet:
        """
        Install the instrumentation plugins against the global providers.

        Must run before the user's handler module is imported, so the
        libraries it pulls in are already patched.
        """
        self._transition(
            LifecycleState.UNINITIALIZED, LifecycleState.PLUGINS_REGISTERED
        )
        if instrumentations is None:
            instrumentations = build_instrumentations(self._config, self._overrides)
        self._instrumentations = instrumentations

        logger.debug(
            "Initializing OpenTelemetry instrumentations %s", instrumentations.names
        )
        # the proxy providers forward to the real ones once those are registered
        instrumentations.install()
        return instrumentations

    def start_provider(self) -> ProviderHandle:
        self._transition(
            LifecycleState.PLUGINS_REGISTERED, LifecycleState.PROVIDER_STARTING
        )
        logger.debug("Initializing OpenTelemetry providers")
        timeout = self._config.export_timeout_millis
        resource = self._resource_factory()

        tracer_config = self._overrides.apply(
            "configure_tracer", {"resource": resource, "shutdown_on_exit": False}
        )
        tracer_provider = TracerProvider(**tracer_config)
        span_exporter = self._span_exporter or create_span_exporter(timeout)
        tracer_provider.add_span_processor(
            FreezeSafeBatchSpanProcessor(span_exporter, export_timeout_millis=timeout)
        )
        if self._config.console_span_exporter or self._config.verbose:
            tracer_provider.add_span_processor(
                SimpleSpanProcessor(ConsoleSpanExporter())
            )
        if self._overrides.configure_tracer_provider is not None:
            self._overrides.configure_tracer_provider(tracer_provider)

        registration = self._overrides.apply("configure_sdk_registration", {})
        trace.set_tracer_provider(tracer_provider)
        propagator = registration.get("propagator")
        if propagator is not None:
            propagate.set_global_textmap(propagator)

        metric_reader = self._metric_reader or create_metric_reader(
            create_metric_exporter(timeout), timeout
        )
        meter_config = self._overrides.apply(
            "configure_meter",
            {
                "resource": resource,
                "metric_readers": [metric_reader],
                "shutdown_on_exit": False,
            },
        )
        meter_provider = MeterProvider(**meter_config)
        if self._overrides.configure_meter_provider is not None:
            self._overrides.configure_meter_provider(meter_provider)
        metrics.set_meter_provider(meter_provider)

        # patched call sites pick up the real providers
        self._instrumentations.install(tracer_provider, meter_provider)

        self._handle = ProviderHandle(tracer_provider, meter_provider, resource)
        self._transition(
            LifecycleState.PROVIDER_STARTING, LifecycleState.PROVIDER_REGISTERED
        )
        return self._handle

    def warm_up(self, handle: ProviderHandle | None = None) -> bool:
        """
        Emit one internal span and flush it, establishing the export path
        during the cold start window. Failures are logged, never retried.
        """
        handle = handle or self._handle
        if handle is None:
            raise LifecycleError("Cannot warm up before the provider is registered")

        try:
            tracer = trace.get_tracer(__name__, __version__, handle.tracer_provider)
            span = tracer.start_span(
                constants.WARM_UP_SPAN_NAME,
                kind=SpanKind.INTERNAL,
                attributes={constants.SPAN_ROLE: "warmup"},
            )
            span.end()
            flushed = handle.tracer_provider.force_flush(
                self._config.export_timeout_millis
            )
        except Exception:
            logger.debug("Warm-up flush failed", exc_info=True)
            return False

        if not flushed:
            logger.debug("Warm-up flush timed out")
            return False

        with self._lock:
            if self._state is LifecycleState.PROVIDER_REGISTERED:
                self._state = LifecycleState.WARMED_UP
        return True

    def _start(self) -> None:
        try:
            handle = self.start_provider()
        except Exception:
            logger.exception("Failed to start the OpenTelemetry providers")
            return
        if self._config.warm_up_exporter:
            self.warm_up(handle)

    def start(self, background: bool = True) -> threading.Thread | None:
        """
        Start the providers, then warm up when enabled.

        In the background the first invocation may run before the providers
        are registered; its spans go to the no-op proxy.
        """
        if not background:
            self._start()
            return None

        self._thread = threading.Thread(
            target=self._start, name="otel-provider-start", daemon=True
        )
        self._thread.start()
        return self._thread

    def flush(self) -> None:
        """Bounded flush of both providers, skipped until they are registered."""
        handle = self._handle
        if handle is None:
            logger.debug("Providers not registered yet, skipping flush")
            return
        flush(
            self._config.export_timeout_millis,
            handle.tracer_provider,
            handle.meter_provider,
        )
