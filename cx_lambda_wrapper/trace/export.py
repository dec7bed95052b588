import logging
import time

from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.metrics import MeterProvider, get_meter_provider
from opentelemetry.sdk.metrics import (
    Counter,
    Histogram,
    ObservableCounter,
    ObservableGauge,
    ObservableUpDownCounter,
    UpDownCounter,
)
from opentelemetry.sdk.metrics.export import (
    AggregationTemporality,
    MetricExporter,
    MetricReader,
    PeriodicExportingMetricReader,
)
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SpanExporter
from opentelemetry.trace import TracerProvider, get_tracer_provider

from cx_lambda_wrapper import constants

logger = logging.getLogger(__name__)

_CUMULATIVE = {
    Counter: AggregationTemporality.CUMULATIVE,
    UpDownCounter: AggregationTemporality.CUMULATIVE,
    Histogram: AggregationTemporality.CUMULATIVE,
    ObservableCounter: AggregationTemporality.CUMULATIVE,
    ObservableUpDownCounter: AggregationTemporality.CUMULATIVE,
    ObservableGauge: AggregationTemporality.CUMULATIVE,
}


def create_span_exporter(export_timeout_millis: int) -> SpanExporter:
    """OTLP/gRPC exporter towards the collector extension on localhost."""
    return OTLPSpanExporter(timeout=export_timeout_millis / 1000)


def create_metric_exporter(export_timeout_millis: int) -> MetricExporter:
    return OTLPMetricExporter(
        timeout=export_timeout_millis / 1000,
        preferred_temporality=_CUMULATIVE,
    )


class FreezeSafeBatchSpanProcessor(BatchSpanProcessor):
    """
    BatchSpanProcessor that never relies on its worker timer.

    The schedule delay is set far beyond the lifetime of an invocation, so
    batches leave either when the batch size threshold is reached or when
    the wrapper calls ``force_flush`` explicitly. Each export is bounded by
    ``export_timeout_millis``.

    ```
    provider = TracerProvider()
    processor = FreezeSafeBatchSpanProcessor(OTLPSpanExporter(), 2000)
    provider.add_span_processor(processor)
    ```
    """

    def __init__(
        self,
        span_exporter: SpanExporter,
        export_timeout_millis: int = constants.DEFAULT_EXPORT_TIMEOUT_MILLIS,
        schedule_delay_millis: int = constants.FREEZE_SAFE_EXPORT_INTERVAL_MILLIS,
        **kwargs,
    ) -> None:
        assert schedule_delay_millis > export_timeout_millis
        super().__init__(
            span_exporter=span_exporter,
            schedule_delay_millis=schedule_delay_millis,
            export_timeout_millis=export_timeout_millis,
            **kwargs,
        )


def create_metric_reader(
    exporter: MetricExporter,
    export_timeout_millis: int = constants.DEFAULT_EXPORT_TIMEOUT_MILLIS,
) -> MetricReader:
    """Periodic reader whose period is never expected to elapse in a sandbox."""
    return PeriodicExportingMetricReader(
        exporter,
        export_interval_millis=constants.FREEZE_SAFE_EXPORT_INTERVAL_MILLIS,
        export_timeout_millis=export_timeout_millis,
    )


def flush_traces(
    timeout_millis: int, tracer_provider: TracerProvider | None = None
) -> bool:
    provider = tracer_provider or get_tracer_provider()
    if not hasattr(provider, "force_flush"):
        # still the proxy, nothing was recorded by a real pipeline yet
        logger.debug("TracerProvider %r cannot be flushed", provider)
        return False
    try:
        # force_flush before the handler returns, the sandbox may freeze after
        return bool(provider.force_flush(timeout_millis))
    except Exception:
        logger.exception("TracerProvider failed to flush traces")
        return False


def flush_metrics(
    timeout_millis: int, meter_provider: MeterProvider | None = None
) -> bool:
    provider = meter_provider or get_meter_provider()
    if not hasattr(provider, "force_flush"):
        logger.debug("MeterProvider %r cannot be flushed", provider)
        return False
    try:
        return bool(provider.force_flush(timeout_millis))
    except Exception:
        logger.exception("MeterProvider failed to flush metrics")
        return False


def flush(
    timeout_millis: int,
    tracer_provider: TracerProvider | None = None,
    meter_provider: MeterProvider | None = None,
) -> None:
    """Flush spans, then metrics, within one shared ``timeout_millis`` budget."""
    start = time.monotonic()
    flush_traces(timeout_millis, tracer_provider)
    remaining = timeout_millis - round((time.monotonic() - start) * 1000)
    if remaining <= 0:
        logger.warning("Flush timeout exhausted by traces, metrics not flushed")
        return
    flush_metrics(remaining, meter_provider)
