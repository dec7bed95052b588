import pytest
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import InMemoryMetricReader
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from cx_lambda_wrapper import constants
from cx_lambda_wrapper.typing.context import LambdaContext
from tests.utils import MockLambdaContext

_WRAPPER_ENV = (
    constants.LAMBDA_INITIALIZATION_TYPE,
    constants.CX_ORIGINAL_HANDLER,
    constants.CX_PREFETCH_ORIGINAL_HANDLER,
    constants.CX_WRAPPER_CONFIG_MODULE,
    constants.OTEL_PAYLOAD_SIZE_LIMIT,
    constants.OTEL_EXPORT_TIMEOUT,
    constants.OTEL_LOG_LEVEL,
    constants.OTEL_WARM_UP_EXPORTER,
    constants.OTEL_CONSOLE_SPAN_EXPORTER_ENABLED,
    constants.OTEL_INSTRUMENTATION_COMMON_DEFAULT_ENABLED,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in _WRAPPER_ENV:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def lambda_context() -> LambdaContext:
    return MockLambdaContext()


@pytest.fixture
def span_exporter() -> InMemorySpanExporter:
    return InMemorySpanExporter()


@pytest.fixture
def tracer_provider(span_exporter) -> TracerProvider:
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(span_exporter))
    return provider


@pytest.fixture
def metric_reader() -> InMemoryMetricReader:
    return InMemoryMetricReader()


@pytest.fixture
def meter_provider(metric_reader) -> MeterProvider:
    provider = MeterProvider(metric_readers=[metric_reader])
    yield provider
    provider.shutdown()
