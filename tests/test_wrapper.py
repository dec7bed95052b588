from dataclasses import replace
from unittest.mock import MagicMock

import pytest
from opentelemetry.sdk.metrics.export import InMemoryMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.test.globals_test import reset_metrics_globals, reset_trace_globals
from opentelemetry.trace import StatusCode

from cx_lambda_wrapper.config import WrapperConfig
from cx_lambda_wrapper.errors import HandlerLoadError
from cx_lambda_wrapper.instrumentation import InstrumentationSet
from cx_lambda_wrapper.loader import HandlerLoader
from cx_lambda_wrapper.overrides import TelemetryOverrides
from cx_lambda_wrapper.trace.provider import TelemetryLifecycle
from cx_lambda_wrapper.wrapper import LambdaWrapper
from tests.utils import SPAN_ID, TRACE_ID, TRACEPARENT, MockLambdaContext

EVENT = {"headers": {"traceparent": TRACEPARENT}, "body": "Hello, World!"}


@pytest.fixture(autouse=True)
def reset_globals():
    reset_trace_globals()
    reset_metrics_globals()
    yield
    reset_trace_globals()
    reset_metrics_globals()


@pytest.fixture
def exporter():
    return InMemorySpanExporter()


@pytest.fixture
def make_wrapper(exporter):
    wrappers = []

    def _make(path, config=None, overrides=None, start=True):
        config = config or WrapperConfig(original_handler=path, warm_up_exporter=False)
        lifecycle = TelemetryLifecycle(
            config,
            overrides,
            span_exporter=exporter,
            metric_reader=InMemoryMetricReader(),
            resource_factory=lambda: Resource.create({}),
        )
        lifecycle.register_plugins(InstrumentationSet())
        if start:
            lifecycle.start(background=False)
        wrapper = LambdaWrapper(HandlerLoader(path), lifecycle, config)
        wrappers.append(wrapper)
        return wrapper

    yield _make
    for wrapper in wrappers:
        wrapper.normalizer.loop.close()


class TestLambdaWrapper:
    @pytest.mark.parametrize(
        "path, status_code",
        [
            ("tests.handlers.sync_handler", 200),
            ("tests.handlers.async_handler", 201),
            ("tests/handlers.callback_handler", 202),
        ],
    )
    def test_completion_styles(self, make_wrapper, exporter, path, status_code):
        wrapper = make_wrapper(path)
        context = MockLambdaContext()

        response = wrapper(EVENT, context)

        assert response == {"statusCode": status_code, "body": "Hello, World!"}
        assert context.callback_waits_for_empty_event_loop is False

        (span,) = exporter.get_finished_spans()
        assert span.name == "test_function"
        assert span.status.status_code == StatusCode.OK
        assert span.attributes["http.response.status_code"] == status_code
        assert span.context.trace_id == int(TRACE_ID, 16)
        assert span.parent.span_id == int(SPAN_ID, 16)

    def test_handler_failure(self, make_wrapper, exporter):
        wrapper = make_wrapper("tests.handlers.failing_handler")

        with pytest.raises(ValueError, match="handler failed"):
            wrapper(EVENT, MockLambdaContext())

        (span,) = exporter.get_finished_spans()
        assert span.status.status_code == StatusCode.ERROR

    def test_invoke_callback_shape(self, make_wrapper):
        wrapper = make_wrapper("tests.handlers.sync_handler")
        callback = MagicMock()

        wrapper.invoke({"body": "x"}, MockLambdaContext(), callback)

        callback.assert_called_once_with(None, {"statusCode": 200, "body": "x"})

    def test_invoke_callback_shape_async_handler(self, make_wrapper, exporter):
        wrapper = make_wrapper("tests.handlers.async_handler")
        context = MockLambdaContext()
        callback = MagicMock()

        wrapper.invoke({"body": "b"}, context, callback)

        callback.assert_called_once_with(None, {"statusCode": 201, "body": "b"})
        assert context.callback_waits_for_empty_event_loop is False
        (span,) = exporter.get_finished_spans()
        assert span.status.status_code == StatusCode.OK

    def test_load_failure(self, make_wrapper, exporter):
        wrapper = make_wrapper("tests.no_such_module.handler")
        context = MockLambdaContext()
        callback = MagicMock()

        wrapper.invoke({}, context, callback)

        error, value = callback.call_args[0]
        assert isinstance(error, HandlerLoadError)
        assert value is None
        assert context.callback_waits_for_empty_event_loop is False
        assert exporter.get_finished_spans() == ()

        with pytest.raises(HandlerLoadError):
            wrapper({}, MockLambdaContext())

    def test_payloads(self, make_wrapper, exporter):
        config = WrapperConfig(payload_size_limit=12, warm_up_exporter=False)
        wrapper = make_wrapper("tests.handlers.sync_handler", config)

        wrapper({"body": "Hello, World!"}, MockLambdaContext())

        (span,) = exporter.get_finished_spans()
        assert span.attributes["rpc.request.payload"] == '{"body": "He'
        assert span.attributes["rpc.response.payload"] == '{"statusCode'

    def test_lambda_instrumentation_override(self, make_wrapper, exporter):
        overrides = TelemetryOverrides(
            configure_lambda_instrumentation=lambda config: replace(
                config, request_hook=None
            )
        )
        wrapper = make_wrapper("tests.handlers.sync_handler", overrides=overrides)

        wrapper(EVENT, MockLambdaContext())

        (span,) = exporter.get_finished_spans()
        assert "rpc.request.payload" not in span.attributes
        assert "rpc.response.payload" in span.attributes

    def test_invocation_before_provider_registration(self, make_wrapper, exporter):
        wrapper = make_wrapper("tests.handlers.sync_handler", start=False)

        response = wrapper(EVENT, MockLambdaContext())

        assert response["statusCode"] == 200
        assert exporter.get_finished_spans() == ()

    def test_warm_up_precedes_invocations(self, make_wrapper, exporter):
        config = WrapperConfig(warm_up_exporter=True)
        wrapper = make_wrapper("tests.handlers.sync_handler", config)

        wrapper(EVENT, MockLambdaContext())

        names = [span.name for span in exporter.get_finished_spans()]
        assert names == ["cx.warmup", "test_function"]

    def test_handler_is_loaded_once(self, make_wrapper):
        wrapper = make_wrapper("tests.handlers.sync_handler")

        wrapper({}, MockLambdaContext())
        normalized = wrapper._normalized
        wrapper({}, MockLambdaContext())

        assert wrapper._normalized is normalized


class TestScenarios:
    def test_empty_event_resolves_from_root(self, make_wrapper, exporter):
        wrapper = make_wrapper("tests.handlers.sync_handler")

        response = wrapper({}, MockLambdaContext())

        assert response == {"statusCode": 200, "body": None}
        (span,) = exporter.get_finished_spans()
        assert span.parent is None

    def test_inner_span_continues_header_trace(self, make_wrapper, exporter):
        wrapper = make_wrapper("tests.handlers.traced_failing_handler")

        with pytest.raises(ValueError, match="x"):
            wrapper({"headers": {"traceparent": TRACEPARENT}}, MockLambdaContext())

        inner, invocation = exporter.get_finished_spans()
        assert inner.name == "inner"
        assert inner.context.trace_id == int(TRACE_ID, 16)
        assert inner.parent.span_id == invocation.context.span_id
        assert invocation.parent.span_id == int(SPAN_ID, 16)

    def test_warm_up_disabled_from_env(self, make_wrapper, exporter, monkeypatch):
        monkeypatch.setenv("OTEL_WARM_UP_EXPORTER", "false")
        config = WrapperConfig.from_env()
        wrapper = make_wrapper("tests.handlers.sync_handler", config)

        wrapper({}, MockLambdaContext())

        names = [span.name for span in exporter.get_finished_spans()]
        assert names == ["test_function"]
