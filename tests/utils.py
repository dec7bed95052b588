from opentelemetry.sdk.metrics.export import InMemoryMetricReader

from cx_lambda_wrapper.typing.context import ClientContext, LambdaContext

TRACE_ID = "4bf92f3577b34da6a3ce929d0e0e4736"
SPAN_ID = "00f067aa0ba902b7"
TRACEPARENT = f"00-{TRACE_ID}-{SPAN_ID}-01"


class MockClientContext(ClientContext):
    def __init__(self, custom=None):
        self._custom = custom


class MockLambdaContext(LambdaContext):
    def __init__(self, remaining_time_in_millis: int = 0, client_context=None):
        self._function_name = "test_function"
        self._function_version = "$LATEST"
        self._invoked_function_arn = (
            "arn:aws:lambda:us-east-1:123456789012:function:test_function"
        )
        self._memory_limit_in_mb = 128
        self._aws_request_id = "test-request-id"
        self._log_group_name = "/aws/lambda/test_function"
        self._log_stream_name = "2021/01/01/[$LATEST]abcdef123456abcdef123456abcdef12"
        self._client_context = client_context
        self._remaining_time_in_millis = remaining_time_in_millis
        self.callback_waits_for_empty_event_loop = True


def metric_points(reader: InMemoryMetricReader) -> dict:
    """Data points of every collected metric, keyed by metric name."""
    points = {}
    data = reader.get_metrics_data()
    if data is None:
        return points

    for resource_metrics in data.resource_metrics:
        for scope_metrics in resource_metrics.scope_metrics:
            for metric in scope_metrics.metrics:
                points[metric.name] = list(metric.data.data_points)
    return points
