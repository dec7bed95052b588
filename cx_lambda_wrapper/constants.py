LAMBDA_INITIALIZATION_TYPE = "AWS_LAMBDA_INITIALIZATION_TYPE"
LAMBDA_TASK_ROOT = "LAMBDA_TASK_ROOT"

CX_ORIGINAL_HANDLER = "CX_ORIGINAL_HANDLER"
CX_PREFETCH_ORIGINAL_HANDLER = "CX_PREFETCH_ORIGINAL_HANDLER"
CX_WRAPPER_CONFIG_MODULE = "CX_WRAPPER_CONFIG_MODULE"

OTEL_PAYLOAD_SIZE_LIMIT = "OTEL_PAYLOAD_SIZE_LIMIT"
OTEL_EXPORT_TIMEOUT = "OTEL_EXPORT_TIMEOUT"
OTEL_LOG_LEVEL = "OTEL_LOG_LEVEL"
OTEL_WARM_UP_EXPORTER = "OTEL_WARM_UP_EXPORTER"
OTEL_CONSOLE_SPAN_EXPORTER_ENABLED = "OTEL_CONSOLE_SPAN_EXPORTER_ENABLED"
OTEL_INSTRUMENTATION_COMMON_DEFAULT_ENABLED = (
    "OTEL_INSTRUMENTATION_COMMON_DEFAULT_ENABLED"
)
OTEL_INSTRUMENTATION_ENABLED_TEMPLATE = "OTEL_INSTRUMENTATION_{name}_ENABLED"

DEFAULT_PAYLOAD_SIZE_LIMIT = 50 * 1024
# localhost call to the collector extension, must not hold the invocation
DEFAULT_EXPORT_TIMEOUT_MILLIS = 2000
# an internal timer cannot fire while the sandbox is frozen
FREEZE_SAFE_EXPORT_INTERVAL_MILLIS = 60 * 60 * 1000

RPC_REQUEST_PAYLOAD = "rpc.request.payload"
RPC_RESPONSE_PAYLOAD = "rpc.response.payload"
DB_RESPONSE = "db.response"

SPAN_ROLE = "cx.internal.span.role"
WARM_UP_SPAN_NAME = "cx.warmup"
