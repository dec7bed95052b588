import logging
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass, field
from importlib import import_module
from typing import Any

from opentelemetry.metrics import MeterProvider
from opentelemetry.trace import Span, TracerProvider

from cx_lambda_wrapper import constants
from cx_lambda_wrapper.config import WrapperConfig
from cx_lambda_wrapper.overrides import TelemetryOverrides
from cx_lambda_wrapper.utils import limit_payload

logger = logging.getLogger(__name__)


def _set_payload(span: Span, key: str, data: Any, limit: int) -> None:
    if span is None or not span.is_recording():
        return
    payload = limit_payload(data, limit)
    if payload is not None:
        span.set_attribute(key, payload)


def botocore_hooks(limit: int) -> dict:
    def request_hook(span, service_name, operation_name, api_params):
        _set_payload(span, constants.RPC_REQUEST_PAYLOAD, api_params, limit)

    def response_hook(span, service_name, operation_name, result):
        _set_payload(span, constants.RPC_RESPONSE_PAYLOAD, result, limit)

    return {"request_hook": request_hook, "response_hook": response_hook}


def redis_hooks(limit: int) -> dict:
    def response_hook(span, instance, response):
        _set_payload(span, constants.DB_RESPONSE, response, limit)

    return {"response_hook": response_hook}


def pymongo_hooks(limit: int) -> dict:
    def response_hook(span, event):
        _set_payload(span, constants.DB_RESPONSE, getattr(event, "reply", None), limit)

    return {"response_hook": response_hook}


@dataclass(frozen=True)
class PluginSpec:
    name: str
    module: str
    class_name: str
    hooks: Callable[[int], dict] | None = None


AWS_SDK_PLUGIN = PluginSpec(
    "AWS_SDK",
    "opentelemetry.instrumentation.botocore",
    "BotocoreInstrumentor",
    botocore_hooks,
)

DEFAULT_PLUGINS = (
    PluginSpec(
        "REQUESTS", "opentelemetry.instrumentation.requests", "RequestsInstrumentor"
    ),
    PluginSpec("URLLIB", "opentelemetry.instrumentation.urllib", "URLLibInstrumentor"),
    PluginSpec(
        "URLLIB3", "opentelemetry.instrumentation.urllib3", "URLLib3Instrumentor"
    ),
    PluginSpec(
        "REDIS",
        "opentelemetry.instrumentation.redis",
        "RedisInstrumentor",
        redis_hooks,
    ),
    PluginSpec(
        "PYMONGO",
        "opentelemetry.instrumentation.pymongo",
        "PymongoInstrumentor",
        pymongo_hooks,
    ),
    PluginSpec(
        "PSYCOPG2", "opentelemetry.instrumentation.psycopg2", "Psycopg2Instrumentor"
    ),
    PluginSpec(
        "PYMYSQL", "opentelemetry.instrumentation.pymysql", "PyMySQLInstrumentor"
    ),
    PluginSpec("GRPC", "opentelemetry.instrumentation.grpc", "GrpcInstrumentorClient"),
)


@dataclass(frozen=True)
class InstrumentationEntry:
    name: str
    instrumentor: Any
    options: dict = field(default_factory=dict)

    @property
    def installed(self) -> bool:
        return bool(
            getattr(self.instrumentor, "is_instrumented_by_opentelemetry", False)
        )

    def install(
        self,
        tracer_provider: TracerProvider | None = None,
        meter_provider: MeterProvider | None = None,
    ) -> None:
        kwargs = dict(self.options)
        if tracer_provider is not None:
            kwargs["tracer_provider"] = tracer_provider
        if meter_provider is not None:
            kwargs["meter_provider"] = meter_provider

        if self.installed:
            if tracer_provider is None and meter_provider is None:
                return
            # re-patch against the real providers, never on top of the old patch
            self.instrumentor.uninstrument()

        try:
            self.instrumentor.instrument(**kwargs)
            logger.debug("Installed instrumentation %s", self.name)
        except Exception:
            logger.warning(
                "Failed to install instrumentation %s", self.name, exc_info=True
            )


class InstrumentationSet(Sequence):
    """Installed instrumentation plugins, shared by registry and provider."""

    def __init__(self, entries: Sequence[InstrumentationEntry] = ()):
        self._entries = tuple(entries)

    def __getitem__(self, index):
        return self._entries[index]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[InstrumentationEntry]:
        return iter(self._entries)

    @property
    def names(self) -> list[str]:
        return [entry.name for entry in self._entries]

    def install(
        self,
        tracer_provider: TracerProvider | None = None,
        meter_provider: MeterProvider | None = None,
    ) -> None:
        for entry in self._entries:
            entry.install(tracer_provider, meter_provider)


def load_plugin(
    spec: PluginSpec, payload_size_limit: int
) -> InstrumentationEntry | None:
    try:
        module = import_module(spec.module)
        instrumentor = getattr(module, spec.class_name)()
    except ImportError as exc:
        logger.debug("Skipping instrumentation %s: %s", spec.name, exc)
        return None
    except Exception:
        logger.warning("Failed to load instrumentation %s", spec.name, exc_info=True)
        return None

    options = spec.hooks(payload_size_limit) if spec.hooks else {}
    return InstrumentationEntry(spec.name, instrumentor, options)


def build_instrumentations(
    config: WrapperConfig,
    overrides: TelemetryOverrides | None = None,
    plugins: Sequence[PluginSpec] = DEFAULT_PLUGINS,
) -> InstrumentationSet:
    """
    Build the set of enabled instrumentation plugins.

    The AWS SDK plugin is always considered. The remaining plugins come from
    ``plugins``, unless ``configure_instrumentations`` is overridden, in which
    case its instrumentors replace them and are taken as they are.
    """
    overrides = overrides or TelemetryOverrides()
    limit = config.payload_size_limit
    entries = []

    specs = [AWS_SDK_PLUGIN]
    if overrides.configure_instrumentations is None:
        specs.extend(plugins)

    for spec in specs:
        if not config.is_instrumentation_enabled(spec.name):
            logger.debug("Instrumentation %s disabled", spec.name)
            continue
        entry = load_plugin(spec, limit)
        if entry is not None:
            entries.append(entry)

    if overrides.configure_instrumentations is not None:
        for instrumentor in overrides.configure_instrumentations():
            entries.append(
                InstrumentationEntry(type(instrumentor).__name__, instrumentor)
            )

    return InstrumentationSet(entries)
