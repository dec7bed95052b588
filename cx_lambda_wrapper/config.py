import logging
import os
from dataclasses import dataclass

from cx_lambda_wrapper import constants
from cx_lambda_wrapper.errors import HandlerError

logger = logging.getLogger(__name__)


def parse_int_env(name: str) -> int | None:
    value = os.getenv(name)
    if value is None:
        return None
    try:
        return int(value.strip())
    except ValueError:
        logger.warning("Ignoring non-numeric value %r for %s", value, name)
        return None


def parse_bool_env(name: str) -> bool | None:
    value = os.getenv(name)
    if value is None:
        return None

    value = value.strip().lower()
    if value in ("true", "t"):
        return True
    if value in ("false", "f"):
        return False
    return None


@dataclass(frozen=True)
class WrapperConfig:
    """
    Operational settings of the wrapper, read once from the environment
    at module initialization.
    """

    original_handler: str | None = None
    payload_size_limit: int = constants.DEFAULT_PAYLOAD_SIZE_LIMIT
    export_timeout_millis: int = constants.DEFAULT_EXPORT_TIMEOUT_MILLIS
    log_level: str = "info"
    warm_up_exporter: bool = True
    console_span_exporter: bool = False
    instrumentation_default_enabled: bool = True
    prefetch_handler: bool = True
    overrides_module: str | None = None
    task_root: str | None = None

    @classmethod
    def from_env(cls) -> "WrapperConfig":
        def _or(value, default):
            return default if value is None else value

        return cls(
            original_handler=os.getenv(constants.CX_ORIGINAL_HANDLER),
            payload_size_limit=_or(
                parse_int_env(constants.OTEL_PAYLOAD_SIZE_LIMIT),
                constants.DEFAULT_PAYLOAD_SIZE_LIMIT,
            ),
            export_timeout_millis=_or(
                parse_int_env(constants.OTEL_EXPORT_TIMEOUT),
                constants.DEFAULT_EXPORT_TIMEOUT_MILLIS,
            ),
            log_level=(os.getenv(constants.OTEL_LOG_LEVEL) or "info").strip().lower(),
            warm_up_exporter=_or(
                parse_bool_env(constants.OTEL_WARM_UP_EXPORTER), True
            ),
            console_span_exporter=_or(
                parse_bool_env(constants.OTEL_CONSOLE_SPAN_EXPORTER_ENABLED), False
            ),
            instrumentation_default_enabled=_or(
                parse_bool_env(constants.OTEL_INSTRUMENTATION_COMMON_DEFAULT_ENABLED),
                True,
            ),
            prefetch_handler=_or(
                parse_bool_env(constants.CX_PREFETCH_ORIGINAL_HANDLER), True
            ),
            overrides_module=os.getenv(constants.CX_WRAPPER_CONFIG_MODULE) or None,
            task_root=os.getenv(constants.LAMBDA_TASK_ROOT) or None,
        )

    @property
    def verbose(self) -> bool:
        return self.log_level in ("debug", "verbose", "all")

    def is_instrumentation_enabled(self, name: str) -> bool:
        """
        Per-plugin switch, falling back to the common default when the
        plugin's own variable is unset or unparsable.
        """
        env_name = constants.OTEL_INSTRUMENTATION_ENABLED_TEMPLATE.format(
            name=name.upper()
        )
        enabled = parse_bool_env(env_name)
        if enabled is None:
            return self.instrumentation_default_enabled
        return enabled

    def require_original_handler(self) -> str:
        path = self.original_handler
        if not path:
            raise HandlerError(f"{constants.CX_ORIGINAL_HANDLER} is missing")

        parts = path.rsplit(".", 1)
        if len(parts) != 2 or not all(parts):
            raise HandlerError(
                f"Value {path} for {constants.CX_ORIGINAL_HANDLER} has invalid format."
            )
        return path
