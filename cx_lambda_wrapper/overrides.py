import logging
from collections.abc import Callable
from dataclasses import dataclass, fields
from importlib import import_module
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TelemetryOverrides:
    """
    Optional strategies replacing a step of the telemetry setup.

    Every field defaults to None, meaning the built-in behavior is used.
    The ``configure_*`` config hooks receive the default and return the
    value to use; the provider hooks receive the constructed provider.

    ```
    # my_wrapper_config.py, selected with CX_WRAPPER_CONFIG_MODULE
    def configure_tracer(config):
        return {**config, "sampler": ALWAYS_ON}
    ```
    """

    configure_tracer: Callable[[dict], dict] | None = None
    configure_meter: Callable[[dict], dict] | None = None
    configure_sdk_registration: Callable[[dict], dict] | None = None
    configure_tracer_provider: Callable[[Any], None] | None = None
    configure_meter_provider: Callable[[Any], None] | None = None
    configure_instrumentations: Callable[[], list] | None = None
    configure_lambda_instrumentation: Callable[[Any], Any] | None = None

    @classmethod
    def from_module(cls, module: Any) -> "TelemetryOverrides":
        hooks = {}
        for field in fields(cls):
            hook = getattr(module, field.name, None)
            if hook is None:
                continue
            if not callable(hook):
                logger.warning(
                    "Ignoring %s.%s: not callable", module.__name__, field.name
                )
                continue
            hooks[field.name] = hook
        return cls(**hooks)

    def apply(self, name: str, default: Any) -> Any:
        """Pass ``default`` through the hook ``name`` when it is defined."""
        hook = getattr(self, name)
        if hook is None:
            return default
        return hook(default)


def load_overrides(module_name: str | None) -> TelemetryOverrides:
    """
    Resolve the override hooks once at startup.

    A module that fails to import only costs the customization, the
    wrapper then runs with the defaults.
    """
    if not module_name:
        return TelemetryOverrides()

    try:
        module = import_module(module_name)
    except Exception:
        logger.exception("Failed to import wrapper config module %s", module_name)
        return TelemetryOverrides()

    overrides = TelemetryOverrides.from_module(module)
    logger.debug("Loaded telemetry overrides from %s", module_name)
    return overrides
