"""
Entry point replacing the function's handler.

Set the function handler to ``cx_lambda_wrapper.handler.handler`` and move
the original one to ``CX_ORIGINAL_HANDLER``. Importing this module sets up
telemetry in order: instrumentations are installed before the user's
module is imported, so the libraries it loads are already patched.
"""

from cx_lambda_wrapper.config import WrapperConfig
from cx_lambda_wrapper.loader import HandlerLoader
from cx_lambda_wrapper.logger import initialize_logging
from cx_lambda_wrapper.overrides import load_overrides
from cx_lambda_wrapper.trace.provider import TelemetryLifecycle
from cx_lambda_wrapper.wrapper import LambdaWrapper

config = WrapperConfig.from_env()
initialize_logging(config.log_level)

original_handler = config.require_original_handler()

lifecycle = TelemetryLifecycle(config, load_overrides(config.overrides_module))
lifecycle.register_plugins()
lifecycle.start(background=True)

loader = HandlerLoader(original_handler, task_root=config.task_root)
if config.prefetch_handler:
    loader.prefetch()

handler = LambdaWrapper(loader, lifecycle, config)
