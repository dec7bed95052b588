import logging

# OTEL_LOG_LEVEL follows the diagnostic levels of the OpenTelemetry SDKs
_level_mapping = {
    "NONE": 100,
    "ERROR": logging.ERROR,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
    "VERBOSE": 5,
    "ALL": 1,
}

_LOGGER_NAMES = ("cx_lambda_wrapper", "opentelemetry")


def initialize_logging(level_name: str | None) -> int:
    """Apply OTEL_LOG_LEVEL to the wrapper's and the SDK's loggers."""
    str_level = (level_name or "INFO").upper()
    level = _level_mapping.get(str_level)
    invalid = level is None
    if invalid:
        level = logging.INFO

    for name in _LOGGER_NAMES:
        logging.getLogger(name).setLevel(level)

    if invalid:
        logging.getLogger(_LOGGER_NAMES[0]).warning(
            "Invalid log level: %s Defaulting to INFO", str_level
        )
    return level
