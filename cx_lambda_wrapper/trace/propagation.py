import logging
from collections.abc import Mapping
from typing import Any

from opentelemetry.context import Context
from opentelemetry.propagate import get_global_textmap
from opentelemetry.propagators.textmap import TextMapPropagator
from opentelemetry.trace import get_current_span

logger = logging.getLogger(__name__)

# canonical key first, older callers send the lowercase variant
_CLIENT_CONTEXT_KEYS = ("Custom", "custom")


def _has_trace_identity(context: Context) -> bool:
    return get_current_span(context).get_span_context().is_valid


def _extract(carrier: Mapping, propagator: TextMapPropagator) -> Context:
    # start from the root, the ambient context of the sandbox is not a parent
    return propagator.extract(carrier, context=Context())


def _event_headers(event: Any) -> Mapping:
    headers = event.get("headers") if isinstance(event, Mapping) else None
    if not isinstance(headers, Mapping):
        return {}
    return headers


def _client_context_carrier(lambda_context: Any) -> Any:
    client_context = getattr(lambda_context, "client_context", None)
    if client_context is None:
        return None

    for key in _CLIENT_CONTEXT_KEYS:
        if isinstance(client_context, Mapping):
            carrier = client_context.get(key)
        else:
            carrier = getattr(client_context, key, None)
        if carrier:
            return carrier
    return None


def extract_context(
    event: Any,
    lambda_context: Any,
    propagator: TextMapPropagator | None = None,
) -> Context:
    """
    Determine the parent context of an invocation.

    Candidates are tried in order and the first one resolving to a valid
    span context wins:

    1. the HTTP headers of the event,
    2. the ``Custom`` (or ``custom``) map of the Lambda client context.

    When neither carries a trace identity the empty root context is
    returned. This function never raises.
    """
    propagator = propagator or get_global_textmap()

    try:
        header_context = _extract(_event_headers(event), propagator)
        if _has_trace_identity(header_context):
            return header_context
    except Exception:
        logger.debug("error extracting context from event headers", exc_info=True)

    try:
        carrier = _client_context_carrier(lambda_context)
        if carrier is not None:
            client_context = _extract(carrier, propagator)
            if _has_trace_identity(client_context):
                return client_context
    except Exception:
        logger.debug(
            "error extracting context from lambda client context payload",
            exc_info=True,
        )

    return Context()
