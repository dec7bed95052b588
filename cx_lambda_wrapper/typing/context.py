import os
from typing import Any


class ClientContext:
    _client: Any = None
    _custom: dict[str, Any] | None = None
    _env: dict[str, Any] | None = None

    @property
    def client(self) -> Any:
        return self._client

    @property
    def custom(self) -> dict[str, Any] | None:
        """Custom values set by the mobile or SDK caller, may carry a trace carrier."""
        return self._custom

    @property
    def env(self) -> dict[str, Any] | None:
        return self._env


class LambdaContext:
    """
    Shape of the context object passed by the Lambda runtime.

    Only used for typing and tests, the runtime supplies its own object.
    """

    _function_name: str
    _function_version: str
    _invoked_function_arn: str
    _memory_limit_in_mb: int
    _aws_request_id: str
    _log_group_name: str
    _log_stream_name: str
    _client_context: ClientContext | None = None
    _remaining_time_in_millis: int = 0

    # cleared by the wrapper before it reports completion
    callback_waits_for_empty_event_loop: bool = True

    @property
    def function_name(self) -> str:
        return self._function_name

    @property
    def function_version(self) -> str:
        return self._function_version

    @property
    def invoked_function_arn(self) -> str:
        return self._invoked_function_arn

    @property
    def memory_limit_in_mb(self) -> int:
        return self._memory_limit_in_mb

    @property
    def aws_request_id(self) -> str:
        return self._aws_request_id

    @property
    def log_group_name(self) -> str:
        return self._log_group_name

    @property
    def log_stream_name(self) -> str:
        return self._log_stream_name

    @property
    def client_context(self) -> ClientContext | None:
        return self._client_context

    @property
    def region(self) -> str:
        parts = self._invoked_function_arn.split(":")
        if len(parts) > 3 and parts[3]:
            return parts[3]
        return os.getenv("AWS_REGION", "")

    def get_remaining_time_in_millis(self) -> int:
        return self._remaining_time_in_millis
