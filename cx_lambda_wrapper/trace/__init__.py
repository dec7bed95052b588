from cx_lambda_wrapper.trace.helpers import instrument_handler

__all__ = ["instrument_handler"]
