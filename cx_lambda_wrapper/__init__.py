from cx_lambda_wrapper.version import __version__  # noqa: F401
