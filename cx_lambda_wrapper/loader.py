import logging
import sys
import threading
from collections.abc import Callable
from importlib import import_module

from cx_lambda_wrapper.errors import HandlerLoadError

logger = logging.getLogger(__name__)


def modify_module_name(module_name: str) -> str:
    """Returns a valid modified module to get imported"""
    return ".".join(module_name.split("/"))


class HandlerLoader:
    """
    Resolves ``module.function`` to the user's original handler.

    The import happens once, either eagerly through ``prefetch`` during
    initialization or on the first ``load``. A failure is kept and raised
    again by later loads instead of importing the module a second time.
    """

    def __init__(self, path: str, task_root: str | None = None):
        mod_name, handler_name = path.rsplit(".", 1)
        self.path = path
        self.module_name = modify_module_name(mod_name)
        self.handler_name = handler_name
        self._task_root = task_root
        self._lock = threading.Lock()
        self._handler: Callable | None = None
        self._error: HandlerLoadError | None = None

    @property
    def loaded(self) -> bool:
        return self._handler is not None

    def prefetch(self) -> None:
        try:
            self.load()
        except HandlerLoadError:
            logger.warning("Failed to prefetch handler %s", self.path, exc_info=True)

    def load(self) -> Callable:
        with self._lock:
            if self._handler is not None:
                return self._handler
            if self._error is not None:
                raise self._error

            try:
                self._handler = self._import()
            except Exception as exc:
                self._error = HandlerLoadError(
                    f"Unable to load handler {self.path}: {exc}"
                )
                raise self._error from exc
            return self._handler

    def _import(self) -> Callable:
        if self._task_root and self._task_root not in sys.path:
            sys.path.insert(0, self._task_root)

        logger.debug("Loading original handler %s", self.path)
        handler_module = import_module(self.module_name)
        handler = getattr(handler_module, self.handler_name)
        if not callable(handler):
            raise TypeError(f"{self.path} is not callable")
        return handler
