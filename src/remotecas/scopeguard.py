"""Deferred cleanup callbacks that never raise."""

from __future__ import annotations

import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)


class ScopeGuard:
    """Run *callback* when the ``with`` block exits, however it exits.

    Exceptions raised by the callback are logged and dropped so that cleanup
    cannot mask the error that is already unwinding.
    """

    def __init__(self, callback: Callable[[], object]) -> None:
        self._callback = callback

    def __enter__(self) -> ScopeGuard:
        return self

    def __exit__(self, *exc_info) -> None:
        try:
            self._callback()
            logger.debug("Callback function returned successfully")
        except Exception as e:
            logger.warning("Callback function threw an exception: %s", e)
