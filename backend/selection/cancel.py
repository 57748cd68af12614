from __future__ import annotations

import asyncio
from typing import Callable


class CancellationToken:
    """
    Created once per focus change and handed to every lookup issued for it.

    Cancelling runs the registered callbacks (typically `Task.cancel`) once.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._callbacks: list[Callable[[], object]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        callbacks, self._callbacks = self._callbacks, []
        for cb in callbacks:
            cb()

    def on_cancel(self, cb: Callable[[], object]) -> None:
        if self._cancelled:
            cb()
            return
        self._callbacks.append(cb)

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise asyncio.CancelledError()
