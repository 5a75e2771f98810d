"""Cooperative cancellation for sequential batch operations."""

from __future__ import annotations


class CancelToken:
    """Flag checked by batch loops before starting each item.

    Cancelling never interrupts an item already in flight; it only stops the
    loop from picking up the next one.
    """

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


def is_cancelled(token: CancelToken | None) -> bool:
    return token is not None and token.cancelled
