"""Cooperative cancellation for concurrent project tasks.

A CancellationToken is created per project phase and passed explicitly into
every task. Tasks check it before each network call; calls already in flight
run to completion so no partial writes are left behind.
"""

import logging

logger = logging.getLogger("pulse.sync.cancellation")

__all__ = ["CancellationToken", "OperationCancelled"]


class OperationCancelled(Exception):
    """Raised by CancellationToken.raise_if_cancelled() inside a task."""

    def __init__(self, reason: str | None = None):
        super().__init__(reason or "operation cancelled")
        self.reason = reason


class CancellationToken:
    """One-way cancellation flag with a reason.

    Example:
        >>> token = CancellationToken()
        >>> token.cancel("rate_limited")
        >>> token.is_cancelled
        True
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._reason: str | None = None

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str) -> None:
        """Request cancellation. Only the first reason is kept."""
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason
        logger.info("cancellation_requested", extra={"reason": reason})

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise OperationCancelled(self._reason)
