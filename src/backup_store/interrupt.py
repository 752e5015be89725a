"""
Cooperative cancellation.

A token is handed to long scans, which check it between shards and items.
Cancellation is advisory: work already done, including quarantine moves,
is kept.
"""

import threading


class CancellationToken:
    """Thread-safe flag that asks running scans to stop."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def __bool__(self) -> bool:
        return self.cancelled

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.cancelled})"


def is_cancelled(token) -> bool:
    """True if ``token`` is set; ``None`` never cancels."""
    return token is not None and token.cancelled
