"""Cooperative cancellation for chapter/event loads."""

from __future__ import annotations

import itertools
import logging

logger = logging.getLogger(__name__)

_TOKEN_SEQUENCE = itertools.count(1)


class CancellationToken:
    """Flag checked after every suspension point of an async load."""

    def __init__(self, label: str = "") -> None:
        self._cancelled = False
        self.serial = next(_TOKEN_SEQUENCE)
        self.label = label

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if not self._cancelled:
            logger.debug("cancellation.cancel serial=%s label=%s", self.serial, self.label)
        self._cancelled = True

    def __repr__(self) -> str:
        return f"CancellationToken(serial={self.serial}, cancelled={self._cancelled})"


class NavigationCoordinator:
    """Issue tokens so that only the most recently issued load may apply its result."""

    def __init__(self) -> None:
        self._current: CancellationToken | None = None

    @property
    def current(self) -> CancellationToken | None:
        return self._current

    def begin(self, label: str = "") -> CancellationToken:
        """Cancel the in-flight token, if any, and issue a new one."""
        if self._current is not None:
            self._current.cancel()
        self._current = CancellationToken(label)
        return self._current

    def is_current(self, token: CancellationToken) -> bool:
        return token is self._current and not token.cancelled

    def cancel_all(self) -> None:
        if self._current is not None:
            self._current.cancel()
        self._current = None
