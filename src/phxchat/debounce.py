"""Debounce local keystrokes into typing started / stopped signals."""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger("phxchat.debounce")

DEFAULT_TYPING_DELAY = 2.0


class TypingDebouncer:
    """Two state machine, idle or typing, driven by keystrokes and one timer.

    The first keystroke while idle sends ``True``. Every keystroke rearms the
    inactivity timer; when it fires ``False`` is sent and the debouncer is idle
    again. Submitting a message is not a keystroke and leaves the timer alone.
    """

    def __init__(
        self,
        send: Callable[[bool], Any],
        delay: float = DEFAULT_TYPING_DELAY,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._send = send
        self.delay = delay
        self._loop = loop
        self._is_typing = False
        self._timer: asyncio.TimerHandle | None = None

    @property
    def is_typing(self) -> bool:
        return self._is_typing

    def keystroke(self) -> None:
        """Record a local keystroke.

        If the start signal could not be sent (``send`` returned ``False``) the
        debouncer stays idle, so no stop signal follows a start that never went out.
        """
        if not self._is_typing:
            if self._send(True) is False:
                logger.debug("Typing start dropped, staying idle")
                return
            self._is_typing = True
            logger.debug("Typing started")
        self._rearm()

    def close(self) -> None:
        """Cancel the pending timer without sending anything."""
        self._cancel()

    def _rearm(self) -> None:
        self._cancel()
        loop = self._loop or asyncio.get_running_loop()
        self._timer = loop.call_later(self.delay, self._expire)

    def _cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _expire(self) -> None:
        self._timer = None
        self._is_typing = False
        logger.debug("Typing stopped")
        self._send(False)
