"""
Follow-up rescans for the latest response.

Edits often land after the assistant's message was written, so the
pipeline is re-run for the same response every ``interval_s`` until
``duration_s`` has passed. Only the latest response is followed: tracking
a newer one cancels the older timer immediately.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

from .models import AIResponse

logger = logging.getLogger(__name__)


class FollowUpScheduler:
    """At most one followed response, with at most one pending timer."""

    def __init__(
        self,
        run: Callable[[AIResponse], object],
        *,
        interval_s: float = 30.0,
        duration_s: float = 600.0,
        clock: Callable[[], float] = time.monotonic,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
    ):
        self._run = run
        self.interval_s = interval_s
        self.duration_s = duration_s
        self._clock = clock
        self._timer_factory = timer_factory

        self._lock = threading.Lock()
        self._active: AIResponse | None = None
        self._started_at = 0.0
        self._generation = 0
        self._timer: threading.Timer | None = None

    @property
    def active_response_id(self) -> str | None:
        active = self._active
        return active.id if active else None

    @property
    def pending(self) -> bool:
        return self._timer is not None

    def track(self, response: AIResponse) -> None:
        """Follow ``response``, replacing whatever was followed before."""
        with self._lock:
            if self._active is not None and self._active.id == response.id:
                return
            self._cancel_locked()
            self._active = response
            self._started_at = self._clock()
            self._generation += 1
            self._schedule_locked(self._generation)
        logger.debug("Following response %s for %.0fs", response.id, self.duration_s)

    def cancel(self) -> None:
        with self._lock:
            self._cancel_locked()

    def stop(self) -> None:
        self.cancel()

    def _cancel_locked(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._active is not None:
            logger.debug("Stopped following response %s", self._active.id)
        self._active = None
        self._generation += 1

    def _schedule_locked(self, generation: int) -> None:
        timer = self._timer_factory(self.interval_s, self._fire, args=(generation,))
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _expired_locked(self) -> bool:
        return self._clock() - self._started_at >= self.duration_s

    def _fire(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self._active is None:
                return
            self._timer = None
            if self._expired_locked():
                self._cancel_locked()
                return
            response = self._active

        logger.debug("Rescanning response %s", response.id)
        try:
            self._run(response)
        except Exception as e:
            logger.warning("Rescan of response %s failed: %s", response.id, e)

        with self._lock:
            if generation != self._generation or self._active is None:
                return
            if self._expired_locked():
                self._cancel_locked()
            else:
                self._schedule_locked(generation)
