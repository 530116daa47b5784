"""
New-response detection.

Two triggers feed one single-flight check:

- a fixed-interval poll of the chat source (background thread)
- a debounced notification that the chat source's files changed
  (watchdog observer on ``ChatSource.watch_path()``)

While a check is running, any further trigger is dropped rather than
queued. The last-processed id only advances after the callback
returned, so a failed response is retried on the next tick.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from enum import Enum

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .models import AIResponse
from .source import ChatSource

logger = logging.getLogger(__name__)


class DetectorState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    PROCESSING = "processing"


class _SourceChangeHandler(FileSystemEventHandler):
    def __init__(self, detector: "ResponseDetector"):
        super().__init__()
        self.detector = detector

    def on_any_event(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.detector.notify_source_changed()


class ResponseDetector:
    """Poll a ChatSource and report each new assistant response once."""

    def __init__(
        self,
        source: ChatSource,
        on_new_response: Callable[[AIResponse], object],
        *,
        poll_interval_s: float = 5.0,
        debounce_s: float = 0.5,
        watch_source: bool = True,
    ):
        self.source = source
        self.on_new_response = on_new_response
        self.poll_interval_s = poll_interval_s
        self.debounce_s = debounce_s
        self.watch_source = watch_source

        self._state = DetectorState.IDLE
        self._state_lock = threading.Lock()
        self._last_processed_id: str | None = None
        self._running = False
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._debounce_timer: threading.Timer | None = None
        self._timer_lock = threading.Lock()
        self._observer: Observer | None = None

    @property
    def state(self) -> DetectorState:
        return self._state

    @property
    def last_processed_id(self) -> str | None:
        return self._last_processed_id

    def reset_last_processed(self) -> None:
        """Forget the last response so the current latest is reported again."""
        logger.info("Resetting last processed response id")
        self._last_processed_id = None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """
        Check the source, then start polling.

        Raises:
            SourceUnavailable: the chat source cannot be read
        """
        if self._running:
            return
        self.source.ensure_available()

        self._running = True
        self._stop_event.clear()
        with self._state_lock:
            self._state = DetectorState.POLLING

        if self.watch_source:
            self._start_source_watch()

        self._thread = threading.Thread(target=self._poll_loop, name="aictx-detector", daemon=True)
        self._thread.start()
        logger.info("Polling chat source every %.1fs", self.poll_interval_s)

    def stop(self, timeout: float | None = 5.0) -> None:
        if not self._running:
            return
        self._running = False
        self._stop_event.set()

        with self._timer_lock:
            if self._debounce_timer is not None:
                self._debounce_timer.cancel()
                self._debounce_timer = None

        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout)
            self._observer = None

        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)
        self._thread = None

        with self._state_lock:
            if self._state != DetectorState.PROCESSING:
                self._state = DetectorState.IDLE
        logger.info("Stopped polling chat source")

    def _start_source_watch(self) -> None:
        path = self.source.watch_path()
        if path is None or not path.is_dir():
            logger.debug("Chat source has no watchable directory; polling only")
            return
        try:
            observer = Observer()
            observer.schedule(_SourceChangeHandler(self), str(path), recursive=False)
            observer.start()
        except OSError as e:
            logger.warning("Could not watch %s, polling only: %s", path, e)
            return
        self._observer = observer
        logger.debug("Watching %s for chat activity", path)

    def _poll_loop(self) -> None:
        self.trigger()
        while not self._stop_event.wait(self.poll_interval_s):
            self.trigger()

    # -------------------------------------------------------------------------
    # Triggers
    # -------------------------------------------------------------------------

    def notify_source_changed(self) -> None:
        """(Re)arm the debounce timer; on expiry a check is triggered."""
        if not self._running:
            return
        with self._timer_lock:
            if self._debounce_timer is not None:
                self._debounce_timer.cancel()
            timer = threading.Timer(self.debounce_s, self._debounced_trigger)
            timer.daemon = True
            self._debounce_timer = timer
            timer.start()

    def _debounced_trigger(self) -> None:
        with self._timer_lock:
            self._debounce_timer = None
        if self._running:
            logger.debug("Chat source changed, checking for new responses")
            self.trigger()

    def trigger(self) -> bool:
        """
        Run one check unless another is in flight.

        Returns:
            False if the trigger was dropped because a check was running
        """
        with self._state_lock:
            if self._state == DetectorState.PROCESSING:
                logger.debug("Check already in progress, skipping trigger")
                return False
            self._state = DetectorState.PROCESSING

        try:
            self.check_once()
        finally:
            with self._state_lock:
                self._state = DetectorState.POLLING if self._running else DetectorState.IDLE
        return True

    def check_once(self) -> AIResponse | None:
        """
        Fetch the latest assistant message and report it if it is new.

        Returns:
            The response handed to the callback, or None
        """
        try:
            latest = self.source.latest_assistant_message()
        except Exception as e:
            logger.warning("Failed to read chat source: %s", e)
            return None

        if latest is None:
            logger.debug("No assistant messages in chat source")
            return None
        if latest.id == self._last_processed_id:
            logger.debug("No new response (latest is %s)", latest.id)
            return None

        logger.info("New response %s in conversation %s", latest.id, latest.conversation_id)
        try:
            self.on_new_response(latest)
        except Exception as e:
            logger.warning("Processing response %s failed, will retry: %s", latest.id, e, exc_info=True)
            return None

        self._last_processed_id = latest.id
        return latest
