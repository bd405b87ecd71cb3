"""Face detector interface and a timeout-enforcing wrapper."""

import logging
import threading
from typing import Protocol

from event_face_search.config import CONCURRENCY, DETECT_MAX_ABANDONED, DETECT_TIMEOUT_SECONDS
from event_face_search.errors import DetectorError, DetectorTimeoutError, DetectorUnavailableError
from event_face_search.models import DetectedFace

logger = logging.getLogger(__name__)


class Detector(Protocol):
    """Maps encoded image bytes to zero or more detected faces."""

    def detect(self, image_bytes: bytes) -> list[DetectedFace]: ...


class _DetectorCall:
    """One detector invocation on its own daemon thread."""

    def __init__(self, detector: Detector, image_bytes: bytes, on_late_finish) -> None:
        self._detector = detector
        self._image_bytes = image_bytes
        self._on_late_finish = on_late_finish
        self._lock = threading.Lock()
        self._abandoned = False
        self._faces: list[DetectedFace] = []
        self._error: Exception | None = None
        self.done = threading.Event()
        self._thread = threading.Thread(target=self._run, name="detector", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def abandon(self) -> bool:
        """Give up on the call. Returns False if it already finished."""
        with self._lock:
            if self.done.is_set():
                return False
            self._abandoned = True
            return True

    def result(self) -> list[DetectedFace]:
        if self._error is not None:
            raise self._error
        return self._faces

    def _run(self) -> None:
        try:
            self._faces = list(self._detector.detect(self._image_bytes))
        except Exception as exc:
            # re-raised on the calling thread by result()
            self._error = exc
        with self._lock:
            self.done.set()
            abandoned = self._abandoned
        if abandoned:
            self._on_late_finish()


class TimedDetector:
    """Run a detector call and give up after ``timeout`` seconds.

    At most ``max_workers`` calls run at once; further callers wait for a
    slot before their deadline starts. A call that times out frees its slot
    but its thread keeps running until the detector returns, since Python
    threads cannot be interrupted. Once ``max_abandoned`` such calls are
    still running, new calls fail with ``DetectorUnavailableError`` without
    reaching the detector.
    """

    def __init__(
        self,
        detector: Detector,
        timeout: float = DETECT_TIMEOUT_SECONDS,
        max_workers: int = CONCURRENCY,
        max_abandoned: int = DETECT_MAX_ABANDONED,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be positive")
        self.detector = detector
        self.timeout = timeout
        self.max_abandoned = max_abandoned
        self._slots = threading.BoundedSemaphore(max_workers)
        self._lock = threading.Lock()
        self._abandoned = 0
        self._closed = False

    @property
    def abandoned(self) -> int:
        """Timed-out calls whose detector has not returned yet."""
        with self._lock:
            return self._abandoned

    def detect(self, image_bytes: bytes) -> list[DetectedFace]:
        """Detect faces, raising DetectorError subclasses on failure or timeout.

        Raises:
            DetectorTimeoutError: The detector ran longer than ``timeout``.
            DetectorUnavailableError: The call was not started.
            DetectorError: The detector raised.
        """
        with self._slots:
            with self._lock:
                if self._closed:
                    raise DetectorUnavailableError("Detector is closed")
                if self._abandoned >= self.max_abandoned:
                    raise DetectorUnavailableError(
                        f"{self._abandoned} timed-out detector calls are still running"
                    )
            call = _DetectorCall(self.detector, image_bytes, self._late_finish)
            call.start()
            if not call.done.wait(self.timeout):
                with self._lock:
                    timed_out = call.abandon()
                    if timed_out:
                        self._abandoned += 1
                if timed_out:
                    raise DetectorTimeoutError(f"Detector timed out after {self.timeout:g}s")

        try:
            return call.result()
        except DetectorError:
            raise
        except Exception as exc:
            raise DetectorError(f"{type(exc).__name__}: {exc}") from exc

    def close(self) -> None:
        with self._lock:
            self._closed = True

    def __enter__(self) -> "TimedDetector":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _late_finish(self) -> None:
        with self._lock:
            self._abandoned -= 1
        logger.info("Timed-out detector call finished late")
