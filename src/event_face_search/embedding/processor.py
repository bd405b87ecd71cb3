"""Batch face processing: claim pending photos, detect faces, record outcomes."""

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from datetime import datetime

import duckdb

from event_face_search.config import (
    BATCH_SIZE,
    CONCURRENCY,
    DETECT_MAX_ABANDONED,
    DETECT_TIMEOUT_SECONDS,
    LEASE_TIMEOUT_SECONDS,
)
from event_face_search.embedding.detector import Detector, TimedDetector
from event_face_search.embedding.face_repository import (
    record_detection_failure,
    record_detection_result,
)
from event_face_search.errors import (
    DetectorError,
    DetectorUnavailableError,
    EmbeddingIntegrityError,
    MediaFetchError,
)
from event_face_search.manager.media import MediaStore
from event_face_search.manager.repository import (
    claim_photo,
    list_pending_photos,
    release_photo,
    utcnow,
)
from event_face_search.models import BatchSummary, Photo, PhotoOutcome
from event_face_search.search.index import SimilarityIndex

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[Photo, PhotoOutcome], None]


class BatchProcessor:
    """Drive an event's pending photos through the face detector.

    Photos are detected in parallel on up to ``concurrency`` threads. Store
    writes are serialized and each worker uses its own DuckDB cursor.

    Args:
        conn: Connection to the embedding store.
        detector: Face detector; wrapped so each call times out after
            ``detect_timeout`` seconds.
        media: Source of photo bytes.
        batch_size: Photos fetched per ``list_pending_photos`` call.
        concurrency: Worker threads.
        detect_timeout: Seconds before a detector call counts as failed.
        lease_timeout: Seconds after which another run's claim is stale.
        max_abandoned: Timed-out detector calls still running before the run
            stops with ``DetectorUnavailableError``.
        index: Similarity index to refresh when a run stores new faces.
        clock: Source of naive UTC timestamps for claims.
    """

    def __init__(
        self,
        conn: duckdb.DuckDBPyConnection,
        detector: Detector,
        media: MediaStore,
        batch_size: int = BATCH_SIZE,
        concurrency: int = CONCURRENCY,
        detect_timeout: float = DETECT_TIMEOUT_SECONDS,
        lease_timeout: float = LEASE_TIMEOUT_SECONDS,
        max_abandoned: int = DETECT_MAX_ABANDONED,
        index: SimilarityIndex | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if batch_size < 1 or concurrency < 1:
            raise ValueError("batch_size and concurrency must be positive")
        self.conn = conn
        self.detector = detector
        self.media = media
        self.batch_size = batch_size
        self.concurrency = concurrency
        self.detect_timeout = detect_timeout
        self.lease_timeout = lease_timeout
        self.max_abandoned = max_abandoned
        self.index = index
        self.clock = clock
        self._write_lock = threading.Lock()

    def run(
        self,
        event_id: str,
        limit: int | None = None,
        cancel: threading.Event | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> BatchSummary:
        """Process pending photos of an event until none are left.

        Args:
            event_id: Event whose photos to process.
            limit: Max number of photos to take from the queue (default: all).
            cancel: Set to stop the run before the next photo starts.
            on_progress: Called once per photo with its outcome.

        Returns:
            Outcome counts for the run.

        Raises:
            EmbeddingIntegrityError: The detector produced data the store
                rejects; the run stops.
            DetectorUnavailableError: Too many detector calls hung; the
                photo being processed goes back to pending and the run stops.
        """
        summary = BatchSummary(event_id=event_id)
        remaining = limit
        logger.info("Starting face processing for event %s (limit=%s)", event_id, limit)

        with (
            TimedDetector(
                self.detector, self.detect_timeout, self.concurrency, self.max_abandoned
            ) as timed,
            ThreadPoolExecutor(
                max_workers=self.concurrency, thread_name_prefix="face-batch"
            ) as pool,
        ):
            while remaining is None or remaining > 0:
                if cancel is not None and cancel.is_set():
                    summary.cancelled = True
                    break
                size = self.batch_size if remaining is None else min(self.batch_size, remaining)
                photos = list_pending_photos(
                    self.conn, event_id, size, self.lease_timeout, now=self.clock()
                )
                if not photos:
                    break

                futures = {
                    pool.submit(self._process_one, timed, photo, cancel): photo
                    for photo in photos
                }
                self._collect(futures, summary, on_progress)
                if remaining is not None:
                    remaining -= len(photos)

            if cancel is not None and cancel.is_set():
                summary.cancelled = True

        if self.index is not None and summary.processed:
            self.index.refresh(event_id)

        logger.info(
            "Finished event %s: %d processed, %d without faces, %d failed, %d skipped%s",
            event_id,
            summary.processed,
            summary.no_face_found,
            summary.failed,
            summary.skipped,
            " (cancelled)" if summary.cancelled else "",
        )
        return summary

    def _collect(
        self,
        futures: dict[Future, Photo],
        summary: BatchSummary,
        on_progress: ProgressCallback | None,
    ) -> None:
        try:
            for future in as_completed(futures):
                photo = futures[future]
                outcome, faces, reason = future.result()
                summary.add(outcome, faces)
                if reason is not None:
                    summary.failures[photo.id] = reason
                if on_progress is not None:
                    on_progress(photo, outcome)
        except (EmbeddingIntegrityError, DetectorUnavailableError) as exc:
            for future in futures:
                future.cancel()
            logger.error("Stopping batch for event %s: %s", summary.event_id, exc)
            raise

    def _process_one(
        self,
        detector: TimedDetector,
        photo: Photo,
        cancel: threading.Event | None,
    ) -> tuple[PhotoOutcome, int, str | None]:
        if cancel is not None and cancel.is_set():
            return PhotoOutcome.SKIPPED, 0, None

        with self.conn.cursor() as cur:
            with self._write_lock:
                claimed = claim_photo(cur, photo.id, self.lease_timeout, now=self.clock())
            if not claimed:
                logger.debug("Photo %s is leased by another run", photo.id)
                return PhotoOutcome.SKIPPED, 0, None

            try:
                image_bytes = self.media.get_bytes(photo.storage_path)
                faces = detector.detect(image_bytes)
            except DetectorUnavailableError:
                with self._write_lock:
                    release_photo(cur, photo.id)
                logger.warning("Detector unavailable; photo %s returned to the queue", photo.id)
                raise
            except (MediaFetchError, DetectorError) as exc:
                reason = str(exc)
                logger.warning("Face detection failed for photo %s: %s", photo.id, reason)
                with self._write_lock:
                    recorded = record_detection_failure(cur, photo.id, reason)
                if not recorded:
                    logger.warning("Photo %s was closed by another run; failure dropped", photo.id)
                    return PhotoOutcome.SKIPPED, 0, None
                return PhotoOutcome.FAILED, 0, reason

            with self._write_lock:
                recorded = record_detection_result(cur, photo.id, faces, event_id=photo.event_id)
            if not recorded:
                logger.warning("Photo %s was closed by another run; result dropped", photo.id)
                return PhotoOutcome.SKIPPED, 0, None

        outcome = PhotoOutcome.PROCESSED if faces else PhotoOutcome.NO_FACE_FOUND
        return outcome, len(faces), None
