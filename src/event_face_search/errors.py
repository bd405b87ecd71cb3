"""Exception hierarchy for face processing and matching.

Per-photo failures (``MediaFetchError``, ``DetectorError`` and subclasses)
are recorded on the photo and do not stop a batch run. Integrity errors
mean the detector and the store disagree about the data and abort the run.
"""


class FaceSearchError(Exception):
    """Base exception for all face search errors."""


# -----------------------------------------------------------------------------
# Per-photo failures
# -----------------------------------------------------------------------------


class MediaFetchError(FaceSearchError):
    """Raised when photo bytes cannot be fetched from the media store."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Failed to fetch {path}: {reason}")
        self.path = path
        self.reason = reason


class DetectorError(FaceSearchError):
    """Raised when the face detector fails on an image."""


class DetectorTimeoutError(DetectorError):
    """Raised when the face detector does not answer within the timeout."""


class InvalidImageError(DetectorError):
    """Raised when image bytes cannot be decoded."""


class DetectorUnavailableError(DetectorError):
    """Raised when too many timed-out detector calls are still running.

    The detector never saw the image, so this is not a failure of the photo.
    """


# -----------------------------------------------------------------------------
# Store
# -----------------------------------------------------------------------------


class EmbeddingIntegrityError(FaceSearchError, ValueError):
    """Raised when an embedding does not fit the store (dimension, event, values)."""


class PhotoNotFoundError(FaceSearchError, KeyError):
    """Raised when a photo id does not exist."""

    def __init__(self, photo_id: str) -> None:
        super().__init__(photo_id)
        self.photo_id = photo_id

    def __str__(self) -> str:
        return f"Photo not found: {self.photo_id}"


class InvalidStateTransitionError(FaceSearchError):
    """Raised when a photo cannot move from its current state to the requested one."""


# -----------------------------------------------------------------------------
# Query
# -----------------------------------------------------------------------------


class NoFaceDetectedError(FaceSearchError):
    """Raised when the submitted selfie contains no detectable face."""

    user_message = "No face detected in selfie"
