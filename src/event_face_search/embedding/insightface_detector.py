"""InsightFace wrapper for face detection and embedding extraction."""

from io import BytesIO

import numpy as np
from insightface.app import FaceAnalysis
from PIL import Image, ImageOps, UnidentifiedImageError

from event_face_search.config import FACE_DET_SIZE, INSIGHTFACE_MODEL_NAME
from event_face_search.errors import InvalidImageError
from event_face_search.models import BoundingBox, DetectedFace


class InsightFaceDetector:
    """Detect faces and extract ArcFace embeddings using InsightFace."""

    def __init__(
        self,
        model_name: str = INSIGHTFACE_MODEL_NAME,
        device: str = "cuda",
        det_size: tuple[int, int] = FACE_DET_SIZE,
    ) -> None:
        providers = (
            ["CUDAExecutionProvider", "CPUExecutionProvider"]
            if device == "cuda"
            else ["CPUExecutionProvider"]
        )
        self.app = FaceAnalysis(name=model_name, providers=providers)
        self.app.prepare(ctx_id=0 if device == "cuda" else -1, det_size=det_size)
        self.model_name = model_name

    def detect(self, image_bytes: bytes) -> list[DetectedFace]:
        """Detect faces in encoded image bytes.

        Args:
            image_bytes: JPEG/PNG/... file contents.

        Returns:
            One DetectedFace per face, with an L2-normalized embedding.

        Raises:
            InvalidImageError: The bytes are not a decodable image.
        """
        img = _decode_bgr(image_bytes)
        faces = self.app.get(img)

        detections = []
        for face in faces:
            x1, y1, x2, y2 = face.bbox.astype(float)
            detections.append(
                DetectedFace(
                    bounding_box=BoundingBox.from_corners(x1, y1, x2, y2),
                    embedding=face.normed_embedding.astype(np.float32),
                    confidence=float(face.det_score),
                )
            )
        return detections


def _decode_bgr(image_bytes: bytes) -> np.ndarray:
    """Decode to an upright BGR array, the layout InsightFace expects."""
    try:
        with Image.open(BytesIO(image_bytes)) as img:
            # Phone selfies carry their rotation in EXIF
            upright = ImageOps.exif_transpose(img).convert("RGB")
    except (UnidentifiedImageError, OSError) as exc:
        raise InvalidImageError(f"Cannot decode image: {exc}") from exc
    return np.ascontiguousarray(np.asarray(upright)[:, :, ::-1])
