"""Project-wide configuration."""

import os
from pathlib import Path

from dotenv import load_dotenv

PROJECT_ROOT = Path(os.environ.get("EVENT_FACE_SEARCH_PROJECT_ROOT", Path.cwd()))

load_dotenv(PROJECT_ROOT / ".env")

DB_PATH = Path(
    os.environ.get("EVENT_FACE_SEARCH_DB_PATH", PROJECT_ROOT / "event_face_search.duckdb")
)
DATA_DIR = Path(os.environ.get("EVENT_FACE_SEARCH_DATA_DIR", PROJECT_ROOT / "data" / "photos"))

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

# Media store (public bucket layout: {base}/storage/v1/object/public/{bucket}/{path})
MEDIA_BASE_URL = os.environ.get("MEDIA_BASE_URL", "")
MEDIA_BUCKET = os.environ.get("MEDIA_BUCKET", "event-photos")
THUMBNAIL_BUCKET = os.environ.get("THUMBNAIL_BUCKET", "event-photos-watermarked")
MEDIA_TIMEOUT_SECONDS = float(os.environ.get("MEDIA_TIMEOUT_SECONDS", "30"))
MEDIA_MAX_ATTEMPTS = int(os.environ.get("MEDIA_MAX_ATTEMPTS", "3"))

# Face detection – InsightFace
INSIGHTFACE_MODEL_NAME = "buffalo_l"
FACE_EMBEDDING_DIM = int(os.environ.get("FACE_EMBEDDING_DIM", "512"))
FACE_DET_SIZE = (640, 640)

# Batch processing
BATCH_SIZE = int(os.environ.get("BATCH_SIZE", "16"))
CONCURRENCY = int(os.environ.get("CONCURRENCY", "4"))
DETECT_TIMEOUT_SECONDS = float(os.environ.get("DETECT_TIMEOUT_SECONDS", "30"))
# Timed-out detector calls that may still be running before detection stops
DETECT_MAX_ABANDONED = int(os.environ.get("DETECT_MAX_ABANDONED", "4"))
LEASE_TIMEOUT_SECONDS = float(os.environ.get("LEASE_TIMEOUT_SECONDS", "600"))

# Matching – Euclidean distance on L2-normalized embeddings.
# 0.9 corresponds to a cosine similarity of ~0.595.
DEFAULT_MATCH_THRESHOLD = float(os.environ.get("DEFAULT_MATCH_THRESHOLD", "0.9"))
DEFAULT_MATCH_LIMIT = 50
MAX_MATCH_LIMIT = 100
DEFAULT_PENDING_LIMIT = 100
