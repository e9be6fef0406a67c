import os

BASE_URL = os.getenv("BASE_URL", "http://localhost:8000")
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./weighment.db")

# object storage for snapshots, served under /media
MEDIA_DIR = os.getenv("MEDIA_DIR", "./media")
SNAPSHOT_CATEGORY = os.getenv("SNAPSHOT_CATEGORY", "snapshots")
SNAPSHOT_JPEG_QUALITY = int(os.getenv("SNAPSHOT_JPEG_QUALITY", "80"))

# unset = no camera on the server; browser terminals send their own frame
CAMERA_SOURCE = os.getenv("CAMERA_SOURCE") or None

VEHICLE_LINK_POLICY = os.getenv("VEHICLE_LINK_POLICY", "first_use")
ALLOW_NEGATIVE_NET = os.getenv("ALLOW_NEGATIVE_NET", "true").lower() in ("1", "true", "yes")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR = os.getenv("LOG_DIR") or None

# change notifications are in-process: one service process per database
WEB_CONCURRENCY = int(os.getenv("WEB_CONCURRENCY", "1"))
# threads that refresh terminal worklists after a commit
FEED_DISPATCH_WORKERS = int(os.getenv("FEED_DISPATCH_WORKERS", "4"))

if VEHICLE_LINK_POLICY not in ("first_use", "latest_use"):
    raise ValueError(f"VEHICLE_LINK_POLICY must be first_use or latest_use, got {VEHICLE_LINK_POLICY!r}")
if FEED_DISPATCH_WORKERS < 0:
    raise ValueError(f"FEED_DISPATCH_WORKERS cannot be negative, got {FEED_DISPATCH_WORKERS}")
if not 1 <= SNAPSHOT_JPEG_QUALITY <= 95:
    raise ValueError(f"SNAPSHOT_JPEG_QUALITY out of range: {SNAPSHOT_JPEG_QUALITY}")


def camera_source():
    """CAMERA_SOURCE as an OpenCV source: device index for digits, URL otherwise."""
    if CAMERA_SOURCE is None:
        return None
    return int(CAMERA_SOURCE) if CAMERA_SOURCE.isdigit() else CAMERA_SOURCE
