"""
Frame sources for weighment snapshots.

Two kinds of terminal exist at the mill:
- a weighbridge PC with a camera attached to the server (OpenCVCamera)
- a browser terminal that grabs its own camera frame and posts it with the
  gross weigh (StillFrameSource)

Both hand the snapshot composer an RGB PIL image.
"""

import base64
import binascii
import io
import logging
import threading
from abc import ABC, abstractmethod
from typing import Optional, Tuple, Union

import cv2
from PIL import Image, UnidentifiedImageError

from errors import CameraAccessDenied, CaptureUnavailableError

logger = logging.getLogger(__name__)


class FrameSource(ABC):
    """A live source from which still frames can be sampled."""

    @abstractmethod
    def start(self) -> None:
        """Request access to the device. Raises CameraAccessDenied."""

    @property
    @abstractmethod
    def started(self) -> bool:
        pass

    @property
    @abstractmethod
    def size(self) -> Tuple[int, int]:
        """Native (width, height); (0, 0) while unknown."""

    @abstractmethod
    def read_frame(self) -> Optional[Image.Image]:
        """Latest frame as RGB, or None when no frame is available."""

    @abstractmethod
    def release(self) -> None:
        """Free the device."""

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()


class OpenCVCamera(FrameSource):
    """
    Webcam or RTSP camera read through OpenCV.

    Frames are read on demand (one grab per snapshot); the device stays open
    between snapshots until release().
    """

    def __init__(self, source: Union[int, str]):
        self.source = source
        self._cap = None
        self._lock = threading.Lock()

    def start(self) -> None:
        with self._lock:
            if self._cap is not None:
                return
            cap = cv2.VideoCapture(self.source)
            if not cap.isOpened():
                cap.release()
                raise CameraAccessDenied(f"Camera access denied or not available: {self.source}")
            self._cap = cap
        w, h = self.size
        logger.info(f"[OpenCVCamera] Opened {self.source} ({w}x{h})")

    @property
    def started(self) -> bool:
        return self._cap is not None

    @property
    def size(self) -> Tuple[int, int]:
        cap = self._cap
        if cap is None:
            return 0, 0
        return int(cap.get(cv2.CAP_PROP_FRAME_WIDTH) or 0), int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT) or 0)

    def read_frame(self) -> Optional[Image.Image]:
        with self._lock:
            if self._cap is None:
                return None
            ok, frame = self._cap.read()
        if not ok or frame is None:
            logger.warning(f"[OpenCVCamera] No frame from {self.source}")
            return None
        return Image.fromarray(cv2.cvtColor(frame, cv2.COLOR_BGR2RGB))

    def release(self) -> None:
        with self._lock:
            if self._cap is not None:
                self._cap.release()
                self._cap = None
                logger.info(f"[OpenCVCamera] Released {self.source}")


def decode_data_url(data_url: str) -> bytes:
    """Bytes of a ``data:image/...;base64,...`` URL (a bare base64 string is accepted too)."""
    payload = data_url.split(",", 1)[1] if data_url.startswith("data:") else data_url
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise CaptureUnavailableError(f"Camera frame is not valid base64: {e}")


class StillFrameSource(FrameSource):
    """One frame pushed by a browser terminal."""

    def __init__(self, image: Union[bytes, str]):
        data = decode_data_url(image) if isinstance(image, str) else image
        try:
            img = Image.open(io.BytesIO(data))
            img.load()
        except (UnidentifiedImageError, OSError) as e:
            raise CaptureUnavailableError(f"Camera frame could not be decoded: {e}")
        self._image = img.convert("RGB")

    def start(self) -> None:
        pass

    @property
    def started(self) -> bool:
        return self._image is not None

    @property
    def size(self) -> Tuple[int, int]:
        return self._image.size if self._image is not None else (0, 0)

    def read_frame(self) -> Optional[Image.Image]:
        return self._image.copy() if self._image is not None else None

    def release(self) -> None:
        self._image = None
