"""
Tests for camera: frame sources handed to the snapshot composer.
"""

import base64
import io

import pytest
from PIL import Image

import camera
from camera import OpenCVCamera, StillFrameSource, decode_data_url
from errors import CameraAccessDenied, CaptureUnavailableError


def _jpeg_data_url(size=(64, 48)) -> str:
    buf = io.BytesIO()
    Image.new("RGB", size, (10, 20, 30)).save(buf, format="JPEG")
    return "data:image/jpeg;base64," + base64.b64encode(buf.getvalue()).decode()


class TestStillFrameSource:
    def test_from_data_url(self):
        src = StillFrameSource(_jpeg_data_url())
        assert src.started
        assert src.size == (64, 48)
        assert src.read_frame().mode == "RGB"

    def test_release(self):
        src = StillFrameSource(_jpeg_data_url())
        src.release()
        assert not src.started
        assert src.read_frame() is None
        assert src.size == (0, 0)

    def test_not_an_image(self):
        with pytest.raises(CaptureUnavailableError):
            StillFrameSource(b"definitely not a jpeg")

    def test_bad_base64(self):
        with pytest.raises(CaptureUnavailableError):
            decode_data_url("data:image/jpeg;base64,@@@")


class _ClosedCapture:
    released = False

    def __init__(self, source):
        self.source = source

    def isOpened(self):
        return False

    def release(self):
        _ClosedCapture.released = True


class TestOpenCVCamera:
    def test_access_denied(self, monkeypatch):
        monkeypatch.setattr(camera.cv2, "VideoCapture", _ClosedCapture)
        cam = OpenCVCamera(0)
        with pytest.raises(CameraAccessDenied):
            cam.start()
        assert not cam.started
        assert _ClosedCapture.released

    def test_unstarted_camera_gives_nothing(self):
        cam = OpenCVCamera(0)
        assert cam.read_frame() is None
        assert cam.size == (0, 0)
        cam.release()
