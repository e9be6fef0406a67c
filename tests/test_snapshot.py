"""
Tests for snapshot: still image with the farmer/vehicle caption band.
"""

import io

from PIL import Image

from conftest import FakeCamera
from snapshot import DEFAULT_SIZE, SnapshotComposer, caption_lines


def _open(data: bytes) -> Image.Image:
    img = Image.open(io.BytesIO(data))
    img.load()
    return img


class TestSnapshotComposer:
    def test_jpeg_at_native_size(self):
        data = SnapshotComposer(FakeCamera(size=(800, 600))).compose("Ram Singh", "GJ01AB1234")
        img = _open(data)
        assert img.format == "JPEG"
        assert img.size == (800, 600)

    def test_default_size_when_camera_reports_none(self):
        data = SnapshotComposer(FakeCamera(size=(320, 240), report_size=False)).compose("Ram Singh", "GJ01AB1234")
        assert _open(data).size == DEFAULT_SIZE

    def test_none_when_camera_not_started(self):
        assert SnapshotComposer(FakeCamera(started=False)).compose("Ram Singh", "GJ01AB1234") is None

    def test_none_without_frame_source(self):
        assert SnapshotComposer(None).compose("Ram Singh", "GJ01AB1234") is None

    def test_caption_band_darkens_bottom_only(self):
        img = _open(SnapshotComposer(FakeCamera(size=(640, 480))).compose("Ram Singh", "GJ01AB1234")).convert("RGB")
        # right edge of the band, clear of the caption text
        r, g, b = img.getpixel((630, 470))
        assert 85 <= r <= 120 and 85 <= g <= 120 and 85 <= b <= 120
        assert min(img.getpixel((630, 10))) > 240
        assert min(img.getpixel((630, 390))) > 240

    def test_repeated_capture_gives_independent_equal_images(self):
        composer = SnapshotComposer(FakeCamera())
        first = composer.compose("Ram Singh", "GJ01AB1234")
        second = composer.compose("Ram Singh", "GJ01AB1234")
        assert first == second
        assert composer.frame_source.reads == 2

    def test_caption_changes_image(self):
        composer = SnapshotComposer(FakeCamera())
        assert composer.compose("Ram Singh", "GJ01AB1234") != composer.compose("Anita Devi", "GJ01AB1234")

    def test_band_clamped_on_short_frames(self):
        data = SnapshotComposer(FakeCamera(size=(200, 50))).compose("Ram Singh", "GJ01AB1234")
        assert _open(data).size == (200, 50)


def test_caption_lines():
    assert caption_lines("Ram Singh", "GJ01AB1234") == ("Farmer: Ram Singh", "Vehicle: GJ01AB1234")
    assert caption_lines(None, "") == ("Farmer:", "Vehicle:")
