import io
import logging
from typing import Optional, Tuple

from PIL import Image, ImageDraw, ImageFont

from camera import FrameSource

logger = logging.getLogger(__name__)

DEFAULT_SIZE: Tuple[int, int] = (640, 480)
BAND_HEIGHT = 80
BAND_RGBA = (0, 0, 0, 153)  # black at 60%
TEXT_RGB = (255, 255, 255)
FONT_SIZE = 24
FONT_CANDIDATES = ("DejaVuSans-Bold.ttf", "Arial Bold.ttf", "arialbd.ttf")


def load_caption_font(size: int = FONT_SIZE) -> ImageFont.ImageFont:
    for name in FONT_CANDIDATES:
        try:
            return ImageFont.truetype(name, size)
        except OSError:
            continue
    return ImageFont.load_default(size=size)


def caption_lines(farmer_name: Optional[str], vehicle_plate: Optional[str]) -> Tuple[str, str]:
    return (
        f"Farmer: {farmer_name or ''}".strip(),
        f"Vehicle: {vehicle_plate or ''}".strip(),
    )


class SnapshotComposer:
    """
    Still image of the weighbridge with the farmer and vehicle burned in.

    The composer owns its frame source; callers capture through compose()
    on the instance they were given.
    """

    def __init__(self, frame_source: Optional[FrameSource], jpeg_quality: int = 80):
        self.frame_source = frame_source
        self.jpeg_quality = jpeg_quality
        self._font = load_caption_font()

    def compose(self, farmer_name: str, vehicle_plate: str) -> Optional[bytes]:
        """JPEG bytes, or None when the camera has not been started or gives no frame."""
        source = self.frame_source
        if source is None or not source.started:
            return None
        frame = source.read_frame()
        if frame is None:
            return None

        w, h = source.size
        if not w or not h:
            w, h = DEFAULT_SIZE
        canvas = frame.convert("RGBA")
        if canvas.size != (w, h):
            canvas = canvas.resize((w, h))

        band = Image.new("RGBA", (w, h), (0, 0, 0, 0))
        ImageDraw.Draw(band).rectangle([0, max(0, h - BAND_HEIGHT), w, h], fill=BAND_RGBA)
        canvas = Image.alpha_composite(canvas, band)

        draw = ImageDraw.Draw(canvas)
        farmer_line, vehicle_line = caption_lines(farmer_name, vehicle_plate)
        draw.text((16, h - 48), farmer_line, font=self._font, fill=TEXT_RGB, anchor="ls")
        draw.text((16, h - 16), vehicle_line, font=self._font, fill=TEXT_RGB, anchor="ls")

        buf = io.BytesIO()
        canvas.convert("RGB").save(buf, format="JPEG", quality=self.jpeg_quality)
        logger.debug(f"composed {w}x{h} snapshot ({buf.tell()} bytes)")
        return buf.getvalue()
