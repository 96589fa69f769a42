"""
Best-effort EXIF extraction with Pillow.
"""
import io
import logging
from datetime import datetime
from fractions import Fraction
from typing import Any, Optional

from PIL import Image, UnidentifiedImageError

from models.data_models import ExifData
from models.errors import ImageLoadError
from services.image_loader import ImageSource, read_source_bytes

# 拍摄参数位于 Exif 子 IFD 中
EXIF_IFD = 0x8769
TAG_MAKE = 0x010F
TAG_MODEL = 0x0110
TAG_DATETIME = 0x0132
TAG_EXPOSURE_TIME = 0x829A
TAG_FNUMBER = 0x829D
TAG_ISO = 0x8827
TAG_DATETIME_ORIGINAL = 0x9003
TAG_FOCAL_LENGTH = 0x920A
TAG_LENS_MODEL = 0xA434


def _to_float(value: Any) -> Optional[float]:
    try:
        if isinstance(value, tuple) and len(value) == 2:
            return value[0] / value[1] if value[1] else None
        return float(value)
    except (TypeError, ValueError, ZeroDivisionError):
        return None


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="ignore")
    text = str(value).strip().strip("\x00").strip()
    return text or None


def format_aperture(value: Any) -> Optional[str]:
    f = _to_float(value)
    if not f:
        return None
    return f"f/{f:.1f}".replace(".0", "")


def format_shutter(value: Any) -> Optional[str]:
    t = _to_float(value)
    if not t or t <= 0:
        return None
    if t >= 1:
        return f"{t:g}s"
    frac = Fraction(t).limit_denominator(8000)
    return f"1/{round(1 / t)}s" if frac.numerator != 1 else f"1/{frac.denominator}s"


def format_focal_length(value: Any) -> Optional[str]:
    f = _to_float(value)
    if not f:
        return None
    return f"{f:g}mm"


def format_iso(value: Any) -> Optional[str]:
    if isinstance(value, (tuple, list)):
        value = value[0] if value else None
    try:
        iso = int(value)
    except (TypeError, ValueError):
        return None
    return f"ISO {iso}" if iso > 0 else None


def format_capture_date(value: Any) -> Optional[str]:
    text = _clean(value)
    if not text:
        return None
    try:
        return datetime.strptime(text, "%Y:%m:%d %H:%M:%S").isoformat()
    except ValueError:
        return text


class ExifReader:
    """Reads camera metadata. Missing fields stay None; unreadable files give an empty ExifData."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def extract(self, source: ImageSource) -> ExifData:
        try:
            if isinstance(source, Image.Image):
                exif = source.getexif()
            else:
                with Image.open(io.BytesIO(read_source_bytes(source))) as img:
                    exif = img.getexif()
        except (ImageLoadError, UnidentifiedImageError, OSError) as e:
            self.logger.warning(f"EXIF extraction failed: {e}")
            return ExifData()

        sub = exif.get_ifd(EXIF_IFD) if exif else {}

        def tag(code: int) -> Any:
            return sub.get(code, exif.get(code))

        make = _clean(exif.get(TAG_MAKE))
        model = _clean(exif.get(TAG_MODEL))
        if make and model and model.lower().startswith(make.lower()):
            camera = model
        else:
            camera = " ".join(p for p in (make, model) if p) or None

        data = ExifData(
            camera=camera,
            lens=_clean(tag(TAG_LENS_MODEL)),
            aperture=format_aperture(tag(TAG_FNUMBER)),
            shutter_speed=format_shutter(tag(TAG_EXPOSURE_TIME)),
            iso=format_iso(tag(TAG_ISO)),
            focal_length=format_focal_length(tag(TAG_FOCAL_LENGTH)),
            capture_date=format_capture_date(tag(TAG_DATETIME_ORIGINAL) or exif.get(TAG_DATETIME)),
        )
        self.logger.debug(f"EXIF: {data}")
        return data

