"""
Image source decoding.

Accepts the image references that flow through the app: PIL images, raw bytes,
``data:`` URLs, http(s) URLs and local file paths.
"""
import base64
import binascii
import io
import logging
import mimetypes
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from pathlib import Path
from typing import Any, Optional, Union

import requests
from PIL import Image, UnidentifiedImageError

from models.errors import ImageLoadError

logger = logging.getLogger(__name__)

ImageSource = Union[Image.Image, bytes, str, Path]


def is_data_url(source: Any) -> bool:
    return isinstance(source, str) and source.startswith("data:")


def is_remote_url(source: Any) -> bool:
    return isinstance(source, str) and source.startswith(("http://", "https://"))


def parse_data_url(url: str):
    """Split a base64 ``data:`` URL into (mime_type, bytes)."""
    try:
        header, payload = url.split(",", 1)
        mime = header[5:].split(";", 1)[0] or "application/octet-stream"
        return mime, base64.b64decode(payload)
    except (ValueError, binascii.Error) as e:
        raise ImageLoadError(f"Malformed data URL: {e}") from e


def to_data_url(data: bytes, mime_type: str = "image/jpeg") -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def file_to_data_url(path: Union[str, Path]) -> str:
    """Embed a local file as a data URL (local-only fallback when upload fails)."""
    p = Path(path)
    mime = mimetypes.guess_type(p.name)[0] or "image/jpeg"
    try:
        return to_data_url(p.read_bytes(), mime)
    except OSError as e:
        raise ImageLoadError(f"Cannot read {p}: {e}") from e


def read_source_bytes(source: ImageSource, timeout: Optional[float] = None) -> bytes:
    """Return the encoded bytes behind an image source."""
    if isinstance(source, bytes):
        return source
    if isinstance(source, Image.Image):
        buf = io.BytesIO()
        source.convert("RGB").save(buf, format="PNG")
        return buf.getvalue()
    if is_data_url(source):
        return parse_data_url(source)[1]
    if is_remote_url(source):
        try:
            resp = requests.get(source, timeout=timeout or 10.0)
            resp.raise_for_status()
            return resp.content
        except requests.RequestException as e:
            raise ImageLoadError(f"Failed to fetch {source}: {e}") from e
    try:
        return Path(source).read_bytes()
    except (OSError, TypeError) as e:
        raise ImageLoadError(f"Cannot read image source {source!r}: {e}") from e


def _decode(source: ImageSource, timeout: Optional[float]) -> Image.Image:
    if isinstance(source, Image.Image):
        img = source.copy()
    else:
        data = read_source_bytes(source, timeout=timeout)
        try:
            img = Image.open(io.BytesIO(data))
            img.load()
        except (UnidentifiedImageError, OSError, ValueError) as e:
            raise ImageLoadError(f"Cannot decode image: {e}") from e
    return img


def load_image(source: ImageSource, timeout: Optional[float] = None) -> Image.Image:
    """Decode an image source into a fully loaded PIL image.

    Args:
        source: Any supported image reference.
        timeout: Upper bound in seconds for fetch + decode. None waits indefinitely.

    Raises:
        ImageLoadError: When the source cannot be fetched/decoded in time.
    """
    if source is None or (isinstance(source, str) and not source):
        raise ImageLoadError("Empty image source")
    if timeout is None:
        return _decode(source, None)

    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ImageDecode")
    try:
        future = executor.submit(_decode, source, timeout)
        try:
            return future.result(timeout=timeout)
        except FutureTimeout:
            future.cancel()
            raise ImageLoadError(f"Image decode timed out after {timeout:.1f}s")
    finally:
        # 超时后不等待后台解码线程结束
        executor.shutdown(wait=False)
