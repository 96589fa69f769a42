"""
Session-scoped thumbnail cache for list views.

Cloudinary assets get a URL-transform thumbnail with no local work. Embedded
or local images are downscaled once, re-encoded as a low quality JPEG data URL
and kept in a bounded FIFO session store keyed by entry id. Failures fall back
to the original source: the cache only affects latency and memory.
"""
import io
import logging
from pathlib import Path
from typing import List, Optional, Union

from PIL import Image

from models.config import ThumbnailConfig
from models.data_models import ThumbnailEntry
from models.errors import ImageLoadError
from services.cloudinary_client import get_thumbnail_url, is_cloudinary_url
from services.image_loader import is_remote_url, load_image, to_data_url
from services.kv_store import KeyValueStore, MemoryStore, load_json_mapping, save_json_mapping


def scaled_size(width: int, height: int, max_size: int):
    """Shrink so the longer edge is at most max_size, keeping the aspect ratio."""
    if width >= height:
        if width > max_size:
            return max_size, max(1, round(height * max_size / width))
    else:
        if height > max_size:
            return max(1, round(width * max_size / height)), max_size
    return width, height


class ThumbnailCache:
    def __init__(self, store: Optional[KeyValueStore] = None, config: Optional[ThumbnailConfig] = None):
        self.logger = logging.getLogger(__name__)
        self.store = store or MemoryStore()
        self.config = config or ThumbnailConfig()

    def generate_thumbnail(self, source: Union[str, Path, bytes, Image.Image]) -> str:
        """Downscale and re-encode; returns the source unchanged when it cannot be decoded."""
        try:
            img = load_image(source)
            if img.mode != "RGB":
                img = img.convert("RGB")
            size = scaled_size(img.width, img.height, self.config.max_size)
            if size != img.size:
                img = img.resize(size, Image.Resampling.LANCZOS)
            buf = io.BytesIO()
            img.save(buf, format="JPEG", quality=self.config.quality)
            return to_data_url(buf.getvalue(), "image/jpeg")
        except (ImageLoadError, OSError, ValueError) as e:
            self.logger.warning(f"Thumbnail generation failed, using original: {e}")
            return source if isinstance(source, str) else str(source)

    def get_thumbnail(self, entry_id: str, source: Union[str, Path]) -> str:
        if isinstance(source, str) and is_cloudinary_url(source):
            return get_thumbnail_url(source, self.config.max_size)
        if is_remote_url(source):
            # 非 Cloudinary 的远程图片不做本地缩放
            return source

        cache = load_json_mapping(self.store, self.config.cache_key)
        cached = cache.get(entry_id)
        if isinstance(cached, str) and cached:
            self.logger.debug(f"Thumbnail cache hit: {entry_id}")
            return cached

        thumbnail = self.generate_thumbnail(source)

        cache = load_json_mapping(self.store, self.config.cache_key)
        cache[entry_id] = thumbnail
        while len(cache) > self.config.max_entries:
            del cache[next(iter(cache))]
        save_json_mapping(self.store, self.config.cache_key, cache)
        return thumbnail

    def clear(self) -> None:
        self.store.remove(self.config.cache_key)

    def entries(self) -> List[ThumbnailEntry]:
        """Cached thumbnails, oldest first."""
        cache = load_json_mapping(self.store, self.config.cache_key)
        return [ThumbnailEntry(entry_id=k, encoded_thumbnail=v) for k, v in cache.items() if isinstance(v, str)]
