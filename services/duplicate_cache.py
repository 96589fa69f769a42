"""
Duplicate-image cache keyed by perceptual fingerprint.

函数级注释：
- 持久化结构为 {fingerprint: {title, date, scores, analysis, imageUrl, schemaVersion}} 的 JSON 对象，
  键的插入顺序即淘汰顺序（FIFO，非 LRU）；
- 同一指纹再次保存会覆盖旧条目的内容，但保留其原有的淘汰位置；
- 评分版本号与当前不一致的条目，读取时丢弃评分（需要重新分析）；
- 超过 max_entries 时从最旧的条目开始淘汰；
- 指纹计算失败时返回空指纹，视为“无法判断”，绝不抛出。
"""
import logging
from datetime import date
from typing import Callable, List, Optional

from models.config import CacheConfig, HashingConfig
from models.data_models import CacheEntry, DetailedAnalysis, DetailedScores, DuplicateCheck
from models.errors import HashUnavailable
from services.image_loader import ImageSource
from services.kv_store import KeyValueStore, load_json_mapping, save_json_mapping
from services.perceptual_hasher import PerceptualHasher, fingerprint_distance


class DuplicateCache:
    """
    Bounded persistent mapping from fingerprint to prior analysis metadata.
    Holds the fingerprint of the image currently in the analysis flow.
    """

    def __init__(
        self,
        store: KeyValueStore,
        hasher: Optional[PerceptualHasher] = None,
        config: Optional[CacheConfig] = None,
        match_tolerance: Optional[int] = None,
        today: Callable[[], date] = date.today,
    ):
        self.logger = logging.getLogger(__name__)
        self.store = store
        self.hasher = hasher or PerceptualHasher()
        self.config = config or CacheConfig()
        if match_tolerance is None:
            hcfg = getattr(self.hasher, "config", None) or HashingConfig()
            match_tolerance = hcfg.match_tolerance
        self.match_tolerance = max(0, int(match_tolerance))
        self._today = today
        self.current_fingerprint: str = ""
        self.duplicate_warning: Optional[CacheEntry] = None

    def _lookup(self, fingerprint: str) -> Optional[CacheEntry]:
        cache = load_json_mapping(self.store, self.config.cache_key)
        data = cache.get(fingerprint)
        if isinstance(data, dict):
            return CacheEntry.from_dict(fingerprint, data)
        if self.match_tolerance > 0:
            for fp, item in cache.items():
                if isinstance(item, dict) and fingerprint_distance(fp, fingerprint) <= self.match_tolerance:
                    return CacheEntry.from_dict(fp, item)
        return None

    def check_image(self, source: ImageSource) -> DuplicateCheck:
        """
        Fingerprint an image and look it up.

        Returns both the fingerprint and the match so the caller can write back
        against the same fingerprint later without hashing again.
        """
        try:
            fingerprint = self.hasher.hash(source)
        except HashUnavailable as e:
            self.logger.warning(f"Duplicate detection disabled for this image: {e}")
            self.current_fingerprint = ""
            self.duplicate_warning = None
            return DuplicateCheck()

        self.current_fingerprint = fingerprint
        match = self._lookup(fingerprint)
        self.duplicate_warning = match
        if match:
            self.logger.info(f"这张照片之前分析过：{match.title}（{match.date_stored}）")
        return DuplicateCheck(fingerprint=fingerprint, match=match)

    def save_result(
        self,
        fingerprint: str,
        title: str,
        scores: Optional[DetailedScores] = None,
        analysis: Optional[DetailedAnalysis] = None,
        image_url: str = "",
    ) -> bool:
        """Upsert an entry in a single read-modify-write. Returns False when nothing was written."""
        if not fingerprint:
            return False
        entry = CacheEntry(
            fingerprint=fingerprint,
            title=title,
            date_stored=self._today().isoformat(),
            scores=scores,
            analysis=analysis,
            image_url=image_url or "",
        )
        cache = load_json_mapping(self.store, self.config.cache_key)
        cache[fingerprint] = entry.to_dict()
        while len(cache) > self.config.max_entries:
            oldest = next(iter(cache))
            del cache[oldest]
            self.logger.debug(f"Evicted oldest cache entry: {oldest[:16]}...")
        return save_json_mapping(self.store, self.config.cache_key, cache)

    def save_to_cache(
        self,
        title: str,
        scores: Optional[DetailedScores] = None,
        analysis: Optional[DetailedAnalysis] = None,
        image_url: str = "",
    ) -> bool:
        """Write back against the fingerprint of the current image."""
        return self.save_result(self.current_fingerprint, title, scores, analysis, image_url)

    def clear_warning(self) -> None:
        self.duplicate_warning = None

    def clear_all(self) -> None:
        """Reset in-memory state. Persisted entries are kept."""
        self.duplicate_warning = None
        self.current_fingerprint = ""

    def entries(self) -> List[CacheEntry]:
        """Snapshot of persisted entries, oldest first."""
        cache = load_json_mapping(self.store, self.config.cache_key)
        return [CacheEntry.from_dict(fp, data) for fp, data in cache.items() if isinstance(data, dict)]
