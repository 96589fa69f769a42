"""
Analysis controller orchestrating fingerprinting, upload, quota and critique.
"""
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

from models.config import AppConfig
from models.data_models import (
    AnalysisResult,
    CacheEntry,
    DuplicateCheck,
    ExifData,
    PhotoEntry,
    ShareCardModel,
    UploadResult,
)
from models.errors import AnalysisError, AnalysisInFlight, PhotoPathError, QuotaExhausted, UploadError
from services.cloudinary_client import CloudinaryClient
from services.duplicate_cache import DuplicateCache
from services.exif_reader import ExifReader
from services.gemini_analyzer import GeminiAnalyzer
from services.image_loader import file_to_data_url, is_remote_url
from services.kv_store import JsonFileStore, KeyValueStore, MemoryStore
from services.perceptual_hasher import PerceptualHasher
from services.quota_tracker import QuotaTracker
from services.share_card_renderer import ShareCardRenderer
from services.thumbnail_cache import ThumbnailCache
from ui.progress import ThinkingTicker

ANALYSIS_FAILED_MESSAGE = "分析终端响应异常。请重试。"


@dataclass
class PhotoSession:
    """State of the photo currently in the analysis flow."""
    generation: int
    path: str
    image_source: str
    exif: ExifData = field(default_factory=ExifData)
    upload: Optional[UploadResult] = None
    duplicate: DuplicateCheck = field(default_factory=DuplicateCheck)
    result: Optional[AnalysisResult] = None
    error: Optional[str] = None
    analyzing: bool = False

    @property
    def fingerprint(self) -> str:
        return self.duplicate.fingerprint


class AnalysisController:
    """Coordinates the photo critique workflow."""

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        store: Optional[KeyValueStore] = None,
        session_store: Optional[KeyValueStore] = None,
        hasher: Optional[PerceptualHasher] = None,
        duplicates: Optional[DuplicateCache] = None,
        quota: Optional[QuotaTracker] = None,
        uploader: Optional[CloudinaryClient] = None,
        exif_reader: Optional[ExifReader] = None,
        analyzer: Optional[GeminiAnalyzer] = None,
        renderer: Optional[ShareCardRenderer] = None,
        thumbnails: Optional[ThumbnailCache] = None,
    ):
        self.logger = logging.getLogger(__name__)
        self.config = config or AppConfig()
        store = store or JsonFileStore(self.config.cache.directory)
        session_store = session_store or MemoryStore()
        self.hasher = hasher or PerceptualHasher(self.config.hashing)
        self.duplicates = duplicates or DuplicateCache(store, self.hasher, self.config.cache)
        self.quota = quota or QuotaTracker(store, self.config.quota)
        self.uploader = uploader if uploader is not None else (
            CloudinaryClient(self.config.upload) if self.config.upload.enabled else None
        )
        self.exif_reader = exif_reader or ExifReader()
        self.analyzer = analyzer or GeminiAnalyzer(self.config.analysis)
        self.renderer = renderer or ShareCardRenderer(self.config.share_card)
        self.thumbnails = thumbnails or ThumbnailCache(session_store, self.config.thumbnails)
        self.current: Optional[PhotoSession] = None
        self._generation = 0
        self._lock = threading.Lock()

    # ---------- photo intake ----------

    def _upload(self, path: str) -> Optional[UploadResult]:
        if self.uploader is None:
            return None
        try:
            return self.uploader.upload_image(path)
        except UploadError as e:
            self.logger.warning(f"上传失败，使用本地图片继续：{e}")
            return None

    def load_photo(self, path: Union[str, Path], upload: bool = True) -> PhotoSession:
        """Make a new photo current.

        EXIF extraction, upload and fingerprinting run concurrently; the
        duplicate check is complete when this returns, so a warning can be
        shown before the user spends quota. Results of a load superseded by a
        newer one are discarded.
        """
        path = str(path)
        with self._lock:
            self._generation += 1
            generation = self._generation
        self.duplicates.clear_all()

        with ThreadPoolExecutor(max_workers=3, thread_name_prefix="PhotoIntake") as pool:
            exif_future = pool.submit(self.exif_reader.extract, path)
            upload_future = pool.submit(self._upload, path) if upload else None
            check_future = pool.submit(self.duplicates.check_image, path)
            duplicate = check_future.result()
            exif = exif_future.result()
            uploaded = upload_future.result() if upload_future else None

        image_source = uploaded.url if uploaded else file_to_data_url(path)
        session = PhotoSession(
            generation=generation,
            path=path,
            image_source=image_source,
            exif=exif,
            upload=uploaded,
            duplicate=duplicate,
        )
        with self._lock:
            if generation != self._generation:
                self.logger.info(f"照片 {path} 已被新的上传取代，丢弃其处理结果")
                return session
            self.current = session
        if duplicate.is_duplicate:
            self.logger.info(f"重复照片：{duplicate.match.title}（{duplicate.match.date_stored}）")
        return session

    # ---------- analysis ----------

    def remaining_uses(self, identity: Optional[str] = None) -> int:
        return self.quota.display_remaining(identity)

    def _analyze_with_retry(self, session: PhotoSession, creator_note: str) -> AnalysisResult:
        """Run the analyzer up to analysis.max_attempts times with a fixed delay."""
        max_attempts = self.config.analysis.max_attempts
        last_error: Optional[AnalysisError] = None
        for attempt in range(1, max_attempts + 1):
            try:
                result = self.analyzer.analyze(session.image_source, session.exif, creator_note)
                if attempt > 1:
                    self.logger.info(f"分析在第{attempt}次尝试成功。")
                return result
            except AnalysisError as e:
                last_error = e
                self.logger.error(f"第{attempt}次分析异常：{e}")
            if attempt < max_attempts:
                time.sleep(max(0.0, self.config.analysis.retry_delay))
        raise last_error

    def start_analysis(self, creator_note: str = "", identity: Optional[str] = None,
                       ticker: Optional[ThinkingTicker] = None) -> Optional[AnalysisResult]:
        """Analyze the current photo.

        Quota is charged only after a successful result for a photo that is
        still current. Returns None when the photo was replaced meanwhile.

        Raises:
            QuotaExhausted: no uses left today for this identity.
            AnalysisInFlight: an analysis for this photo is already running.
            AnalysisError: every attempt failed.
        """
        session = self.current
        if session is None:
            raise PhotoPathError("No photo loaded")
        if self.quota.is_exhausted(identity):
            raise QuotaExhausted(
                limit=self.quota.limit_for(identity),
                authenticated=not self.quota.is_anonymous(identity),
                identity=identity,
            )
        with self._lock:
            if session.analyzing:
                raise AnalysisInFlight("An analysis for this photo is already running")
            session.analyzing = True
            session.error = None

        ticker = ticker or ThinkingTicker(self.config.analysis.thinking_interval)
        ticker.start()
        try:
            result = self._analyze_with_retry(session, creator_note)
        except AnalysisError:
            session.error = ANALYSIS_FAILED_MESSAGE
            raise
        finally:
            ticker.stop()
            session.analyzing = False

        with self._lock:
            if session.generation != self._generation:
                self.logger.info("分析结果对应的照片已被替换，结果已丢弃")
                return None
            session.result = result
        self.quota.increment_usage(identity)
        return result

    def use_cached_result(self, entry: CacheEntry) -> Optional[AnalysisResult]:
        """Show a previously stored analysis without charging quota."""
        session = self.current
        if session is None or entry.scores is None or entry.analysis is None:
            return None
        session.result = AnalysisResult(scores=entry.scores, analysis=entry.analysis)
        self.duplicates.clear_warning()
        return session.result

    # ---------- saving & export ----------

    def save_entry(self, title: Optional[str] = None, tags: Optional[List[str]] = None,
                   notes: str = "") -> PhotoEntry:
        """Keep the current result and write it back to the duplicate cache."""
        session = self.current
        if session is None or session.result is None:
            raise PhotoPathError("Nothing to save: no completed analysis")
        result = session.result
        if not title:
            titles = result.analysis.suggested_titles
            title = titles[0] if titles else "未命名作品"
        if tags is None:
            tags = list(result.analysis.suggested_tags)

        # 只缓存远程地址，内嵌图片过大不写入持久存储
        image_url = session.image_source if is_remote_url(session.image_source) else ""
        self.duplicates.save_result(session.fingerprint, title, result.scores, result.analysis, image_url)
        self.duplicates.clear_warning()

        return PhotoEntry(
            id=PhotoEntry.new_id(),
            image_url=session.image_source,
            scores=result.scores,
            title=title,
            notes=notes,
            tags=tags,
            params=session.exif,
            analysis=result.analysis,
        )

    def build_share_card(self, entry: PhotoEntry, footer_date: Optional[str] = None) -> ShareCardModel:
        analysis = entry.analysis
        return ShareCardModel(
            photo=entry.image_url,
            title=entry.title,
            scores=entry.scores,
            diagnosis=analysis.diagnosis if analysis else "",
            improvement=analysis.improvement if analysis else "",
            tags=list(entry.tags),
            exif=entry.params,
            story_note=(analysis.story_note or None) if analysis else None,
            mood_note=(analysis.mood_note or None) if analysis else None,
            footer_date=footer_date,
        )

    def export_share_card(self, entry: PhotoEntry, directory: Optional[str] = None,
                          fmt: Optional[str] = None) -> Path:
        return self.renderer.export(self.build_share_card(entry), directory=directory, fmt=fmt)

    def thumbnail(self, entry: PhotoEntry) -> str:
        return self.thumbnails.get_thumbnail(entry.id, entry.image_url)
