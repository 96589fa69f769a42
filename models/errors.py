"""
Exception hierarchy for PhotoPath.

函数级注释：
- 所有业务异常均继承自 PhotoPathError，便于 CLI 层统一捕获；
- 降级类异常（HashUnavailable / StorageUnavailable / UploadError）在服务层被记录并吞掉，
  不会中断主流程；
- QuotaExhausted 属于策略状态而非故障，携带额度信息供前端提示“登录获取更多次数”。
"""
from typing import Optional


class PhotoPathError(Exception):
    """Base class for all PhotoPath errors."""


class ImageLoadError(PhotoPathError):
    """An image source could not be fetched or decoded."""


class HashUnavailable(PhotoPathError):
    """Fingerprint could not be computed (decode error or timeout)."""


class StorageUnavailable(PhotoPathError):
    """The persisted key-value store cannot be read or written."""


class UploadError(PhotoPathError):
    """Remote upload failed; callers fall back to local-only mode."""


class AnalysisError(PhotoPathError):
    """Remote analysis failed or returned a malformed response."""


class AnalysisInFlight(PhotoPathError):
    """An analysis for the current photo is already running."""


class QuotaExhausted(PhotoPathError):
    """Daily analysis quota is used up for this identity."""

    def __init__(self, limit: int, authenticated: bool, identity: Optional[str] = None):
        self.limit = limit
        self.authenticated = authenticated
        self.identity = identity
        if authenticated:
            msg = f"今日 {limit} 次分析额度已用完，请明天再来"
        else:
            msg = f"今日 {limit} 次免费额度已用完，登录后每日可分析更多照片"
        super().__init__(msg)


class RenderFailed(PhotoPathError):
    """Share card rendering failed; no partial output is produced."""
