"""
Cloudinary upload client and URL transforms.

函数级注释：
- upload_image：无签名上传（upload_preset），上传前校验大小与格式，并把常见 HTTP 状态码映射为可读错误；
- get_thumbnail_url / get_optimized_url：利用 Cloudinary 的 URL 变换生成缩略图与优化图地址，无需额外请求；
- 上传失败统一抛出 UploadError，由调用方降级为本地 data URL 模式。
"""
import logging
import mimetypes
from pathlib import Path
from typing import Optional, Union

import requests

from models.config import UploadConfig
from models.data_models import UploadResult
from models.errors import UploadError

ALLOWED_TYPES = {"image/jpeg", "image/png", "image/webp", "image/heic", "image/heif"}


def is_cloudinary_url(url: Optional[str]) -> bool:
    return bool(url) and ("cloudinary.com" in url or "res.cloudinary.com" in url)


def get_thumbnail_url(url: str, width: int = 200, height: Optional[int] = None) -> str:
    """Cloudinary URL for a pre-scaled variant; other URLs are returned unchanged."""
    if not url or "cloudinary" not in url:
        return url
    if height:
        transformation = f"w_{width},h_{height},c_fill,q_auto,f_auto"
    else:
        transformation = f"w_{width},c_scale,q_auto,f_auto"
    return url.replace("/upload/", f"/upload/{transformation}/", 1)


def get_optimized_url(url: str, max_width: int = 1200) -> str:
    """Size-limited variant for detail views."""
    if not url or "cloudinary" not in url:
        return url
    return url.replace("/upload/", f"/upload/w_{max_width},c_limit,q_auto,f_auto/", 1)


class CloudinaryClient:
    """Unsigned uploads to Cloudinary."""

    def __init__(self, config: Optional[UploadConfig] = None, session: Optional[requests.Session] = None):
        self.logger = logging.getLogger(__name__)
        self.config = config or UploadConfig()
        self.session = session or requests.Session()

    @property
    def upload_url(self) -> str:
        return f"https://api.cloudinary.com/v1_1/{self.config.cloud_name}/image/upload"

    def _validate(self, path: Path) -> str:
        try:
            size = path.stat().st_size
        except OSError as e:
            raise UploadError(f"无法读取文件: {e}") from e
        if size > self.config.max_file_size:
            limit_mb = self.config.max_file_size / 1024 / 1024
            raise UploadError(f"文件过大 ({size / 1024 / 1024:.1f}MB)，上限 {limit_mb:.0f}MB")
        mime = mimetypes.guess_type(path.name)[0] or ""
        if mime not in ALLOWED_TYPES and not mime.startswith("image/"):
            raise UploadError(f"不支持的文件格式: {mime or '未知'}")
        return mime

    def _post(self, data: dict, files: Optional[dict] = None) -> UploadResult:
        if not self.config.cloud_name:
            raise UploadError("未配置 Cloudinary cloud_name")
        payload = dict(data)
        payload["upload_preset"] = self.config.upload_preset
        payload["folder"] = self.config.folder
        try:
            response = self.session.post(self.upload_url, data=payload, files=files, timeout=self.config.timeout)
        except requests.RequestException as e:
            raise UploadError(f"网络错误: {e}") from e

        if not response.ok:
            try:
                body = response.json()
            except ValueError:
                body = None
            message = None
            if isinstance(body, dict):
                err = body.get("error")
                message = err.get("message") if isinstance(err, dict) else body.get("message")
            if response.status_code == 400:
                if message and "preset" in message:
                    raise UploadError("上传配置错误，请联系管理员")
                if message and "Invalid" in message:
                    raise UploadError("文件格式不支持")
                raise UploadError(f"上传失败: {message or '请求无效'}")
            if response.status_code == 401:
                raise UploadError("上传认证失败，请刷新页面重试")
            if response.status_code == 429:
                raise UploadError("上传次数已达上限，请稍后重试")
            raise UploadError(f"图片上传失败: {message or f'HTTP {response.status_code}'}")

        try:
            body = response.json()
            return UploadResult(
                url=body["secure_url"],
                public_id=body.get("public_id", ""),
                width=int(body.get("width") or 0),
                height=int(body.get("height") or 0),
            )
        except (ValueError, KeyError, TypeError) as e:
            raise UploadError(f"上传响应无法解析: {e}") from e

    def upload_image(self, path: Union[str, Path]) -> UploadResult:
        """Upload a local image file."""
        p = Path(path)
        mime = self._validate(p)
        try:
            f = p.open("rb")
        except OSError as e:
            raise UploadError(f"无法读取待上传文件 {p}: {e}") from e
        with f:
            result = self._post({}, files={"file": (p.name, f, mime or "application/octet-stream")})
        self.logger.info(f"Uploaded {p.name} -> {result.url}")
        return result

    def upload_base64(self, data_url: str) -> UploadResult:
        """Upload an embedded data URL (legacy entries)."""
        result = self._post({"file": data_url})
        self.logger.info(f"Uploaded embedded image -> {result.url}")
        return result
