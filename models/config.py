"""
Configuration data models for PhotoPath.
"""
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional
import os


@dataclass
class HashingConfig:
    """Perceptual fingerprint configuration."""
    # 指纹边长（像素）。更大的尺寸区分度更高，但对重新压缩的容忍度更低。
    hash_size: int = 16
    # 每个灰度值保留的位数（4 位即 16 级），用于吸收轻微的压缩噪声。
    quantize_bits: int = 4
    # 图片解码超时（秒），超时视为“无法判断是否重复”。
    decode_timeout: float = 10.0
    # 允许的指纹差异格子数。0 表示严格相等匹配。
    match_tolerance: int = 0


@dataclass
class CacheConfig:
    """Duplicate-image cache configuration."""
    directory: str = "./data"
    cache_key: str = "photopath_image_cache"
    max_entries: int = 30


@dataclass
class QuotaConfig:
    """Daily usage limits. These numbers are product policy."""
    anonymous_limit: int = 5
    authenticated_limit: int = 20
    key_prefix: str = "photopath_usage"


@dataclass
class ThumbnailConfig:
    """Session thumbnail cache configuration."""
    cache_key: str = "photopath_thumbnails"
    max_entries: int = 30
    max_size: int = 200
    # JPEG 质量（1-95），对应浏览器端 0.6 的质量参数
    quality: int = 60


@dataclass
class ShareCardConfig:
    """Share card renderer configuration."""
    app_name: str = "photopath"
    site: str = "photopath.app"
    width: int = 800
    output_format: str = "jpg"  # jpg or png
    jpeg_quality: int = 90
    output_directory: str = "./cards"
    # 字体文件路径；为空时使用 Pillow 内置字体（不含 CJK 字形）
    font_path: Optional[str] = None
    bold_font_path: Optional[str] = None


@dataclass
class UploadConfig:
    """Cloudinary upload configuration."""
    enabled: bool = True
    cloud_name: str = field(default_factory=lambda: os.environ.get("CLOUDINARY_CLOUD_NAME", ""))
    upload_preset: str = field(default_factory=lambda: os.environ.get("CLOUDINARY_UPLOAD_PRESET", "photopath"))
    folder: str = "photopath"
    max_file_size: int = 10 * 1024 * 1024
    timeout: float = 30.0


@dataclass
class AnalysisConfig:
    """Vision-language model configuration."""
    api_key: str = field(default_factory=lambda: os.environ.get("GEMINI_API_KEY", ""))
    model: str = "gemini-2.0-flash"
    timeout: float = 60.0
    max_attempts: int = 2
    retry_delay: float = 1.0
    thinking_interval: float = 2.0


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    file: str = "./logs/photopath.log"
    max_size: str = "10MB"


@dataclass
class AppConfig:
    """Main application configuration."""
    hashing: HashingConfig = field(default_factory=HashingConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    quota: QuotaConfig = field(default_factory=QuotaConfig)
    thumbnails: ThumbnailConfig = field(default_factory=ThumbnailConfig)
    share_card: ShareCardConfig = field(default_factory=ShareCardConfig)
    upload: UploadConfig = field(default_factory=UploadConfig)
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def validate(self) -> bool:
        """Validate configuration parameters."""
        errors: List[str] = []

        if self.hashing.hash_size < 4 or self.hashing.hash_size > 64:
            errors.append("hashing.hash_size must be between 4 and 64")
        if self.hashing.quantize_bits < 1 or self.hashing.quantize_bits > 8:
            errors.append("hashing.quantize_bits must be between 1 and 8")
        if self.hashing.decode_timeout <= 0:
            errors.append("hashing.decode_timeout must be positive")
        if self.hashing.match_tolerance < 0:
            errors.append("hashing.match_tolerance must not be negative")

        if self.cache.max_entries < 1:
            errors.append("cache.max_entries must be at least 1")
        if self.thumbnails.max_entries < 1:
            errors.append("thumbnails.max_entries must be at least 1")
        if self.thumbnails.max_size < 16:
            errors.append("thumbnails.max_size must be at least 16")
        if not 1 <= self.thumbnails.quality <= 95:
            errors.append("thumbnails.quality must be between 1 and 95")

        if self.quota.anonymous_limit < 0 or self.quota.authenticated_limit < 0:
            errors.append("quota limits must not be negative")

        if self.share_card.output_format not in {"jpg", "png"}:
            errors.append("share_card.output_format must be one of: jpg, png")
        if self.share_card.width < 320:
            errors.append("share_card.width must be at least 320")
        if not 1 <= self.share_card.jpeg_quality <= 95:
            errors.append("share_card.jpeg_quality must be between 1 and 95")

        if self.analysis.max_attempts < 1 or self.analysis.max_attempts > 10:
            errors.append("analysis.max_attempts must be between 1 and 10")

        if errors:
            raise ValueError(f"Configuration validation failed: {'; '.join(errors)}")

        return True

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary (secrets are not exported)."""
        return {
            "hashing": {
                "hash_size": self.hashing.hash_size,
                "quantize_bits": self.hashing.quantize_bits,
                "decode_timeout": self.hashing.decode_timeout,
                "match_tolerance": self.hashing.match_tolerance,
            },
            "cache": {
                "directory": self.cache.directory,
                "cache_key": self.cache.cache_key,
                "max_entries": self.cache.max_entries,
            },
            "quota": {
                "anonymous_limit": self.quota.anonymous_limit,
                "authenticated_limit": self.quota.authenticated_limit,
                "key_prefix": self.quota.key_prefix,
            },
            "thumbnails": {
                "cache_key": self.thumbnails.cache_key,
                "max_entries": self.thumbnails.max_entries,
                "max_size": self.thumbnails.max_size,
                "quality": self.thumbnails.quality,
            },
            "share_card": {
                "app_name": self.share_card.app_name,
                "site": self.share_card.site,
                "width": self.share_card.width,
                "output_format": self.share_card.output_format,
                "jpeg_quality": self.share_card.jpeg_quality,
                "output_directory": self.share_card.output_directory,
                "font_path": self.share_card.font_path,
                "bold_font_path": self.share_card.bold_font_path,
            },
            "upload": {
                "enabled": self.upload.enabled,
                "cloud_name": self.upload.cloud_name,
                "upload_preset": self.upload.upload_preset,
                "folder": self.upload.folder,
                "max_file_size": self.upload.max_file_size,
                "timeout": self.upload.timeout,
            },
            "analysis": {
                "model": self.analysis.model,
                "timeout": self.analysis.timeout,
                "max_attempts": self.analysis.max_attempts,
                "retry_delay": self.analysis.retry_delay,
                "thinking_interval": self.analysis.thinking_interval,
            },
            "logging": {
                "level": self.logging.level,
                "file": self.logging.file,
                "max_size": self.logging.max_size,
            },
        }
