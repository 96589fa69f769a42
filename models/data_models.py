"""
Core data models for PhotoPath.
"""
from dataclasses import dataclass, field, asdict
from datetime import date
from typing import Any, Dict, List, Optional, Tuple
import uuid

# 评分维度集合（带版本号）。历史数据中出现过 content/completeness 等维度，
# 这里只接受当前这一组，避免新旧两种结构混用。
SCORE_SCHEMA_VERSION = 2
SCORE_DIMENSIONS: Tuple[str, ...] = ("composition", "light", "color", "technical", "expression")
SCORE_LABELS: Dict[str, str] = {
    "composition": "构图",
    "light": "光影",
    "color": "色彩",
    "technical": "技术",
    "expression": "表达",
    "overall": "综合评分",
}

EXIF_PLACEHOLDER = "--"


def _clamp_score(value: Any) -> float:
    try:
        v = float(value)
    except (TypeError, ValueError):
        return 0.0
    return max(0.0, min(10.0, v))


@dataclass
class DetailedScores:
    """Five named dimensions on a 0-10 scale plus the overall score."""
    composition: float = 0.0
    light: float = 0.0
    color: float = 0.0
    technical: float = 0.0
    expression: float = 0.0
    overall: float = 0.0

    def dimensions(self) -> List[Tuple[str, float]]:
        """Return (name, score) pairs in render order, overall excluded."""
        return [(name, getattr(self, name)) for name in SCORE_DIMENSIONS]

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DetailedScores":
        """Build scores from a mapping; missing dimensions become 0 and values are clamped to [0, 10]."""
        data = data or {}
        values = {name: _clamp_score(data.get(name)) for name in SCORE_DIMENSIONS}
        values["overall"] = _clamp_score(data.get("overall"))
        return cls(**values)


@dataclass
class DetailedAnalysis:
    """Textual critique returned by the vision-language model."""
    diagnosis: str = ""
    improvement: str = ""
    story_note: str = ""
    mood_note: str = ""
    overall_suggestion: str = ""
    suggested_titles: List[str] = field(default_factory=list)
    suggested_tags: List[str] = field(default_factory=list)
    instagram_caption: str = ""
    instagram_hashtags: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize with the camelCase keys used by the remote model and persisted caches."""
        return {
            "diagnosis": self.diagnosis,
            "improvement": self.improvement,
            "storyNote": self.story_note,
            "moodNote": self.mood_note,
            "overallSuggestion": self.overall_suggestion,
            "suggestedTitles": list(self.suggested_titles),
            "suggestedTags": list(self.suggested_tags),
            "instagramCaption": self.instagram_caption,
            "instagramHashtags": list(self.instagram_hashtags),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DetailedAnalysis":
        data = data or {}

        def _text(key: str) -> str:
            v = data.get(key)
            return str(v) if v is not None else ""

        def _list(key: str) -> List[str]:
            v = data.get(key) or []
            if isinstance(v, str):
                return [v]
            return [str(x) for x in v]

        return cls(
            diagnosis=_text("diagnosis"),
            improvement=_text("improvement"),
            story_note=_text("storyNote"),
            mood_note=_text("moodNote"),
            overall_suggestion=_text("overallSuggestion"),
            suggested_titles=_list("suggestedTitles"),
            suggested_tags=_list("suggestedTags"),
            instagram_caption=_text("instagramCaption"),
            instagram_hashtags=_list("instagramHashtags"),
        )


@dataclass
class AnalysisResult:
    """Scores plus critique for one photo."""
    scores: DetailedScores
    analysis: DetailedAnalysis

    def to_dict(self) -> Dict[str, Any]:
        return {"scores": self.scores.to_dict(), "analysis": self.analysis.to_dict()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalysisResult":
        return cls(
            scores=DetailedScores.from_dict(data.get("scores") or {}),
            analysis=DetailedAnalysis.from_dict(data.get("analysis") or {}),
        )


@dataclass
class ExifData:
    """Camera metadata. Every field is optional."""
    camera: Optional[str] = None
    lens: Optional[str] = None
    aperture: Optional[str] = None
    shutter_speed: Optional[str] = None
    iso: Optional[str] = None
    focal_length: Optional[str] = None
    capture_date: Optional[str] = None

    def display(self, name: str) -> str:
        """Return the value of a field or the placeholder when it is absent."""
        value = getattr(self, name, None)
        return value if value else EXIF_PLACEHOLDER

    def has_summary(self) -> bool:
        """True when at least one of the fields shown on the share card is present."""
        return any([self.camera, self.aperture, self.shutter_speed, self.iso])

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "camera": self.camera,
            "lens": self.lens,
            "aperture": self.aperture,
            "shutterSpeed": self.shutter_speed,
            "iso": self.iso,
            "focalLength": self.focal_length,
            "captureDate": self.capture_date,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ExifData":
        data = data or {}
        return cls(
            camera=data.get("camera"),
            lens=data.get("lens"),
            aperture=data.get("aperture"),
            shutter_speed=data.get("shutterSpeed"),
            iso=data.get("iso"),
            focal_length=data.get("focalLength"),
            capture_date=data.get("captureDate"),
        )


@dataclass
class CacheEntry:
    """Prior analysis stored under an image fingerprint."""
    fingerprint: str
    title: str
    date_stored: str
    scores: Optional[DetailedScores] = None
    analysis: Optional[DetailedAnalysis] = None
    image_url: str = ""

    def to_dict(self) -> Dict[str, Any]:
        # 指纹作为外层映射的键，不重复写入条目
        return {
            "title": self.title,
            "date": self.date_stored,
            "scores": self.scores.to_dict() if self.scores else None,
            "analysis": self.analysis.to_dict() if self.analysis else None,
            "imageUrl": self.image_url,
            "schemaVersion": SCORE_SCHEMA_VERSION,
        }

    @classmethod
    def from_dict(cls, fingerprint: str, data: Dict[str, Any]) -> "CacheEntry":
        scores = data.get("scores")
        # 旧版本（或缺少版本号）的评分维度不同，丢弃评分，只保留重复提示所需的元数据
        if data.get("schemaVersion") != SCORE_SCHEMA_VERSION:
            scores = None
        analysis = data.get("analysis")
        return cls(
            fingerprint=fingerprint,
            title=str(data.get("title") or ""),
            date_stored=str(data.get("date") or ""),
            scores=DetailedScores.from_dict(scores) if isinstance(scores, dict) else None,
            analysis=DetailedAnalysis.from_dict(analysis) if isinstance(analysis, dict) else None,
            image_url=str(data.get("imageUrl") or ""),
        )


@dataclass
class DuplicateCheck:
    """Result of a duplicate lookup. An empty fingerprint means hashing failed."""
    fingerprint: str = ""
    match: Optional[CacheEntry] = None

    @property
    def is_duplicate(self) -> bool:
        return self.match is not None


@dataclass
class UsageRecord:
    """Per-identity daily usage counter."""
    count: int
    date: str

    def to_dict(self) -> Dict[str, Any]:
        return {"count": self.count, "date": self.date}


@dataclass
class ThumbnailEntry:
    entry_id: str
    encoded_thumbnail: str


@dataclass
class UploadResult:
    url: str
    public_id: str
    width: int
    height: int


@dataclass
class PhotoEntry:
    """A saved journal entry."""
    id: str
    image_url: str
    scores: DetailedScores
    title: str = ""
    date: str = field(default_factory=lambda: date.today().isoformat())
    location: str = ""
    notes: str = ""
    tags: List[str] = field(default_factory=list)
    params: ExifData = field(default_factory=ExifData)
    analysis: Optional[DetailedAnalysis] = None

    @staticmethod
    def new_id() -> str:
        return uuid.uuid4().hex


@dataclass
class ShareCardModel:
    """Input of a single share card render."""
    photo: Any
    title: str
    scores: DetailedScores
    diagnosis: str
    improvement: str
    tags: List[str] = field(default_factory=list)
    exif: Optional[ExifData] = None
    story_note: Optional[str] = None
    mood_note: Optional[str] = None
    # 页脚日期；为空时使用渲染当天，测试中固定以保证可复现
    footer_date: Optional[str] = None

    @property
    def display_tags(self) -> List[str]:
        return list(self.tags[:3])
