"""
Photo critique via the Gemini vision-language model.

The model is asked for a JSON object matching RESPONSE_SCHEMA; the reply is
parsed into an AnalysisResult. Any transport or parsing problem surfaces as
AnalysisError so the caller can offer a retry without charging quota.
"""
import json
import logging
from typing import Any, Optional

from google import genai
from google.genai import types

from models.config import AnalysisConfig
from models.data_models import SCORE_DIMENSIONS, AnalysisResult, ExifData
from models.errors import AnalysisError, ImageLoadError
from services.image_loader import ImageSource, is_data_url, parse_data_url, read_source_bytes

REQUIRED_ANALYSIS_KEYS = ("diagnosis", "improvement", "storyNote", "moodNote")

RESPONSE_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "scores": {
            "type": "OBJECT",
            "properties": {name: {"type": "NUMBER"} for name in SCORE_DIMENSIONS + ("overall",)},
            "required": list(SCORE_DIMENSIONS + ("overall",)),
        },
        "analysis": {
            "type": "OBJECT",
            "properties": {
                "diagnosis": {"type": "STRING"},
                "improvement": {"type": "STRING"},
                "storyNote": {"type": "STRING"},
                "moodNote": {"type": "STRING"},
                "overallSuggestion": {"type": "STRING"},
                "suggestedTitles": {"type": "ARRAY", "items": {"type": "STRING"}},
                "suggestedTags": {"type": "ARRAY", "items": {"type": "STRING"}},
                "instagramCaption": {"type": "STRING"},
                "instagramHashtags": {"type": "ARRAY", "items": {"type": "STRING"}},
            },
            "required": list(REQUIRED_ANALYSIS_KEYS),
        },
    },
    "required": ["scores", "analysis"],
}


def build_prompt(exif: Optional[ExifData], creator_note: str) -> str:
    exif_json = json.dumps((exif or ExifData()).to_dict(), ensure_ascii=False)
    return (
        "你是一名严格、克制的资深摄影评论家。请从构图、光影、色彩、技术、表达五个维度"
        "为这张照片打分（0-10），并给出诊断、进化策略、故事与情绪短评、标题与标签建议。\n"
        f"【EXIF】{exif_json}\n"
        f"【创作者背景】{creator_note or '未提供'}"
    )


def parse_response_text(text: str) -> AnalysisResult:
    """Parse the model's JSON reply, tolerating a surrounding code fence."""
    cleaned = (text or "").strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.split("```")[1]
        if cleaned.startswith("json"):
            cleaned = cleaned[4:]
    try:
        data = json.loads(cleaned.strip())
    except ValueError as e:
        raise AnalysisError(f"Model returned invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise AnalysisError("Model response is not an object")
    scores = data.get("scores")
    analysis = data.get("analysis")
    if not isinstance(scores, dict) or not isinstance(analysis, dict):
        raise AnalysisError("Model response lacks scores or analysis")
    missing = [k for k in SCORE_DIMENSIONS + ("overall",) if k not in scores]
    missing += [k for k in REQUIRED_ANALYSIS_KEYS if k not in analysis]
    if missing:
        raise AnalysisError(f"Model response missing fields: {', '.join(missing)}")
    return AnalysisResult.from_dict(data)


class GeminiAnalyzer:
    """Remote Analyze(image, context) capability."""

    def __init__(self, config: Optional[AnalysisConfig] = None, client: Optional[Any] = None):
        self.logger = logging.getLogger(__name__)
        self.config = config or AnalysisConfig()
        self._client = client

    def _get_client(self):
        if self._client is None:
            if not self.config.api_key:
                raise AnalysisError("未配置 GEMINI_API_KEY")
            self._client = genai.Client(
                api_key=self.config.api_key,
                http_options=types.HttpOptions(timeout=int(self.config.timeout * 1000)),
            )
        return self._client

    def analyze(self, image: ImageSource, exif: Optional[ExifData] = None, creator_note: str = "") -> AnalysisResult:
        mime_type = "image/jpeg"
        try:
            if is_data_url(image):
                mime_type, data = parse_data_url(image)
            else:
                data = read_source_bytes(image, timeout=self.config.timeout)
        except ImageLoadError as e:
            raise AnalysisError(f"无法读取待分析图片: {e}") from e

        try:
            response = self._get_client().models.generate_content(
                model=self.config.model,
                contents=[
                    types.Part.from_bytes(data=data, mime_type=mime_type),
                    build_prompt(exif, creator_note),
                ],
                config=types.GenerateContentConfig(
                    response_mime_type="application/json",
                    response_schema=RESPONSE_SCHEMA,
                ),
            )
        except AnalysisError:
            raise
        except Exception as e:
            self.logger.error(f"AI Analysis Error: {e}")
            raise AnalysisError(f"分析终端响应异常: {e}") from e

        result = parse_response_text(getattr(response, "text", "") or "")
        self.logger.info(f"Analysis complete, overall={result.scores.overall:.1f}")
        return result
