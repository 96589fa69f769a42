import json
from types import SimpleNamespace

import pytest

from models.config import AnalysisConfig
from models.data_models import ExifData
from models.errors import AnalysisError
from services.gemini_analyzer import GeminiAnalyzer, build_prompt, parse_response_text

VALID = {
    "scores": {"composition": 7.2, "light": 6.5, "color": 8, "technical": 7, "expression": 5.5, "overall": 6.9},
    "analysis": {
        "diagnosis": "主体明确",
        "improvement": "降低机位",
        "storyNote": "等船的人",
        "moodNote": "安静",
        "suggestedTitles": ["渡口黄昏"],
        "suggestedTags": ["街头"],
    },
}


class FakeModels:
    def __init__(self, text=None, exc=None):
        self.text = text
        self.exc = exc
        self.calls = []

    def generate_content(self, **kwargs):
        self.calls.append(kwargs)
        if self.exc:
            raise self.exc
        return SimpleNamespace(text=self.text)


def _analyzer(text=None, exc=None):
    models = FakeModels(text, exc)
    return GeminiAnalyzer(AnalysisConfig(api_key="test"), client=SimpleNamespace(models=models)), models


@pytest.mark.unit
class TestParseResponse:
    def test_valid(self):
        result = parse_response_text(json.dumps(VALID))
        assert result.scores.composition == 7.2
        assert result.analysis.story_note == "等船的人"
        assert result.analysis.suggested_titles == ["渡口黄昏"]

    def test_code_fence(self):
        text = "```json\n" + json.dumps(VALID) + "\n```"
        assert parse_response_text(text).scores.overall == 6.9

    def test_invalid_json(self):
        with pytest.raises(AnalysisError):
            parse_response_text("I cannot comply")

    def test_missing_fields(self):
        broken = {"scores": {"composition": 1}, "analysis": {"diagnosis": "x"}}
        with pytest.raises(AnalysisError, match="missing fields"):
            parse_response_text(json.dumps(broken))

    def test_scores_are_clamped(self):
        data = json.loads(json.dumps(VALID))
        data["scores"]["overall"] = 14
        assert parse_response_text(json.dumps(data)).scores.overall == 10.0


@pytest.mark.unit
class TestGeminiAnalyzer:
    def test_prompt_includes_context(self):
        prompt = build_prompt(ExifData(camera="Sony A7"), "黄昏的渡口")
        assert "Sony A7" in prompt
        assert "黄昏的渡口" in prompt
        assert "未提供" in build_prompt(None, "")

    def test_analyze_file(self, photo_factory):
        analyzer, models = _analyzer(json.dumps(VALID))
        result = analyzer.analyze(photo_factory(), ExifData(), "note")
        assert result.scores.light == 6.5
        assert models.calls[0]["model"] == "gemini-2.0-flash"

    def test_analyze_data_url(self):
        analyzer, models = _analyzer(json.dumps(VALID))
        analyzer.analyze("data:image/png;base64,AAAA")
        assert len(models.calls) == 1

    def test_transport_error_becomes_analysis_error(self, photo_factory):
        analyzer, _ = _analyzer(exc=RuntimeError("503"))
        with pytest.raises(AnalysisError):
            analyzer.analyze(photo_factory())

    def test_unreadable_image(self, tmp_path):
        analyzer, models = _analyzer(json.dumps(VALID))
        with pytest.raises(AnalysisError):
            analyzer.analyze(tmp_path / "missing.jpg")
        assert models.calls == []

    def test_missing_api_key(self, photo_factory):
        analyzer = GeminiAnalyzer(AnalysisConfig(api_key=""))
        with pytest.raises(AnalysisError, match="GEMINI_API_KEY"):
            analyzer.analyze(photo_factory())
