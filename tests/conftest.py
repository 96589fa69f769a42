"""
Pytest configuration and shared fixtures for PhotoPath tests.
"""
import logging
import os
import sys
from datetime import date

import pytest

"""
将项目根目录加入 Python 导入路径，确保在以 tests 目录为起点执行时，
可以正常导入位于项目根目录下的内部模块（如 services/*）。
"""
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from models.data_models import DetailedAnalysis, DetailedScores
from services.kv_store import MemoryStore
from photo_fixtures import FakeClock, gradient_levels, make_blocks_image


@pytest.fixture(autouse=True)
def setup_logging():
    """Setup logging for tests."""
    logging.basicConfig(
        level=logging.DEBUG,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def clock():
    return FakeClock(date(2024, 5, 1))


@pytest.fixture
def sample_scores():
    return DetailedScores(composition=7.2, light=6.5, color=8.0, technical=7.0, expression=5.5, overall=6.9)


@pytest.fixture
def sample_analysis():
    return DetailedAnalysis(
        diagnosis="主体明确，但前景杂乱分散了注意力。",
        improvement="降低机位，利用前景的水面倒影建立层次。",
        story_note="傍晚的渡口，等船的人。",
        mood_note="安静、略带疲惫。",
        overall_suggestion="多尝试减法构图。",
        suggested_titles=["渡口黄昏", "等待"],
        suggested_tags=["街头", "黄昏", "人文", "城市"],
    )


@pytest.fixture
def photo_factory(tmp_path):
    """Write block images to tmp_path and return their paths."""
    def _make(name: str = "photo.jpg", seed: int = 0, fmt: str = "JPEG", quality: int = 90, **save_kwargs):
        img = make_blocks_image(gradient_levels(seed))
        path = tmp_path / name
        if fmt == "JPEG":
            img.save(path, format=fmt, quality=quality, **save_kwargs)
        else:
            img.save(path, format=fmt, **save_kwargs)
        return path
    return _make
