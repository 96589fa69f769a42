from datetime import date

import pytest

from controllers.analysis_controller import ANALYSIS_FAILED_MESSAGE, AnalysisController
from models.config import AppConfig
from models.data_models import AnalysisResult, UploadResult
from models.errors import AnalysisError, AnalysisInFlight, PhotoPathError, QuotaExhausted, UploadError
from services.duplicate_cache import DuplicateCache
from services.kv_store import MemoryStore
from services.perceptual_hasher import PerceptualHasher
from services.quota_tracker import QuotaTracker
from ui.progress import ThinkingTicker
from photo_fixtures import FakeClock

REMOTE = "https://res.cloudinary.com/demo/image/upload/v1/photopath/abc.jpg"


class FakeUploader:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = 0

    def upload_image(self, path):
        self.calls += 1
        if self.fail:
            raise UploadError("offline")
        return UploadResult(url=REMOTE, public_id="photopath/abc", width=256, height=256)


class FakeAnalyzer:
    def __init__(self, result, failures=0, hook=None):
        self.result = result
        self.failures = failures
        self.hook = hook
        self.calls = 0

    def analyze(self, image, exif=None, creator_note=""):
        self.calls += 1
        if self.hook:
            self.hook()
        if self.calls <= self.failures:
            raise AnalysisError("model unavailable")
        return self.result


@pytest.fixture
def app_config(tmp_path):
    cfg = AppConfig()
    cfg.analysis.retry_delay = 0
    cfg.analysis.thinking_interval = 60
    cfg.share_card.output_directory = str(tmp_path / "cards")
    return cfg


@pytest.fixture
def result(sample_scores, sample_analysis):
    return AnalysisResult(scores=sample_scores, analysis=sample_analysis)


def _controller(app_config, analyzer, uploader=None, store=None, clock=None):
    store = store or MemoryStore()
    clock = clock or FakeClock(date(2024, 5, 1))
    hasher = PerceptualHasher(app_config.hashing)
    return AnalysisController(
        app_config,
        store=store,
        hasher=hasher,
        duplicates=DuplicateCache(store, hasher, app_config.cache, today=clock),
        quota=QuotaTracker(store, app_config.quota, today=clock),
        uploader=uploader or FakeUploader(),
        analyzer=analyzer,
    )


@pytest.mark.integration
class TestAnalysisController:
    def test_full_flow_charges_quota_and_caches(self, app_config, result, photo_factory):
        ctrl = _controller(app_config, FakeAnalyzer(result))
        session = ctrl.load_photo(photo_factory())
        assert session.image_source == REMOTE
        assert session.fingerprint
        assert not session.duplicate.is_duplicate

        ticker = ThinkingTicker(60)
        assert ctrl.start_analysis("黄昏", ticker=ticker) is result
        assert not ticker.running
        assert ctrl.remaining_uses() == 4

        entry = ctrl.save_entry()
        assert entry.title == "渡口黄昏"
        assert entry.tags == ["街头", "黄昏", "人文", "城市"]
        cached = ctrl.duplicates.entries()
        assert [c.fingerprint for c in cached] == [session.fingerprint]
        assert cached[0].image_url == REMOTE

    def test_second_upload_of_same_photo_is_flagged(self, app_config, result, photo_factory):
        store = MemoryStore()
        ctrl = _controller(app_config, FakeAnalyzer(result), store=store)
        ctrl.load_photo(photo_factory("a.jpg", quality=95))
        ctrl.start_analysis()
        ctrl.save_entry(title="第一次")

        again = ctrl.load_photo(photo_factory("b.png", fmt="PNG"))
        assert again.duplicate.is_duplicate
        assert again.duplicate.match.title == "第一次"
        assert ctrl.use_cached_result(again.duplicate.match).scores == result.scores
        # 使用缓存结果不消耗额度
        assert ctrl.remaining_uses() == 4
        assert ctrl.duplicates.duplicate_warning is None

    def test_upload_failure_falls_back_to_data_url(self, app_config, result, photo_factory):
        ctrl = _controller(app_config, FakeAnalyzer(result), uploader=FakeUploader(fail=True))
        session = ctrl.load_photo(photo_factory())
        assert session.upload is None
        assert session.image_source.startswith("data:image/jpeg;base64,")
        ctrl.start_analysis()
        ctrl.save_entry()
        # 内嵌图片不写入持久缓存
        assert ctrl.duplicates.entries()[0].image_url == ""

    def test_skip_upload(self, app_config, result, photo_factory):
        uploader = FakeUploader()
        ctrl = _controller(app_config, FakeAnalyzer(result), uploader=uploader)
        session = ctrl.load_photo(photo_factory(), upload=False)
        assert uploader.calls == 0
        assert session.image_source.startswith("data:")

    def test_quota_exhausted_blocks_analysis(self, app_config, result, photo_factory):
        app_config.quota.anonymous_limit = 1
        analyzer = FakeAnalyzer(result)
        ctrl = _controller(app_config, analyzer)
        ctrl.load_photo(photo_factory())
        ctrl.start_analysis()
        with pytest.raises(QuotaExhausted) as exc:
            ctrl.start_analysis()
        assert exc.value.limit == 1
        assert not exc.value.authenticated
        assert analyzer.calls == 1
        # 登录用户有独立额度
        assert ctrl.start_analysis(identity="u42") is result

    def test_failure_does_not_charge_quota(self, app_config, result, photo_factory):
        app_config.analysis.max_attempts = 2
        analyzer = FakeAnalyzer(result, failures=5)
        ctrl = _controller(app_config, analyzer)
        session = ctrl.load_photo(photo_factory())
        ticker = ThinkingTicker(60)
        with pytest.raises(AnalysisError):
            ctrl.start_analysis(ticker=ticker)
        assert analyzer.calls == 2
        assert session.error == ANALYSIS_FAILED_MESSAGE
        assert not session.analyzing
        assert not ticker.running
        assert ctrl.remaining_uses() == 5

    def test_retry_then_success(self, app_config, result, photo_factory):
        analyzer = FakeAnalyzer(result, failures=1)
        ctrl = _controller(app_config, analyzer)
        ctrl.load_photo(photo_factory())
        assert ctrl.start_analysis() is result
        assert analyzer.calls == 2
        assert ctrl.remaining_uses() == 4

    def test_superseded_result_is_discarded(self, app_config, result, photo_factory):
        second_photo = photo_factory("second.jpg", seed=4)
        holder = {}
        analyzer = FakeAnalyzer(result, hook=lambda: holder["ctrl"].load_photo(second_photo)
                                if analyzer.calls == 1 else None)
        ctrl = _controller(app_config, analyzer)
        holder["ctrl"] = ctrl
        first = ctrl.load_photo(photo_factory("first.jpg", seed=0))
        assert ctrl.start_analysis() is None
        assert first.result is None
        assert ctrl.current.path == str(second_photo)
        assert ctrl.remaining_uses() == 5

    def test_analysis_in_flight(self, app_config, result, photo_factory):
        ctrl = _controller(app_config, FakeAnalyzer(result))
        session = ctrl.load_photo(photo_factory())
        session.analyzing = True
        with pytest.raises(AnalysisInFlight):
            ctrl.start_analysis()

    def test_nothing_loaded(self, app_config, result):
        ctrl = _controller(app_config, FakeAnalyzer(result))
        with pytest.raises(PhotoPathError):
            ctrl.start_analysis()
        with pytest.raises(PhotoPathError):
            ctrl.save_entry()

    def test_share_card_export(self, app_config, result, photo_factory, tmp_path):
        ctrl = _controller(app_config, FakeAnalyzer(result), uploader=FakeUploader(fail=True))
        ctrl.load_photo(photo_factory())
        ctrl.start_analysis()
        entry = ctrl.save_entry(title="渡口黄昏", tags=["街头"])
        model = ctrl.build_share_card(entry, footer_date="2024-05-01")
        assert model.story_note == "傍晚的渡口，等船的人。"
        assert model.tags == ["街头"]
        path = ctrl.export_share_card(entry, fmt="png")
        assert path.parent == tmp_path / "cards"
        assert path.name.startswith("photopath_渡口黄昏_")
        assert path.suffix == ".png"

    def test_thumbnail_for_entry(self, app_config, result, photo_factory):
        ctrl = _controller(app_config, FakeAnalyzer(result))
        ctrl.load_photo(photo_factory())
        ctrl.start_analysis()
        entry = ctrl.save_entry()
        assert "/upload/w_200,c_scale,q_auto,f_auto/" in ctrl.thumbnail(entry)
