"""
"Thinking" ticker shown while an analysis is in flight.

函数级注释：
- ThinkingTicker 按固定间隔推进思考阶段文案，到达最后阶段后在该阶段的变体之间轮换；
- 每次推进同时随机更换一条摄影小贴士；
- 后台为 daemon 线程，使用 Event.wait 等待，stop() 可立即返回；
- 纯展示逻辑，不影响分析结果；分析结束（成功、失败或被新照片取代）时必须调用 stop()。
"""
import logging
import random
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

THINKING_STAGES: List[List[str]] = [
    ["正在读取画面…", "正在端详这张照片…"],
    ["观察构图与视觉动线…", "寻找画面的主体与留白…"],
    ["分析光线方向与明暗层次…", "感受光影的温度…"],
    ["推敲色彩关系与情绪…", "检查对焦与曝光细节…"],
    ["组织点评语言…", "斟酌进化策略…", "即将完成…"],
]

PHOTO_TIPS: List[str] = [
    "试着把主体放在三分线的交点上。",
    "清晨与傍晚的低角度光线更有层次。",
    "减少画面元素，往往能让主题更突出。",
    "前景可以为画面增加纵深感。",
    "拍摄前先想清楚：这张照片想让人看到什么？",
]


@dataclass
class ThinkingState:
    stage_index: int = 0
    text: str = ""
    tip: str = ""
    ticks: int = 0
    running: bool = False


class ThinkingTicker:
    def __init__(
        self,
        interval_seconds: float = 2.0,
        stages: Optional[Sequence[Sequence[str]]] = None,
        tips: Optional[Sequence[str]] = None,
        on_update: Optional[Callable[[ThinkingState], None]] = None,
        rng: Optional[random.Random] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.logger = logger or logging.getLogger(__name__)
        self.interval = max(0.01, float(interval_seconds))
        self.stages = [list(s) for s in (stages or THINKING_STAGES)]
        self.tips = list(tips or PHOTO_TIPS)
        self.on_update = on_update
        self._rng = rng or random.Random()
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.state = ThinkingState()

    def _notify(self) -> None:
        if self.on_update is None:
            return
        try:
            self.on_update(self.snapshot())
        except Exception as e:
            self.logger.debug("Thinking callback failed: %s", e)

    def snapshot(self) -> ThinkingState:
        with self._lock:
            return ThinkingState(**vars(self.state))

    def advance(self) -> ThinkingState:
        """Move to the next stage, or rotate variations once the last stage is reached."""
        with self._lock:
            last = len(self.stages) - 1
            if self.state.stage_index < last:
                self.state.stage_index += 1
            self.state.text = self._rng.choice(self.stages[self.state.stage_index])
            self.state.tip = self._rng.choice(self.tips)
            self.state.ticks += 1
        self._notify()
        return self.snapshot()

    def start(self) -> None:
        if self._thread is not None:
            return
        with self._lock:
            self.state = ThinkingState(
                stage_index=0,
                text=self._rng.choice(self.stages[0]),
                tip=self.tips[0],
                running=True,
            )
        self._stop.clear()
        self._notify()

        def _loop():
            while not self._stop.wait(self.interval):
                self.advance()

        self._thread = threading.Thread(target=_loop, name="ThinkingTicker", daemon=True)
        self._thread.start()
        self.logger.debug("Thinking ticker started, interval %.1fs", self.interval)

    def stop(self) -> None:
        """Tear down unconditionally; safe to call when not running."""
        self._stop.set()
        thread, self._thread = self._thread, None
        if thread is not None and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=3.0)
        with self._lock:
            self.state.running = False

    @property
    def running(self) -> bool:
        return self._thread is not None
