"""
Share card renderer.

Draws a fixed-width summary card (photo, title, tags, EXIF line, five score
bars, overall score, diagnosis, improvement callout, optional story/mood
notes, footer) directly onto a Pillow canvas. Every coordinate is computed
from measured text before the canvas is allocated, so the card height is known
up front and the same inputs always produce the same pixels.
"""
import io
import logging
import os
import re
import time
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from PIL import Image, ImageDraw, ImageFont

from models.config import ShareCardConfig
from models.data_models import SCORE_LABELS, ShareCardModel
from models.errors import RenderFailed
from services.image_loader import load_image

# 配色
BG_COLOR = (10, 10, 10)
ACCENT = (212, 0, 0)
TEXT_PRIMARY = (244, 244, 245)
TEXT_SECONDARY = (161, 161, 170)
TEXT_MUTED = (113, 113, 122)
TRACK_COLOR = (39, 39, 42)
DIVIDER = (30, 30, 30)
TAG_BG = (24, 24, 27)
CALLOUT_BG = (38, 8, 8)
CALLOUT_BORDER = (90, 10, 10)
FOOTER_BG = (18, 18, 20)

# 版式常量（像素）
PADDING = 40
HEADER_HEIGHT = 80
PHOTO_RATIO = 3 / 4
TITLE_LINE_HEIGHT = 44
TAG_ROW_HEIGHT = 34
EXIF_HEIGHT = 48
SCORE_ROW_HEIGHT = 40
OVERALL_ROW_HEIGHT = 84
SCORE_LABEL_WIDTH = 120
SCORE_VALUE_WIDTH = 70
SCORE_GAP = 16
BODY_LINE_HEIGHT = 34
SECTION_HEADING_HEIGHT = 36
SECTION_GAP = 24
CALLOUT_PADDING = 20
FOOTER_HEIGHT = 64

INVALID_FILENAME_CHARS = re.compile(r'[\\/:*?"<>|\s]+')

# 未配置字体时按顺序查找可显示中文的系统字体
CJK_FONT_CANDIDATES = (
    "/System/Library/Fonts/PingFang.ttc",
    "/System/Library/Fonts/STHeiti Medium.ttc",
    "C:/Windows/Fonts/msyh.ttc",
    "C:/Windows/Fonts/simhei.ttf",
    "/usr/share/fonts/opentype/noto/NotoSansCJK-Regular.ttc",
    "/usr/share/fonts/noto-cjk/NotoSansCJK-Regular.ttc",
    "/usr/share/fonts/google-noto-cjk/NotoSansCJK-Regular.ttc",
    "/usr/share/fonts/truetype/wqy/wqy-microhei.ttc",
    "/usr/share/fonts/truetype/droid/DroidSansFallbackFull.ttf",
)
CJK_BOLD_FONT_CANDIDATES = (
    "/usr/share/fonts/opentype/noto/NotoSansCJK-Bold.ttc",
    "/usr/share/fonts/noto-cjk/NotoSansCJK-Bold.ttc",
    "/usr/share/fonts/google-noto-cjk/NotoSansCJK-Bold.ttc",
)


def find_cjk_font(bold: bool = False) -> Optional[str]:
    """First installed CJK-capable font file, bold variants first when asked."""
    candidates = (CJK_BOLD_FONT_CANDIDATES if bold else ()) + CJK_FONT_CANDIDATES
    return next((p for p in candidates if os.path.exists(p)), None)


def wrap_text(text: str, max_width: float, measure: Callable[[str], float]) -> List[str]:
    """Greedy per-character wrapping.

    Works character by character so CJK text without spaces wraps correctly.
    An explicit newline always starts a new line and an empty paragraph
    becomes one empty line. A line breaks before the first character whose
    addition makes the measured width exceed max_width; a line always keeps
    at least one character.
    """
    lines: List[str] = []
    for paragraph in (text or "").split("\n"):
        if not paragraph:
            lines.append("")
            continue
        line = ""
        for ch in paragraph:
            candidate = line + ch
            if line and measure(candidate) > max_width:
                lines.append(line)
                line = ch
            else:
                line = candidate
        lines.append(line)
    return lines


def cover_crop_box(src_w: int, src_h: int, dst_w: int, dst_h: int) -> Tuple[int, int, int, int]:
    """Centered source rectangle with the destination aspect ratio (cover fit)."""
    if src_w <= 0 or src_h <= 0 or dst_w <= 0 or dst_h <= 0:
        raise ValueError("Crop dimensions must be positive")
    src_ratio = src_w / src_h
    dst_ratio = dst_w / dst_h
    if src_ratio > dst_ratio:
        crop_w = round(src_h * dst_ratio)
        left = (src_w - crop_w) // 2
        return left, 0, left + crop_w, src_h
    crop_h = round(src_w / dst_ratio)
    top = (src_h - crop_h) // 2
    return 0, top, src_w, top + crop_h


def sanitize_title(title: Optional[str]) -> str:
    cleaned = INVALID_FILENAME_CHARS.sub("_", (title or "").strip()).strip("_.")
    return cleaned[:60] or "insight"


def share_card_filename(app_name: str, title: Optional[str], timestamp_ms: int, fmt: str) -> str:
    ext = "png" if fmt == "png" else "jpg"
    return f"{app_name}_{sanitize_title(title)}_{timestamp_ms}.{ext}"


@dataclass
class ScoreBar:
    name: str
    label: str
    score: float
    y: int
    track_x: int
    track_width: int
    fill_width: float
    value_text: str


@dataclass
class CardLayout:
    """Geometry of one card, computed before drawing."""
    width: int
    height: int
    content_width: int
    photo_box: Tuple[int, int, int, int]
    title_lines: List[str]
    tags: List[str]
    exif_text: Optional[str]
    score_bars: List[ScoreBar]
    overall_text: str
    diagnosis_lines: List[str]
    improvement_lines: List[str]
    story_lines: List[str] = field(default_factory=list)
    mood_lines: List[str] = field(default_factory=list)
    offsets: Dict[str, int] = field(default_factory=dict)

    @property
    def text_line_count(self) -> int:
        return (len(self.title_lines) + len(self.diagnosis_lines) + len(self.improvement_lines)
                + len(self.story_lines) + len(self.mood_lines))


@dataclass
class RenderedCard:
    data: bytes
    width: int
    height: int
    format: str
    layout: CardLayout


class ShareCardRenderer:
    """
    Pixel-canvas renderer for share cards.
    """

    def __init__(self, config: Optional[ShareCardConfig] = None):
        self.logger = logging.getLogger(__name__)
        self.config = config or ShareCardConfig()
        self._fonts: Dict[str, ImageFont.ImageFont] = {}
        self._warned_default_font = False

    # ---------- fonts ----------

    def _load_font(self, size: int, bold: bool = False):
        """
        字体加载：配置的字体 → 系统中文字体 → Pillow 默认字体。

        默认字体不含中文字形，只在找不到任何中文字体时使用（此时中文会显示为方框）。
        """
        configured = (self.config.bold_font_path if bold else None) or self.config.font_path
        for path in (configured, find_cjk_font(bold)):
            if not path:
                continue
            try:
                return ImageFont.truetype(path, size)
            except OSError as e:
                self.logger.warning(f"Font {path} unavailable: {e}")
        if not self._warned_default_font:
            self.logger.warning("未找到可用的中文字体，使用 Pillow 默认字体，中文可能无法正常显示")
            self._warned_default_font = True
        return ImageFont.load_default(size=size)

    def font(self, role: str):
        """Fonts by role; cached per renderer."""
        if role not in self._fonts:
            size, bold = {
                "brand": (22, True),
                "subtitle": (16, False),
                "title": (34, True),
                "tag": (18, False),
                "exif": (18, False),
                "label": (20, False),
                "value": (20, True),
                "overall_label": (22, False),
                "overall_value": (56, True),
                "heading": (20, True),
                "body": (22, False),
                "footer": (16, False),
            }[role]
            self._fonts[role] = self._load_font(size, bold)
        return self._fonts[role]

    def measure_text(self, text: str, role: str) -> float:
        return self.font(role).getlength(text)

    # ---------- layout ----------

    def _exif_text(self, model: ShareCardModel) -> Optional[str]:
        exif = model.exif
        if exif is None or not exif.has_summary():
            return None
        parts = [exif.display("camera"), exif.display("aperture"), exif.display("shutter_speed"), exif.display("iso")]
        return "   ".join(parts)

    def measure(self, model: ShareCardModel) -> CardLayout:
        """Compute the full card geometry without touching a canvas."""
        width = self.config.width
        content_width = width - 2 * PADDING
        body = lambda s: self.measure_text(s, "body")
        offsets: Dict[str, int] = {}

        y = HEADER_HEIGHT
        photo_h = round(content_width * PHOTO_RATIO)
        photo_box = (PADDING, y, content_width, photo_h)
        y += photo_h

        # 标题与标签
        y += SECTION_GAP + 8
        offsets["title"] = y
        title_lines = wrap_text(model.title or "未命名作品", content_width, lambda s: self.measure_text(s, "title"))
        y += len(title_lines) * TITLE_LINE_HEIGHT
        tags = model.display_tags
        if tags:
            y += 8
            offsets["tags"] = y
            y += TAG_ROW_HEIGHT
        y += SECTION_GAP

        exif_text = self._exif_text(model)
        if exif_text is not None:
            offsets["exif"] = y
            y += EXIF_HEIGHT

        # 评分区
        y += SECTION_GAP
        offsets["scores"] = y
        track_x = PADDING + SCORE_LABEL_WIDTH
        track_width = content_width - SCORE_LABEL_WIDTH - SCORE_VALUE_WIDTH - SCORE_GAP
        bars: List[ScoreBar] = []
        for i, (name, score) in enumerate(model.scores.dimensions()):
            clamped = max(0.0, min(10.0, float(score)))
            bars.append(ScoreBar(
                name=name,
                label=SCORE_LABELS[name],
                score=float(score),
                y=y + i * SCORE_ROW_HEIGHT,
                track_x=track_x,
                track_width=track_width,
                fill_width=track_width * clamped / 10,
                value_text=f"{float(score):.1f}",
            ))
        y += len(bars) * SCORE_ROW_HEIGHT
        offsets["overall"] = y
        y += OVERALL_ROW_HEIGHT + SECTION_GAP

        # 诊断
        offsets["diagnosis"] = y
        diagnosis_lines = wrap_text(model.diagnosis, content_width, body)
        y += SECTION_HEADING_HEIGHT + len(diagnosis_lines) * BODY_LINE_HEIGHT + SECTION_GAP

        # 进化策略高亮框
        offsets["improvement"] = y
        improvement_lines = wrap_text(model.improvement, content_width - 2 * CALLOUT_PADDING, body)
        y += 2 * CALLOUT_PADDING + SECTION_HEADING_HEIGHT + len(improvement_lines) * BODY_LINE_HEIGHT + SECTION_GAP

        story_lines: List[str] = []
        if model.story_note:
            offsets["story"] = y
            story_lines = wrap_text(model.story_note, content_width, body)
            y += SECTION_HEADING_HEIGHT + len(story_lines) * BODY_LINE_HEIGHT + SECTION_GAP

        mood_lines: List[str] = []
        if model.mood_note:
            offsets["mood"] = y
            mood_lines = wrap_text(model.mood_note, content_width, body)
            y += SECTION_HEADING_HEIGHT + len(mood_lines) * BODY_LINE_HEIGHT + SECTION_GAP

        offsets["footer"] = y
        y += FOOTER_HEIGHT

        return CardLayout(
            width=width,
            height=y,
            content_width=content_width,
            photo_box=photo_box,
            title_lines=title_lines,
            tags=tags,
            exif_text=exif_text,
            score_bars=bars,
            overall_text=f"{float(model.scores.overall):.1f}",
            diagnosis_lines=diagnosis_lines,
            improvement_lines=improvement_lines,
            story_lines=story_lines,
            mood_lines=mood_lines,
            offsets=offsets,
        )

    # ---------- drawing ----------

    def _draw_header(self, draw: ImageDraw.ImageDraw, layout: CardLayout) -> None:
        cy = HEADER_HEIGHT // 2
        draw.rounded_rectangle((PADDING, cy - 14, PADDING + 28, cy + 14), radius=4, fill=ACCENT)
        draw.text((PADDING + 14, cy), "PP", font=self.font("footer"), fill=TEXT_PRIMARY, anchor="mm")
        draw.text((PADDING + 40, cy), "PhotoPath", font=self.font("brand"), fill=TEXT_SECONDARY, anchor="lm")
        draw.text((layout.width - PADDING, cy), "Lens Insight", font=self.font("subtitle"), fill=TEXT_MUTED, anchor="rm")
        draw.line((0, HEADER_HEIGHT - 1, layout.width, HEADER_HEIGHT - 1), fill=DIVIDER, width=1)

    def _draw_photo(self, canvas: Image.Image, photo: Image.Image, layout: CardLayout) -> None:
        x, y, w, h = layout.photo_box
        if photo.mode != "RGB":
            photo = photo.convert("RGB")
        box = cover_crop_box(photo.width, photo.height, w, h)
        fitted = photo.crop(box).resize((w, h), Image.Resampling.LANCZOS)
        mask = Image.new("L", (w, h), 0)
        ImageDraw.Draw(mask).rounded_rectangle((0, 0, w - 1, h - 1), radius=12, fill=255)
        canvas.paste(fitted, (x, y), mask)

    def _draw_title_block(self, draw: ImageDraw.ImageDraw, layout: CardLayout) -> None:
        y = layout.offsets["title"]
        for line in layout.title_lines:
            draw.text((PADDING, y), line, font=self.font("title"), fill=TEXT_PRIMARY)
            y += TITLE_LINE_HEIGHT
        if layout.tags:
            x = PADDING
            ty = layout.offsets["tags"]
            for tag in layout.tags:
                tw = self.measure_text(tag, "tag")
                draw.rounded_rectangle((x, ty, x + tw + 20, ty + TAG_ROW_HEIGHT - 6), radius=4, fill=TAG_BG)
                draw.text((x + 10, ty + (TAG_ROW_HEIGHT - 6) // 2), tag, font=self.font("tag"), fill=TEXT_MUTED, anchor="lm")
                x += tw + 32

    def _draw_exif(self, draw: ImageDraw.ImageDraw, layout: CardLayout) -> None:
        y = layout.offsets["exif"]
        draw.line((PADDING, y, layout.width - PADDING, y), fill=DIVIDER, width=1)
        draw.text((PADDING, y + EXIF_HEIGHT // 2), layout.exif_text, font=self.font("exif"), fill=TEXT_SECONDARY, anchor="lm")
        draw.line((PADDING, y + EXIF_HEIGHT - 1, layout.width - PADDING, y + EXIF_HEIGHT - 1), fill=DIVIDER, width=1)

    def _draw_scores(self, draw: ImageDraw.ImageDraw, layout: CardLayout) -> None:
        right = layout.width - PADDING
        for bar in layout.score_bars:
            cy = bar.y + SCORE_ROW_HEIGHT // 2
            draw.text((PADDING, cy), bar.label, font=self.font("label"), fill=TEXT_MUTED, anchor="lm")
            draw.rounded_rectangle((bar.track_x, cy - 4, bar.track_x + bar.track_width, cy + 4), radius=4, fill=TRACK_COLOR)
            fill = round(bar.fill_width)
            if fill > 0:
                draw.rounded_rectangle((bar.track_x, cy - 4, bar.track_x + fill, cy + 4), radius=4, fill=ACCENT)
            draw.text((right, cy), bar.value_text, font=self.font("value"), fill=TEXT_PRIMARY, anchor="rm")

        y = layout.offsets["overall"]
        draw.line((PADDING, y + 8, right, y + 8), fill=DIVIDER, width=1)
        cy = y + 8 + (OVERALL_ROW_HEIGHT - 8) // 2
        draw.text((PADDING, cy), SCORE_LABELS["overall"], font=self.font("overall_label"), fill=TEXT_SECONDARY, anchor="lm")
        draw.text((right, cy), layout.overall_text, font=self.font("overall_value"), fill=ACCENT, anchor="rm")

    def _draw_paragraph(self, draw: ImageDraw.ImageDraw, x: int, y: int, heading: str, lines: List[str],
                        heading_color=TEXT_MUTED, text_color=TEXT_SECONDARY) -> None:
        draw.text((x, y), heading, font=self.font("heading"), fill=heading_color)
        y += SECTION_HEADING_HEIGHT
        for line in lines:
            draw.text((x, y), line, font=self.font("body"), fill=text_color)
            y += BODY_LINE_HEIGHT

    def _draw_improvement(self, draw: ImageDraw.ImageDraw, layout: CardLayout) -> None:
        y = layout.offsets["improvement"]
        box_h = 2 * CALLOUT_PADDING + SECTION_HEADING_HEIGHT + len(layout.improvement_lines) * BODY_LINE_HEIGHT
        draw.rounded_rectangle((PADDING, y, layout.width - PADDING, y + box_h), radius=10,
                               fill=CALLOUT_BG, outline=CALLOUT_BORDER, width=1)
        self._draw_paragraph(draw, PADDING + CALLOUT_PADDING, y + CALLOUT_PADDING, "进化策略",
                             layout.improvement_lines, heading_color=ACCENT, text_color=TEXT_PRIMARY)

    def _draw_footer(self, draw: ImageDraw.ImageDraw, layout: CardLayout, footer_date: str) -> None:
        y = layout.offsets["footer"]
        draw.rectangle((0, y, layout.width, layout.height), fill=FOOTER_BG)
        cy = y + FOOTER_HEIGHT // 2
        draw.text((PADDING, cy), f"AI 摄影点评 · {footer_date}", font=self.font("footer"), fill=TEXT_MUTED, anchor="lm")
        draw.text((layout.width - PADDING, cy), self.config.site, font=self.font("footer"), fill=TEXT_MUTED, anchor="rm")

    def _encode(self, canvas: Image.Image, fmt: str) -> bytes:
        buf = io.BytesIO()
        if fmt == "png":
            canvas.save(buf, format="PNG")
        else:
            canvas.save(buf, format="JPEG", quality=self.config.jpeg_quality)
        return buf.getvalue()

    def render(self, model: ShareCardModel, fmt: Optional[str] = None) -> RenderedCard:
        """
        Render a share card.

        Raises:
            RenderFailed: photo decode, drawing or encoding failed. Nothing partial is returned.
        """
        fmt = (fmt or self.config.output_format or "jpg").lower()
        if fmt == "jpeg":
            fmt = "jpg"
        if fmt not in {"jpg", "png"}:
            raise RenderFailed(f"Unsupported share card format: {fmt}")
        try:
            photo = load_image(model.photo)
            layout = self.measure(model)
            canvas = Image.new("RGB", (layout.width, layout.height), BG_COLOR)
            draw = ImageDraw.Draw(canvas)

            self._draw_header(draw, layout)
            self._draw_photo(canvas, photo, layout)
            self._draw_title_block(draw, layout)
            if layout.exif_text is not None:
                self._draw_exif(draw, layout)
            self._draw_scores(draw, layout)
            self._draw_paragraph(draw, PADDING, layout.offsets["diagnosis"], "诊断", layout.diagnosis_lines)
            self._draw_improvement(draw, layout)
            if layout.story_lines:
                self._draw_paragraph(draw, PADDING, layout.offsets["story"], "故事", layout.story_lines)
            if layout.mood_lines:
                self._draw_paragraph(draw, PADDING, layout.offsets["mood"], "情绪", layout.mood_lines)
            self._draw_footer(draw, layout, model.footer_date or date.today().isoformat())

            data = self._encode(canvas, fmt)
        except RenderFailed:
            raise
        except Exception as e:
            self.logger.error(f"生成卡片失败: {e}")
            raise RenderFailed(f"生成卡片失败，请重试（{e}）") from e
        self.logger.info(f"Share card rendered: {layout.width}x{layout.height} {fmt}, {len(data)} bytes")
        return RenderedCard(data=data, width=layout.width, height=layout.height, format=fmt, layout=layout)

    def export(self, model: ShareCardModel, directory: Optional[str] = None, fmt: Optional[str] = None,
               timestamp_ms: Optional[int] = None) -> Path:
        """Render and write the card; the filename embeds the sanitized title and a millisecond timestamp."""
        card = self.render(model, fmt)
        out_dir = Path(directory or self.config.output_directory)
        ts = timestamp_ms if timestamp_ms is not None else int(time.time() * 1000)
        path = out_dir / share_card_filename(self.config.app_name, model.title, ts, card.format)
        # 先写临时文件再原子替换，失败时不留下半截卡片
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            out_dir.mkdir(parents=True, exist_ok=True)
            tmp_path.write_bytes(card.data)
            os.replace(tmp_path, path)
        except OSError as e:
            if tmp_path.exists():
                tmp_path.unlink()
            raise RenderFailed(f"无法写入卡片文件 {path}: {e}") from e
        self.logger.info(f"Share card saved to {path}")
        return path
