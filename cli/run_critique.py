import argparse
import json
import logging
import sys
from typing import List, Optional

from controllers.analysis_controller import AnalysisController
from models.data_models import SCORE_LABELS
from models.errors import AnalysisError, PhotoPathError, QuotaExhausted, RenderFailed
from services.config_manager import ConfigManager
from services.logging_manager import LoggingManager


def _split_tags(value: Optional[str]) -> Optional[List[str]]:
    if value is None:
        return None
    return [t.strip() for t in value.split(",") if t.strip()]


def _print_result(result) -> None:
    for name, score in result.scores.dimensions():
        print(f"  {SCORE_LABELS[name]:<4} {score:4.1f}")
    print(f"  {SCORE_LABELS['overall']} {result.scores.overall:.1f}")
    if result.analysis.diagnosis:
        print(f"\n诊断：{result.analysis.diagnosis}")
    if result.analysis.improvement:
        print(f"进化策略：{result.analysis.improvement}")


def main(argv: Optional[List[str]] = None) -> int:
    """
    照片点评 CLI 入口。

    函数级注释：
    - 读取照片 → 并行提取 EXIF / 上传 / 计算指纹 → 重复提示 → 额度检查 → AI 点评 → 写回缓存 → 导出分享卡片；
    - 重复照片默认直接展示缓存结果（不消耗额度），--force 强制重新分析；
    - 退出码：0 成功，1 分析或渲染失败，2 今日额度已用完。
    """
    parser = argparse.ArgumentParser(description="PhotoPath photo critique")
    parser.add_argument("photo", nargs="?", help="path of the photo to critique")
    parser.add_argument("--config", help="configuration file (yaml/json)")
    parser.add_argument("--user", help="authenticated user id (omit for anonymous quota)")
    parser.add_argument("--note", default="", help="creator context: place, mood or intent")
    parser.add_argument("--title", help="title to save (defaults to the first suggested title)")
    parser.add_argument("--tags", help="comma-separated tags (defaults to suggested tags)")
    parser.add_argument("--card-dir", help="directory for the share card")
    parser.add_argument("--card-format", choices=["jpg", "png"], help="share card format")
    parser.add_argument("--no-card", action="store_true", help="do not export a share card")
    parser.add_argument("--save-result", help="write the analysis JSON to this path")
    parser.add_argument("--force", action="store_true", help="analyze again even if the photo was analyzed before")
    parser.add_argument("--skip-upload", action="store_true", help="stay local-only, do not upload the photo")
    parser.add_argument("--usage", action="store_true", help="show today's remaining uses and exit")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    args = parser.parse_args(argv)

    app_cfg = ConfigManager(args.config).get_config()
    LoggingManager().setup(app_cfg, level_override="DEBUG" if args.verbose else None)
    logger = logging.getLogger(__name__)

    controller = AnalysisController(app_cfg)
    identity = args.user

    if args.usage:
        limit = controller.quota.limit_for(identity)
        print(f"今日剩余次数：{controller.remaining_uses(identity)}/{limit}")
        return 0
    if not args.photo:
        parser.error("photo is required unless --usage is given")

    try:
        session = controller.load_photo(args.photo, upload=not args.skip_upload)
    except PhotoPathError as e:
        print(f"无法读取照片：{e}", file=sys.stderr)
        return 1

    result = None
    match = session.duplicate.match
    if match is not None:
        print(f"这张照片之前分析过：《{match.title}》（{match.date_stored}）")
        if not args.force:
            result = controller.use_cached_result(match)
            if result is not None:
                print("已显示缓存结果，未消耗额度。使用 --force 重新分析。")

    if result is None:
        try:
            result = controller.start_analysis(args.note, identity=identity)
        except QuotaExhausted as e:
            print(str(e), file=sys.stderr)
            return 2
        except AnalysisError as e:
            logger.error(f"Analysis failed: {e}")
            print(session.error or str(e), file=sys.stderr)
            return 1
        if result is None:
            return 1
        print(f"今日剩余次数：{controller.remaining_uses(identity)}/{controller.quota.limit_for(identity)}")

    _print_result(result)

    if args.save_result:
        with open(args.save_result, "w", encoding="utf-8") as f:
            json.dump(result.to_dict(), f, ensure_ascii=False, indent=2)

    entry = controller.save_entry(title=args.title, tags=_split_tags(args.tags), notes=args.note)
    print(f"\n已保存：《{entry.title}》")

    if not args.no_card:
        try:
            path = controller.export_share_card(entry, directory=args.card_dir, fmt=args.card_format)
        except RenderFailed as e:
            print(str(e), file=sys.stderr)
            return 1
        print(f"分享卡片：{path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
