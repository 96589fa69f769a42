import argparse
import json
import logging
import sys
from typing import List, Optional

from models.data_models import AnalysisResult, ShareCardModel
from models.errors import RenderFailed
from services.config_manager import ConfigManager
from services.exif_reader import ExifReader
from services.logging_manager import LoggingManager
from services.share_card_renderer import ShareCardRenderer


def main(argv: Optional[List[str]] = None) -> int:
    """Render a share card from a saved analysis JSON and the original photo."""
    parser = argparse.ArgumentParser(description="Render a PhotoPath share card")
    parser.add_argument("result", help="analysis JSON ({scores, analysis}) written by --save-result")
    parser.add_argument("photo", help="photo file or URL")
    parser.add_argument("--config", help="configuration file (yaml/json)")
    parser.add_argument("--title", help="card title (defaults to the first suggested title)")
    parser.add_argument("--tags", help="comma-separated tags (defaults to suggested tags)")
    parser.add_argument("--outdir", help="output directory")
    parser.add_argument("--format", choices=["jpg", "png"], help="output format")
    parser.add_argument("--date", help="footer date, e.g. 2024-01-02 (defaults to today)")
    args = parser.parse_args(argv)

    app_cfg = ConfigManager(args.config).get_config()
    LoggingManager().setup(app_cfg)
    logger = logging.getLogger(__name__)

    try:
        with open(args.result, "r", encoding="utf-8") as f:
            result = AnalysisResult.from_dict(json.load(f))
    except (OSError, ValueError) as e:
        print(f"无法读取分析结果：{e}", file=sys.stderr)
        return 1

    analysis = result.analysis
    title = args.title or (analysis.suggested_titles[0] if analysis.suggested_titles else "")
    if args.tags is not None:
        tags = [t.strip() for t in args.tags.split(",") if t.strip()]
    else:
        tags = list(analysis.suggested_tags)

    model = ShareCardModel(
        photo=args.photo,
        title=title,
        scores=result.scores,
        diagnosis=analysis.diagnosis,
        improvement=analysis.improvement,
        tags=tags,
        exif=ExifReader().extract(args.photo),
        story_note=analysis.story_note or None,
        mood_note=analysis.mood_note or None,
        footer_date=args.date,
    )
    try:
        path = ShareCardRenderer(app_cfg.share_card).export(model, directory=args.outdir, fmt=args.format)
    except RenderFailed as e:
        logger.error(str(e))
        print(str(e), file=sys.stderr)
        return 1
    print(path)
    return 0


if __name__ == "__main__":
    sys.exit(main())
