# main.py
# ------------------------------------------------------------------------------------
#  Export renderer entrypoint (run from CI, e.g. a GitHub Actions job):
#    python main.py <exportId> [output-path] [--codec=h264] [--fps=30] ...
#  - Loads the design for the export from Supabase
#  - Renders it with Remotion, uploads the video to Cloudflare R2
#  - Marks the export `completed` with its public URL
#  Exit codes: 0 on success (or --help), 1 on any error / missing configuration.
# ------------------------------------------------------------------------------------

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from errors import ConfigurationError, ExportError
from logging_config import setup_logging
from pipeline import ExportPipeline
from settings import REQUIRED_ENV, load_settings

logger = logging.getLogger("export_renderer")

EPILOG = (
    "Required environment variables:\n"
    + "\n".join(f"  {var}" for var in REQUIRED_ENV.values())
    + "\n\nExamples:\n"
    "  python main.py abc123\n"
    "  python main.py abc123 output.mp4\n"
    "  python main.py abc123 output.mp4 --codec=h264\n"
)


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\nRun with --help for usage information\n")


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog="export-renderer",
        description="Render an export from Supabase with Remotion and upload it to R2.",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("export_id", metavar="exportId", help="Export record ID from Supabase")
    parser.add_argument(
        "output_path",
        metavar="output-path",
        nargs="?",
        default=None,
        help="Output file path (default: temporary file in system temp directory)",
    )
    parser.add_argument("--codec", choices=["h264", "vp8", "vp9"], default="h264", help="Video codec (default: h264)")
    parser.add_argument("--fps", type=int, default=None, help="Frame rate (default: from design data, else 30)")
    parser.add_argument("--width", type=int, default=None, help="Video width (default: from design data, else 1920)")
    parser.add_argument("--height", type=int, default=None, help="Video height (default: from design data, else 1080)")
    parser.add_argument("--format", choices=["mp4", "webm"], default="mp4", help="Container format passed to the composition")
    parser.add_argument("--bundle-dir", dest="bundle_dir", default=None, help="Bundle URL (overrides REMOTION_BUNDLE_URL)")
    parser.add_argument("--claim", action="store_true", help="Only render if the export is still queued")
    parser.add_argument("--mark-failed", dest="mark_failed", action="store_true", help="Set status=failed when a stage fails after processing started")
    parser.add_argument("--log-file", dest="log_file", default=None, help="Also write logs to this file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    parser = build_parser()
    if not argv:
        parser.print_help()
        return 1
    args = parser.parse_args(argv)

    setup_logging(logging.DEBUG if args.verbose else logging.INFO, log_file=args.log_file)

    try:
        settings = load_settings()
    except ConfigurationError as e:
        print("Error: Missing required environment variables:", file=sys.stderr)
        for var in e.missing:
            print(f"  - {var}", file=sys.stderr)
        print("Please set all required environment variables before running. See --help.", file=sys.stderr)
        return 1

    if not args.verbose:
        setup_logging(settings.log_level, log_file=args.log_file)

    pipeline = ExportPipeline.from_settings(
        settings,
        bundle_dir=args.bundle_dir,
        claim=args.claim,
        mark_failed=args.mark_failed,
    )

    try:
        result = asyncio.run(
            pipeline.run(
                args.export_id,
                args.output_path,
                fps=args.fps,
                width=args.width,
                height=args.height,
                format=args.format,
                codec=args.codec,
            )
        )
    except ExportError as e:
        logger.error("%s failed for export %s: %s", e.stage, args.export_id, e)
        return 1
    except Exception:
        logger.exception("Unexpected error while exporting %s", args.export_id)
        return 1

    if result.skipped:
        logger.info("Nothing to do for export %s", args.export_id)
    else:
        logger.info("Export %s completed: %s", args.export_id, result.output_url)
    return 0


if __name__ == "__main__":
    sys.exit(main())
