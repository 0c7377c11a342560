import argparse
import sys

from image_alchemy.config import Config
from image_alchemy.file_io import FileSource, FileTarget, StreamSource, StreamTarget
from image_alchemy.logger import setup_logging
from image_alchemy.pipeline.processor import ImageProcessor


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="image-alchemy",
        description="Transform an image according to a query string, e.g. 'w=300&h=200&fit=cover'.",
    )
    parser.add_argument("query", help="processing parameters as a query string")
    parser.add_argument("input", help="input image path, '-' for stdin")
    parser.add_argument("output", help="output path, '-' for stdout")
    parser.add_argument("--log-level", default=None, help="console log level (default: INFO)")
    parser.add_argument("--log-file", default=None, help="also write a rotating debug log to this file")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    config = Config.from_env()

    setup_logging(args.log_level or config.log_level, args.log_file or config.log_file)

    source = StreamSource(sys.stdin.buffer) if args.input == "-" else FileSource(args.input)
    target = StreamTarget(sys.stdout.buffer) if args.output == "-" else FileTarget(args.output)

    status = ImageProcessor(config).process(args.query, source, target)
    if not status:
        print(f"image-alchemy: {status.code.value}: {status.message}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
