"""Maintenance entry point for the teacher memory engine"""
import argparse
import asyncio
import json
import sys

from loguru import logger

from config.settings import load_config
from core.memory_service import MemoryService
from utils.logger import setup_logger


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Teacher memory maintenance")
    parser.add_argument(
        "--config",
        default="config/config.yaml",
        help="path to the YAML config (defaults apply when missing)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    cleanup = sub.add_parser("cleanup", help="expire stale low-confidence memories")
    cleanup.add_argument("--owner", help="only clean this owner (default: every owner)")

    stats = sub.add_parser("stats", help="print memory statistics for one owner")
    stats.add_argument("owner")

    extract = sub.add_parser("extract", help="show facts extracted from a message")
    extract.add_argument("text")

    return parser.parse_args(argv)


async def main(args: argparse.Namespace) -> int:
    """Run one maintenance command and print JSON to stdout"""
    config = load_config(args.config)
    setup_logger(config.system.log_level, log_file=config.system.log_file)

    service = MemoryService(config)

    if args.command == "extract":
        candidates = service.extract(args.text)
        print(json.dumps(
            [
                {
                    "key": c.key,
                    "value": c.value,
                    "memory_type": c.memory_type.value,
                    "confidence": c.confidence,
                }
                for c in candidates
            ],
            ensure_ascii=False,
            indent=2,
        ))
        return 0

    await service.initialize()
    try:
        if args.command == "cleanup":
            if args.owner:
                results = {args.owner: await service.cleanup(args.owner)}
            else:
                results = await service.cleanup_all()
            print(json.dumps(
                {
                    owner: {
                        "expired_removed_count": r.expired_removed_count,
                        "low_confidence_removed_count": r.low_confidence_removed_count,
                    }
                    for owner, r in results.items()
                },
                indent=2,
            ))
        elif args.command == "stats":
            stats = await service.statistics(args.owner)
            print(json.dumps(stats.to_dict(), indent=2))
    except Exception as e:
        logger.exception(f"Maintenance command failed: {e}")
        return 1
    finally:
        await service.shutdown()
    return 0


def run():
    """Entry point for the `teacher-memory` command."""
    args = _parse_args()
    sys.exit(asyncio.run(main(args)))


if __name__ == "__main__":
    run()
