"""
Main entry point for Content Publisher
"""

import argparse
import asyncio
import sys

from content_publisher import __version__
from content_publisher.config import get_settings
from content_publisher.publisher import ContentPublisher, PublishResult
from content_publisher.utils import get_logger, setup_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="content-publisher",
        description="Publish Obsidian notes into a static site content folder",
    )
    parser.add_argument("--version", action="version", version=__version__)
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser(
        "validate", help="Validate absolute project content path"
    )
    publish = subparsers.add_parser("publish", help="Publish a single note")
    publish.add_argument("note", help="Note path, relative to the vault")
    publish_all = subparsers.add_parser(
        "publish-all", help="Publish only modified notes"
    )
    publish_all.add_argument(
        "--force",
        action="store_true",
        help="Publish or republish all notes",
    )
    return parser


async def run(args: argparse.Namespace) -> int:
    logger = get_logger("content_publisher")
    settings = get_settings()
    publisher = ContentPublisher(settings)

    if args.command == "validate":
        valid = publisher.validate_publish_root()
        if valid:
            logger.info("Valid path", path=settings.publish_to_ab_folder)
        return 0 if valid else 1

    result: PublishResult
    if args.command == "publish":
        document = publisher.vault.document(args.note)
        result = await publisher.publish_single_note(document)
    else:
        result = await publisher.publish_all_notes(respect_mod_ts=not args.force)

    for diagnostic in publisher.diagnostics:
        logger.warning(diagnostic)
    return 1 if result.failed else 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging()
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
