"""Fetch a single thumbnail for a Plex metadata item."""

import argparse
import logging
import os
import sys

from config.config_manager import ConfigManager
from core.errors import NotAvailableError, ThumbnailError
from core.plex_database import PlexDatabase
from core.thumbnail_manager import ThumbnailManager

EXIT_OK = 0
EXIT_UNAVAILABLE = 1
EXIT_ERROR = 2


def setup_logging(log_level: str, project_root: str) -> None:
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)
    os.makedirs(project_root, exist_ok=True)
    log_path = os.path.join(project_root, "thumbnails.log")
    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
        handlers=[
            logging.FileHandler(log_path, mode="a"),
            logging.StreamHandler(sys.stderr)
        ]
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="thumbnail", description=__doc__)
    parser.add_argument("media_id", type=int, help="Plex metadata id of the episode/movie")
    parser.add_argument("timestamp", type=int, nargs="?", default=0, help="Timestamp in milliseconds")
    parser.add_argument("--config", help="Path to config.yaml")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--precise", dest="precise", action="store_true", default=None,
                      help="Generate the thumbnail with ffmpeg")
    mode.add_argument("--fast", dest="precise", action="store_false",
                      help="Read the thumbnail from Plex's index-sd.bif")
    parser.add_argument("--check", action="store_true", help="Only report whether thumbnails exist")
    parser.add_argument("-o", "--output", help="Write the thumbnail here (default: stdout)")
    parser.add_argument("--purge", action="store_true",
                        help="Clear the on-disk thumbnail cache when done")
    return parser


def run(args, config_manager: ConfigManager) -> int:
    if args.precise is not None:
        config_manager.config.setdefault("thumbnails", {})["precise"] = args.precise

    if config_manager.use_precise_thumbnails and not ThumbnailManager.test_ffmpeg():
        logging.error("Precise thumbnails are enabled, but ffmpeg could not be found.")
        return EXIT_ERROR

    database = PlexDatabase(config_manager.database_path)
    manager = ThumbnailManager(config_manager)
    manager.create(database, config_manager.data_path)
    try:
        if args.check:
            has_thumbs = manager.has_thumbnails(args.media_id)
            print("yes" if has_thumbs else "no")
            return EXIT_OK if has_thumbs else EXIT_UNAVAILABLE

        try:
            data = manager.get_thumbnail(args.media_id, args.timestamp)
        except NotAvailableError as e:
            logging.info("%s", e)
            return EXIT_UNAVAILABLE
        except ThumbnailError as e:
            logging.error("Could not retrieve thumbnail for %s@%dms: %s", args.media_id, args.timestamp, e)
            return EXIT_ERROR

        if args.output:
            with open(args.output, "wb") as f:
                f.write(data)
            logging.info("Wrote %d bytes to %s", len(data), args.output)
        else:
            sys.stdout.buffer.write(data)
        return EXIT_OK
    finally:
        manager.close(full_shutdown=args.purge)
        database.close()


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    config_manager = ConfigManager(args.config)
    setup_logging(config_manager.logging_level, config_manager.project_root)
    return run(args, config_manager)


if __name__ == "__main__":
    sys.exit(main())
