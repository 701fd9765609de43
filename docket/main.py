"""Application Bootstrap (Entry Point)."""

import logging
from logging.handlers import RotatingFileHandler

from .cli import app
from .config import get_settings

LOG_FILE_MAX_BYTES = 5 * 1024 * 1024  # 5MB
LOG_FILE_BACKUP_COUNT = 3


def setup_logging() -> None:
    """Configure application-wide logging.

    Logs everything to the rotating file (~/.docket/data/docket.log) and
    warnings to stderr. Level from DOCKET_LOG_LEVEL (default: INFO).
    """
    settings = get_settings()
    log_file = settings.log_file
    log_file.parent.mkdir(parents=True, exist_ok=True)

    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=LOG_FILE_MAX_BYTES,
        backupCount=LOG_FILE_BACKUP_COUNT,
        encoding="utf-8",
    )
    file_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    file_handler.setLevel(logging.DEBUG)

    # stderr stays quiet unless something needs attention
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter("%(levelname)-8s | %(name)s | %(message)s"))
    console_handler.setLevel(logging.WARNING)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level))
    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def main() -> None:
    """Main entry point for the Docket CLI."""
    setup_logging()
    app()


if __name__ == "__main__":
    main()
