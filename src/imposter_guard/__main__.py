from __future__ import annotations

import asyncio
import logging
import sys

from dotenv import load_dotenv

from .config import load_settings
from .errors import ConfigError
from .logging_setup import setup_logging
from .runner import main_async

log = logging.getLogger("imposter_guard")


def main() -> None:
    load_dotenv()
    try:
        settings = load_settings()
    except ConfigError as e:
        setup_logging("INFO")
        log.error("Configuration error: %s", e)
        sys.exit(2)

    setup_logging(settings.log_level)
    sys.exit(asyncio.run(main_async(settings)))


if __name__ == "__main__":
    main()
