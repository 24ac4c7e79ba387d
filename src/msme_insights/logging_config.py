from __future__ import annotations

import logging

from msme_insights.config import get_settings

# Client libraries that log every request or statement at INFO/DEBUG.
NOISY_LOGGERS = ("httpx", "httpcore", "openai", "aiosqlite")

_LOG_CONFIGURED = False


def configure_logging() -> None:
    global _LOG_CONFIGURED
    if _LOG_CONFIGURED:
        return

    settings = get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
    logging.getLogger("msme_insights").setLevel(level)
    _LOG_CONFIGURED = True
