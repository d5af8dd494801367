"""Logging setup"""
import logging
import re
import sys
import os
from typing import Optional
from src.core.config import settings


# DEBUG logs are disabled in production
IS_PRODUCTION = os.getenv("ENVIRONMENT", "development") == "production"

_PROXY_CREDENTIALS = re.compile(r"(?P<scheme>[a-zA-Z][a-zA-Z0-9+.-]*://)[^/@\s]+@")


def setup_logging() -> logging.Logger:
    """Initialise and configure the pipeline logger"""

    logger = logging.getLogger("serp_scraper")

    # At least INFO in production
    log_level = settings.log_level.upper()
    if IS_PRODUCTION and log_level == "DEBUG":
        log_level = "INFO"

    logger.setLevel(getattr(logging, log_level))

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, log_level))

    if IS_PRODUCTION:
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )

    console_handler.setFormatter(formatter)

    if not logger.handlers:
        logger.addHandler(console_handler)

    return logger


logger = setup_logging()


def sanitize_for_log(value: str, max_length: int = 100) -> str:
    """Return a log-safe string

    Args:
        value: string to log
        max_length: maximum length

    Returns:
        truncated string
    """
    if not value:
        return "[empty]"

    result = " ".join(value.split())
    if len(result) > max_length:
        result = result[:max_length] + "..."

    return result


def mask_proxy(proxy: Optional[str]) -> str:
    """Hide credentials embedded in a proxy URL ("http://user:pw@host" -> "http://***@host")"""
    if not proxy:
        return "direct"
    return _PROXY_CREDENTIALS.sub(r"\g<scheme>***@", proxy)
