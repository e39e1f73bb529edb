import logging
import os


def setup_logging(level: str = None) -> None:
    """Minimal logging setup shared by the API server, scripts and tests.

    - Sets root logger level (LOG_LEVEL env var when no level is given)
    - Ensures a basic StreamHandler is attached once
    - Quiets chatty HTTP client loggers
    """
    level = level or os.getenv("LOG_LEVEL", "INFO")
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )
        handler.setFormatter(formatter)
        root.addHandler(handler)
    try:
        root.setLevel(getattr(logging, level.upper()))
    except AttributeError:
        root.setLevel(logging.INFO)

    for noisy in ("aiohttp.access", "httpx", "google_genai.models"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Return a module logger after ensuring logging is initialized."""
    if not logging.getLogger().handlers:
        setup_logging()
    return logging.getLogger(name)
