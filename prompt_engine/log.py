import logging
import sys

from prompt_engine.config import settings

_LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}


def setup_logging(level: str | int | None = None) -> None:
    """Install a single stdout handler on the root logger.

    ``level`` wins over ``LOG_LEVEL``; unknown names fall back to INFO.
    Safe to call more than once.
    """
    raw = level if level is not None else settings.LOG_LEVEL
    if isinstance(raw, int):
        desired = raw
    else:
        name = str(raw).strip().upper()
        desired = int(name) if name.isdigit() else _LEVELS.get(name, logging.INFO)

    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
        root.addHandler(handler)
        logging.captureWarnings(True)
    root.setLevel(desired)
