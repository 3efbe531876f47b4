import logging
import sys
from pathlib import Path
from typing import List, Optional

_LOGGERS = {}

_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
_DEBUG_FORMAT = _FORMAT + " (%(filename)s:%(lineno)d)"
_DATE_FORMAT = "%H:%M:%S"

_level: int = logging.INFO
_handlers: List[logging.Handler] = []


def _build_handlers(level: int, logfile: Optional[str]) -> List[logging.Handler]:
    target = (logfile or "").strip()

    if target.lower() in ("", "stdout"):
        handler: logging.Handler = logging.StreamHandler(sys.stdout)
    elif target.lower() == "stderr":
        handler = logging.StreamHandler(sys.stderr)
    else:
        path = Path(target)
        if path.parent and not path.parent.exists():
            path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path, mode="a", encoding="utf-8")

    fmt = _DEBUG_FORMAT if level <= logging.DEBUG else _FORMAT
    handler.setFormatter(logging.Formatter(fmt, datefmt=_DATE_FORMAT))
    return [handler]


def _attach(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    for handler in _handlers:
        logger.addHandler(handler)
    logger.setLevel(_level)


def configure_logging(*, verbose: bool = False, logfile: Optional[str] = None) -> None:
    """
    Configure output for every runtime logger.

    Parameters:
    - verbose: DEBUG level (with caller location) instead of INFO
    - logfile: "stdout" (default), "stderr", or a file path opened for append

    Loggers created before this call are re-pointed at the new handlers.
    """
    global _level, _handlers

    level = logging.DEBUG if verbose else logging.INFO
    handlers = _build_handlers(level, logfile)

    for old in _handlers:
        old.close()

    _level = level
    _handlers = handlers

    for logger in _LOGGERS.values():
        _attach(logger)


def get_logger(
    name: str,
    *,
    runtime: str = "discordbot",
) -> logging.Logger:
    """
    Create or retrieve a named logger.

    Parameters:
    - name: logger namespace (e.g. core.discord_app, jukebox.client)
    - runtime: logger prefix (discordbot | jukebox)
    """
    global _handlers

    cache_key = f"{runtime}:{name}"
    if cache_key in _LOGGERS:
        return _LOGGERS[cache_key]

    if not _handlers:
        _handlers = _build_handlers(_level, None)

    logger = logging.getLogger(cache_key)
    _attach(logger)

    logger.propagate = False
    _LOGGERS[cache_key] = logger

    return logger
