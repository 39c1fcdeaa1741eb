from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from .config import HubRuntimeConfig

_DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_LEVELS: dict[str, int] = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
    "NOTSET": logging.NOTSET,
}


def parse_level(value: Any, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, int):
        return value
    text = str(value).strip().upper()
    if not text:
        return default
    if text in _LEVELS:
        return _LEVELS[text]
    if text.isdigit():
        return int(text)
    return default


def _blank_to_none(value: Any) -> str | None:
    if value is None:
        return None
    s = str(value)
    return s if s.strip() else None


def _file_handler(path: str) -> logging.Handler:
    p = Path(os.path.expanduser(path))
    p.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(p, encoding="utf-8")
    try:
        os.chmod(p, 0o600)
    except Exception:
        pass
    return handler


def configure_logging(
    cfg: HubRuntimeConfig,
    *,
    override_level: str | None = None,
    override_file: str | None = None,
) -> None:
    """Install root handlers for mingled.

    Existing root handlers are replaced, so calling this twice does not
    duplicate output. An explicit empty ``override_file`` disables file
    logging even when the config names a file.
    """

    handlers: list[logging.Handler] = []
    if cfg.log_console:
        handlers.append(logging.StreamHandler())

    if override_file is not None:
        log_file = _blank_to_none(override_file)
    else:
        log_file = _blank_to_none(cfg.log_file)
    if log_file:
        handlers.append(_file_handler(log_file))

    formatter = logging.Formatter(
        fmt=_blank_to_none(cfg.log_format) or _DEFAULT_FORMAT,
        datefmt=_blank_to_none(cfg.log_datefmt),
    )

    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
    for h in handlers:
        h.setFormatter(formatter)
        root.addHandler(h)

    root.setLevel(parse_level(override_level or cfg.log_level, logging.INFO))
    logging.getLogger("RNS").setLevel(parse_level(cfg.log_rns_level, logging.WARNING))

    logging.captureWarnings(True)
