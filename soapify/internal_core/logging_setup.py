from __future__ import annotations

import logging

_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
_HANDLER_NAME = "soapify-console"


def configure_logging(level: str = "INFO") -> logging.Logger:
    logger = logging.getLogger("soapify")
    logger.setLevel(getattr(logging, str(level or "INFO").upper(), logging.INFO))

    # Re-running app startup (tests, reload) must not stack handlers.
    for handler in logger.handlers:
        if handler.get_name() == _HANDLER_NAME:
            return logger

    console = logging.StreamHandler()
    console.set_name(_HANDLER_NAME)
    console.setFormatter(logging.Formatter(_FORMAT))
    logger.addHandler(console)
    return logger


def preview(text: str, limit: int = 200) -> str:
    # Keep log lines short and single-line.
    flat = (text or "").replace("\n", " ").strip()
    if len(flat) > limit:
        flat = flat[:limit] + "..."
    return flat
