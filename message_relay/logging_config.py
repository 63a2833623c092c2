import logging
import sys
from typing import Optional, Union

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: Union[int, str] = "INFO", stream: Optional[object] = None) -> None:
    """Configure the ``message_relay`` logger hierarchy.

    Idempotent: calling it twice does not stack handlers.
    """
    logger = logging.getLogger("message_relay")
    logger.setLevel(level if isinstance(level, int) else level.upper())

    if not any(getattr(h, "_message_relay", False) for h in logger.handlers):
        handler = logging.StreamHandler(stream or sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._message_relay = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
