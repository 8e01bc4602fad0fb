"""
core/log.py -- One place to configure stdlib logging for the HRBAC engine.

Library modules only ever call logging.getLogger("hrbac.<module>"). The host
application decides whether to call configure_logging() at startup; nothing in
the library configures handlers on import.
"""

import logging
from typing import Optional

from core.config import get_settings

LOG_FORMAT = "%(asctime)s %(levelname)-5s %(name)s %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: Optional[str] = None) -> None:
    """Install a root handler with the shared format.

    level defaults to Settings.log_level. basicConfig is a no-op when the root
    logger already has handlers, so calling this twice is harmless.
    """
    resolved = (level or get_settings().log_level).upper()
    logging.basicConfig(level=resolved, format=LOG_FORMAT, datefmt=LOG_DATEFMT)
    logging.getLogger("hrbac").setLevel(resolved)
