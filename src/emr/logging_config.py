from __future__ import annotations

import logging
from typing import Optional

from src.emr.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging once at startup.

    The "audit" logger already emits JSON payloads, so it shares the root
    handler and format.
    """

    level_name = (level or settings.log_level).upper()
    logging.basicConfig(level=getattr(logging, level_name, logging.INFO), format=LOG_FORMAT)
