"""
Root logging setup for Lambda entry points.

The Lambda runtime installs its own handler on the root logger, so only the
level is set there. Outside Lambda a stream handler is added once.
"""

import logging
import os
from typing import Optional

DEFAULT_LOG_LEVEL = "INFO"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: Optional[str] = None) -> logging.Logger:
    """
    Configure the root logger from LOG_LEVEL (default INFO).

    Returns:
        The root logger
    """
    level_name = (level or os.getenv("LOG_LEVEL", DEFAULT_LOG_LEVEL)).upper()
    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name, logging.INFO))

    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)

    # botocore is noisy at DEBUG
    logging.getLogger("botocore").setLevel(max(root.level, logging.INFO))
    return root
