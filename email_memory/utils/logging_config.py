"""
Logging setup shared by every email memory module.
"""

import logging
import sys
from typing import Optional

from .config import AppConfig

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Client libraries that log every HTTP request at INFO
NOISY_LOGGERS = ('botocore', 'boto3', 'urllib3', 'opensearch', 'httpx')


def _level(config: Optional[AppConfig]) -> int:
    if config is None:
        from .config import config as default_config
        config = default_config
    return getattr(logging, config.log_level.upper(), logging.INFO)


def setup_logging(config: Optional[AppConfig] = None) -> None:
    """
    Configure the root logger once at package import.

    Output goes to stderr because the stdio MCP transport owns stdout.

    Args:
        config: AppConfig instance, uses the global config if None
    """
    level = _level(config)
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=[logging.StreamHandler(sys.stderr)])
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def get_logger(name: str, config: Optional[AppConfig] = None) -> logging.Logger:
    """Module logger at the configured level; call with ``__name__``."""
    logger = logging.getLogger(name)
    logger.setLevel(_level(config))
    return logger
