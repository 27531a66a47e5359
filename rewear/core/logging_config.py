import logging
from typing import Optional

from .config import get_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

def setup_logging(log_level: Optional[str] = None) -> None:
    """Configure root logging for the API process."""
    level = getattr(logging, (log_level or get_settings().log_level).upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)

    # Quiet noisy client libraries
    for name in ("httpx", "httpcore", "hpack"):
        logging.getLogger(name).setLevel(logging.WARNING)
