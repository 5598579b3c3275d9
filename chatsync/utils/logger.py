import logging
import sys

from chatsync.config import get_settings

# Configure a single application logger
log_format = "%(asctime)s - %(levelname)s - %(message)s"
logging.basicConfig(
    level=get_settings().log_level.upper(),
    format=log_format,
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger("chatsync")

__all__ = ["logger"]
