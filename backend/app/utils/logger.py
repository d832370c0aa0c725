import logging
import sys

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)

logger = logging.getLogger("api_sync")


def get_logger(name: str) -> logging.Logger:
    """Child logger under the shared ``api_sync`` namespace."""
    return logger.getChild(name)
