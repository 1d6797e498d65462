"""Startup helpers run before the API starts serving."""

from typing import List

from thread_core.logger_config import get_logger
from thread_core.services.threads.thread_service import ThreadService

logger = get_logger("startup")


def recover_unfinished_messages(service: ThreadService) -> List[str]:
    """Close assistant messages that a previous process left pending."""
    recovered = service.initialize()
    if recovered:
        logger.info("Marked %d interrupted messages as failed.", len(recovered))
    else:
        logger.info("No unfinished messages to recover. Skipping.")
    return recovered
