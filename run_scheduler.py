"""Run the cleanup scheduler as a standalone process."""

import logging
import time

from qodari_iam.core.logging import configure_logging
from qodari_iam.services.cleanup_scheduler import cleanup_scheduler

logger = logging.getLogger(__name__)


def main() -> None:
    configure_logging()
    if not cleanup_scheduler.start():
        logger.info("Nothing to run; exiting")
        return
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        cleanup_scheduler.stop()


if __name__ == "__main__":
    main()
