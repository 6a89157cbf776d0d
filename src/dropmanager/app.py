"""
DropManager service launcher.
"""
import logging

import uvicorn

from dropmanager.common.settings import HOST, LOG_LEVEL, PORT


def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )


def main() -> None:
    configure_logging()
    logger = logging.getLogger("dropmanager")
    logger.info("Starting DropManager on %s:%d", HOST, PORT)
    uvicorn.run(
        "dropmanager.api.app:create_app",
        host=HOST,
        port=PORT,
        factory=True,
        log_level=LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
