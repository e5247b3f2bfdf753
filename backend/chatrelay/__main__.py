"""Run the chat relay with uvicorn: ``python -m chatrelay``."""
import logging

import uvicorn

from chatrelay.config import get_config

logger = logging.getLogger(__name__)


def main() -> None:
    config = get_config()
    logger.info(f"Starting chat relay on {config.server.host}:{config.server.port}")
    uvicorn.run(
        "chatrelay.main:app",
        host=config.server.host,
        port=config.server.port,
        reload=config.server.reload,
        log_level=config.logging.level,
    )


if __name__ == "__main__":
    main()
