"""Launch the gateway with uvicorn on $AI_PORT."""
from __future__ import annotations
import logging
import os
import sys

import uvicorn

from studybuddy_gateway.common.config import load_settings
from studybuddy_gateway.common.errors import ConfigError
from studybuddy_gateway.common.logging_setup import setup_logging

LOGGER = logging.getLogger("studybuddy.serve")

def main() -> None:
    setup_logging(os.getenv("LOG_LEVEL", "INFO"))
    try:
        settings = load_settings()
    except ConfigError as e:
        LOGGER.error("Refusing to start: %s", e)
        sys.exit(1)

    LOGGER.info("AI server running at http://%s:%s", settings.host, settings.port)
    uvicorn.run(
        "studybuddy_gateway.serve.fastapi_app:app",
        host=settings.host,
        port=settings.port,
        log_config=None,
    )

if __name__ == "__main__":
    main()
