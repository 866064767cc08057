"""
modboard.__main__ — Entry point for ``python -m modboard``
==========================================================

1. Load .env (secrets).
2. Load and validate configuration; exit 1 if anything mandatory is missing.
3. Serve ``modboard.api.main:app`` with uvicorn.
"""

from __future__ import annotations

import logging
import sys

import uvicorn
from dotenv import load_dotenv

from modboard.config import ConfigError, load_config

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("modboard")


def main() -> None:
    """Validate configuration and run the API server."""
    load_dotenv()

    try:
        cfg = load_config()
    except ConfigError as exc:
        logger.critical("%s", exc)
        logger.critical("Set these in the environment or your .env file.")
        sys.exit(1)

    logger.info("Starting dashboard API on port %s…", cfg.port)
    uvicorn.run("modboard.api.main:app", host="0.0.0.0", port=cfg.port, log_config=None)


if __name__ == "__main__":
    main()
