#!/usr/bin/env python3
"""
Teller Banking Entry Point

Starts the FastAPI server with the teller banking back-office.
"""

import sys

from teller_banking.api import run_server
from teller_banking.config import get_config
from teller_banking.logging_config import setup_logging


if __name__ == "__main__":
    config = get_config()
    logger = setup_logging(config.log_level, fmt=config.log_format)
    logger.info(f"Starting Teller Banking API on {config.api_host}:{config.api_port}")

    try:
        run_server(
            host=config.api_host,
            port=config.api_port,
            debug=False
        )
    except KeyboardInterrupt:
        logger.info("Shutting down Teller Banking API")
    except Exception as e:
        logger.error(f"Error starting server: {e}")
        sys.exit(1)
