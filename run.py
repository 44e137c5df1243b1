#!/usr/bin/env python3
"""
Loan Financial Engine Entry Point

Configures logging and starts the FastAPI server on the configured host/port.
"""

import sys

from loan_engine.api import run_server
from loan_engine.config import get_config
from loan_engine.logging_config import setup_logging_from_config


if __name__ == "__main__":
    config = get_config()
    logger = setup_logging_from_config(config)
    logger.info(f"Starting Loan Financial Engine on {config.api_host}:{config.api_port} "
                f"(storage: {config.database_url})")

    try:
        run_server()
    except KeyboardInterrupt:
        logger.info("Shutting down Loan Financial Engine")
    except Exception as e:
        logger.error(f"Error starting server: {e}", exc_info=True)
        sys.exit(1)
