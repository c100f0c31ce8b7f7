#!/usr/bin/env python3
"""
Finance Ledger Entry Point

Starts the FastAPI server with the finance ledger system.
"""

import sys

from finance_ledger.api import run_server
from finance_ledger.config import get_config
from finance_ledger.logging_config import setup_logging


if __name__ == "__main__":
    config = get_config()
    setup_logging(config.log_level, log_format=config.log_format)

    print("Starting Finance Ledger...")
    print(f"Storage: {config.database_url}")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(
            host=config.api_host,
            port=config.api_port,
            debug=False
        )
    except KeyboardInterrupt:
        print("\nShutting down Finance Ledger...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
