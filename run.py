#!/usr/bin/env python3
"""
Retail Banking Service Entry Point

Starts the FastAPI server (port 8090 unless RETAIL_BANK_API_PORT is set).
"""

import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from retail_banking.api import run_server
from retail_banking.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("Starting Retail Banking Service...")
    print(f"Storage backend: {config.storage_backend}")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(debug=False)
    except KeyboardInterrupt:
        print("\nShutting down Retail Banking Service...")
