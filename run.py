#!/usr/bin/env python3
"""
Bullion Ledger Entry Point

Starts the FastAPI server with the voucher posting engine.
"""

import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from bullion_ledger.api import run_server
from bullion_ledger.config import get_config


if __name__ == "__main__":
    cfg = get_config()
    print("Starting Bullion Ledger...")
    print(f"Storage: {cfg.database_url}")
    print(f"API available at: http://localhost:{cfg.api_port}")
    print(f"Documentation at: http://localhost:{cfg.api_port}/docs")
    print()

    try:
        run_server()
    except KeyboardInterrupt:
        print("\nShutting down Bullion Ledger...")
